from __future__ import annotations

import asyncio
import random

from ..contracts import RetryPolicy


def compute_backoff(attempt: int, base: float = 1.0, multiplier: float = 1.0, jitter: float = 0.0) -> float:
    """Compute the delay before retry number ``attempt`` (1-based).

    ``multiplier == 1`` gives a fixed delay; larger values compound.
    """
    delay = base * multiplier ** max(attempt - 1, 0)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


def retry_delay(policy: RetryPolicy, attempt: int) -> float:
    return compute_backoff(
        attempt,
        base=policy.retry_delay,
        multiplier=policy.backoff_multiplier,
        jitter=policy.jitter,
    )


async def schedule_retry(policy: RetryPolicy, attempt: int, limit: float | None = None) -> None:
    """Sleep for the policy delay, never longer than ``limit`` seconds."""
    delay = retry_delay(policy, attempt)
    if limit is not None:
        delay = min(delay, max(limit, 0.0))
    if delay > 0:
        await asyncio.sleep(delay)
