"""Retry policy and backoff tests."""

import pytest

from agentloom.contracts import RetryPolicy
from agentloom.errors import ErrorKind
from agentloom.utils.retry import compute_backoff, retry_delay, schedule_retry


def test_fixed_delay_by_default():
    assert [compute_backoff(n, base=2.0) for n in (1, 2, 3)] == [2.0, 2.0, 2.0]


def test_exponential_backoff():
    assert [compute_backoff(n, base=1.0, multiplier=2.0) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_jitter_stays_within_bound():
    for _ in range(20):
        delay = compute_backoff(1, base=1.0, jitter=0.5)
        assert 1.0 <= delay <= 1.5


def test_retry_delay_uses_policy():
    policy = RetryPolicy(retry_delay=0.5, backoff_multiplier=3.0)
    assert retry_delay(policy, 2) == 1.5


def test_default_retryable_kinds():
    policy = RetryPolicy()
    assert policy.is_retryable(ErrorKind.TIMEOUT)
    assert policy.is_retryable(ErrorKind.RATE_LIMIT)
    assert not policy.is_retryable(ErrorKind.INVALID_REQUEST)
    assert not policy.is_retryable(ErrorKind.PROVIDER_ERROR)
    assert not policy.is_retryable(ErrorKind.PARSE_ERROR)


@pytest.mark.asyncio
async def test_schedule_retry_is_capped_by_limit(monkeypatch):
    slept = []

    async def fake_sleep(delay):
        slept.append(delay)

    monkeypatch.setattr("agentloom.utils.retry.asyncio.sleep", fake_sleep)
    await schedule_retry(RetryPolicy(retry_delay=10.0), 1, limit=0.25)
    await schedule_retry(RetryPolicy(retry_delay=10.0), 1, limit=-1)

    assert slept == [0.25]
