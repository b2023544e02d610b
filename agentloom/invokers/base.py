"""Base invoker interface for agent calls."""

from __future__ import annotations

import abc
from typing import Any, Callable, Dict, Optional

from ..contracts import AgentDefinition, InvocationResult

DeltaCallback = Callable[[str], None]


class AgentInvoker(metaclass=abc.ABCMeta):
    """Turns an agent definition plus input text into generated text.

    Implementations must raise :class:`agentloom.errors.AgentInvocationError`
    with a meaningful ``kind`` so the retry policy can classify failures.
    """

    @abc.abstractmethod
    async def invoke(
        self,
        agent: AgentDefinition,
        input: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        """Run ``agent`` on ``input`` and return the final text."""
        raise NotImplementedError

    async def invoke_streaming(
        self,
        agent: AgentDefinition,
        input: str,
        on_delta: DeltaCallback,
        context: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        """Streaming variant (defaults to a single delta with the full text)."""
        result = await self.invoke(agent, input, context)
        if result.text:
            on_delta(result.text)
        return result
