"""Scripted invoker for tests and offline runs."""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..contracts import AgentDefinition, InvocationResult, TokenUsage
from .base import AgentInvoker, DeltaCallback

Reply = Union[str, BaseException, Callable[..., Any]]


class ScriptedInvoker(AgentInvoker):
    """Simple in-process invoker that replays scripted replies per agent id.

    A script entry may be a string, an exception instance (raised), or a
    callable ``(agent, input, context)`` returning a string or awaitable. When
    a list is given, entries are consumed in order and the last one repeats.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Union[Reply, List[Reply]]]] = None,
        default: Optional[str] = "Mock response",
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self._scripts: Dict[str, List[Reply]] = {}
        self._positions: Dict[str, int] = defaultdict(int)
        self._default = default
        self._delays = dict(delays or {})
        self.calls: List[Tuple[str, str]] = []
        for agent_id, reply in (responses or {}).items():
            self.set_response(agent_id, reply)

    def set_response(self, agent_id: str, reply: Union[Reply, List[Reply]]) -> None:
        self._scripts[agent_id] = list(reply) if isinstance(reply, (list, tuple)) else [reply]
        self._positions[agent_id] = 0

    def set_delay(self, agent_id: str, seconds: float) -> None:
        self._delays[agent_id] = seconds

    def calls_for(self, agent_id: str) -> List[str]:
        """Inputs the given agent was invoked with, in call order."""
        return [text for called_id, text in self.calls if called_id == agent_id]

    def _next_reply(self, agent_id: str) -> Reply:
        script = self._scripts.get(agent_id)
        if not script:
            if self._default is None:
                raise KeyError(f"No scripted response for agent {agent_id}")
            return self._default
        position = self._positions[agent_id]
        self._positions[agent_id] = position + 1
        return script[min(position, len(script) - 1)]

    async def invoke(
        self,
        agent: AgentDefinition,
        input: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        self.calls.append((agent.id, input))
        reply = self._next_reply(agent.id)

        delay = self._delays.get(agent.id)
        if delay:
            await asyncio.sleep(delay)

        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(agent, input, context)
            if inspect.isawaitable(reply):
                reply = await reply

        text = str(reply)
        words = len(text.split())
        return InvocationResult(
            text=text,
            finish_reason="stop",
            usage=TokenUsage(prompt=len(input.split()), completion=words, total=len(input.split()) + words),
        )

    async def invoke_streaming(
        self,
        agent: AgentDefinition,
        input: str,
        on_delta: DeltaCallback,
        context: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        result = await self.invoke(agent, input, context)
        words = result.text.split(" ")
        for index, word in enumerate(words):
            on_delta(word if index == len(words) - 1 else word + " ")
        return result
