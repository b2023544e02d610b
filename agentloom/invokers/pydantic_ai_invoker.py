"""Agent invoker backed by pydantic-ai."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Union

import httpx
from pydantic_ai import Agent
from pydantic_ai.exceptions import (
    ModelHTTPError,
    UnexpectedModelBehavior,
    UsageLimitExceeded,
    UserError,
)
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings
from pydantic_ai.usage import UsageLimits

from ..constants import DEFAULT_MODEL
from ..contracts import AgentDefinition, InvocationResult, TokenUsage
from ..errors import AgentInvocationError, ErrorKind
from .base import AgentInvoker, DeltaCallback

logger = logging.getLogger(__name__)


def classify_exception(error: BaseException) -> ErrorKind:
    """Map pydantic-ai / httpx failures onto engine error kinds."""
    if isinstance(error, ModelHTTPError):
        if error.status_code == 429:
            return ErrorKind.RATE_LIMIT
        if error.status_code in (408, 504):
            return ErrorKind.TIMEOUT
        if 400 <= error.status_code < 500:
            return ErrorKind.INVALID_REQUEST
        return ErrorKind.PROVIDER_ERROR
    if isinstance(error, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(error, UserError):
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.PROVIDER_ERROR


def _token_usage(usage: Any) -> TokenUsage:
    """Read token counts from a run result's ``usage`` (a method on older releases)."""
    if callable(usage):
        usage = usage()
    prompt = getattr(usage, "input_tokens", None) or getattr(usage, "request_tokens", 0) or 0
    completion = getattr(usage, "output_tokens", None) or getattr(usage, "response_tokens", 0) or 0
    total = getattr(usage, "total_tokens", None) or prompt + completion
    return TokenUsage(prompt=prompt, completion=completion, total=total)


class PydanticAIInvoker(AgentInvoker):
    """Run agent definitions through :class:`pydantic_ai.Agent`.

    One pydantic-ai agent is built lazily per ``(agent id, model)`` pair so
    provider clients are only created once a call is actually made.
    """

    def __init__(
        self,
        default_model: str = DEFAULT_MODEL,
        model: Optional[Model] = None,
    ) -> None:
        self.default_model = default_model
        self._model_override = model
        self._agents: Dict[Tuple[str, str], Agent] = {}

    def _resolve_model(self, agent: AgentDefinition) -> Union[str, Model]:
        if self._model_override is not None:
            return self._model_override
        if agent.model is not None:
            return agent.model.qualified_name
        return self.default_model

    def _agent_for(self, agent: AgentDefinition) -> Agent:
        model = self._resolve_model(agent)
        key = (agent.id, model if isinstance(model, str) else model.model_name)
        if key not in self._agents:
            logger.debug(f"Creating pydantic-ai agent for {agent.id} with model {key[1]}")
            self._agents[key] = Agent(
                model,
                system_prompt=agent.system_prompt,
                name=agent.name,
            )
        return self._agents[key]

    @staticmethod
    def _run_kwargs(agent: AgentDefinition) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if agent.model is not None:
            settings: ModelSettings = {}
            if agent.model.temperature is not None:
                settings["temperature"] = agent.model.temperature
            if agent.model.max_tokens is not None:
                settings["max_tokens"] = agent.model.max_tokens
            if agent.model.top_p is not None:
                settings["top_p"] = agent.model.top_p
            if settings:
                kwargs["model_settings"] = settings
        if agent.max_steps is not None:
            kwargs["usage_limits"] = UsageLimits(request_limit=agent.max_steps)
        return kwargs

    @staticmethod
    def _prompt(input: str, context: Optional[Dict[str, Any]]) -> str:
        if not context:
            return input
        lines = "\n".join(f"- {key}: {value}" for key, value in context.items())
        return f"{input}\n\nContext:\n{lines}"

    def _wrap(self, agent: AgentDefinition, error: Exception) -> AgentInvocationError:
        kind = classify_exception(error)
        logger.debug(f"Agent {agent.id} failed with {kind.value}: {error}")
        return AgentInvocationError(f"{agent.name}: {error}", kind)

    async def invoke(
        self,
        agent: AgentDefinition,
        input: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        try:
            runner = self._agent_for(agent)
            result = await runner.run(
                self._prompt(input, context), **self._run_kwargs(agent)
            )
        except (
            ModelHTTPError,
            UnexpectedModelBehavior,
            UsageLimitExceeded,
            UserError,
            httpx.HTTPError,
        ) as e:
            raise self._wrap(agent, e) from e

        return InvocationResult(
            text=str(result.output),
            finish_reason="stop",
            usage=_token_usage(result.usage),
        )

    async def invoke_streaming(
        self,
        agent: AgentDefinition,
        input: str,
        on_delta: DeltaCallback,
        context: Optional[Dict[str, Any]] = None,
    ) -> InvocationResult:
        chunks = []
        try:
            runner = self._agent_for(agent)
            async with runner.run_stream(
                self._prompt(input, context), **self._run_kwargs(agent)
            ) as response:
                async for delta in response.stream_text(delta=True):
                    chunks.append(delta)
                    on_delta(delta)
                usage = _token_usage(response.usage)
        except (
            ModelHTTPError,
            UnexpectedModelBehavior,
            UsageLimitExceeded,
            UserError,
            httpx.HTTPError,
        ) as e:
            raise self._wrap(agent, e) from e

        return InvocationResult(
            text="".join(chunks),
            finish_reason="stop",
            usage=usage,
        )
