"""Invoker factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AgentloomConfig, load_config
from .base import AgentInvoker
from .scripted import ScriptedInvoker


def get_invoker(
    backend: Optional[str] = None, config: Optional[AgentloomConfig] = None
) -> AgentInvoker:
    """Factory function to get the configured invoker."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("AGENTLOOM_INVOKER")
        or config.invoker.backend
    ).lower()

    if backend == "scripted":
        return ScriptedInvoker(responses=dict(config.invoker.responses))
    elif backend in ("pydantic-ai", "pydantic_ai"):
        from .pydantic_ai_invoker import PydanticAIInvoker

        return PydanticAIInvoker(default_model=config.invoker.default_model)
    else:
        raise ValueError(f"Unsupported invoker backend: {backend}")


__all__ = ["AgentInvoker", "ScriptedInvoker", "get_invoker"]
