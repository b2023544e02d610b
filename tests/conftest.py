"""Shared fixtures for agentloom tests."""

from __future__ import annotations

from typing import Callable

import pytest

from agentloom.contracts import AgentDefinition
from agentloom.conversation import InMemoryConversationStore
from agentloom.invokers import ScriptedInvoker


@pytest.fixture
def make_agent() -> Callable[..., AgentDefinition]:
    def _make(agent_id: str, name: str | None = None, **kwargs) -> AgentDefinition:
        return AgentDefinition(
            id=agent_id,
            name=name or agent_id.replace("_", " ").title(),
            system_prompt=f"You are {agent_id}.",
            **kwargs,
        )

    return _make


@pytest.fixture
def invoker() -> ScriptedInvoker:
    return ScriptedInvoker()


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()
