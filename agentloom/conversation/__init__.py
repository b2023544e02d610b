"""Conversation log collaborators."""

from __future__ import annotations

from .inmemory import InMemoryConversationStore
from .store import ConversationStore


def get_conversation_store() -> ConversationStore:
    """Return a fresh conversation store.

    A new instance is created on every call; stores are passed explicitly
    into executors rather than shared through module state.
    """
    return InMemoryConversationStore()


__all__ = ["ConversationStore", "InMemoryConversationStore", "get_conversation_store"]
