"""Conversation store abstraction used as the engine's message sink."""

from __future__ import annotations

from typing import List, Protocol

from ..contracts import ConversationMessage


class ConversationStore(Protocol):
    """Protocol for conversation message backends.

    The engine only appends; it never reads back what it wrote during a run.
    """

    async def append_message(
        self, conversation_id: str, message: ConversationMessage
    ) -> None:
        """Append ``message`` to the conversation log."""

    async def get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        """Return messages for ``conversation_id`` in insertion order."""
