"""In-memory implementation of the conversation store."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List

from ..contracts import ConversationMessage
from .store import ConversationStore


class InMemoryConversationStore(ConversationStore):
    """Keep conversation messages in local memory.

    Useful for tests or when no external store is wired in. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._messages: Dict[str, List[ConversationMessage]] = defaultdict(list)

    async def append_message(
        self, conversation_id: str, message: ConversationMessage
    ) -> None:
        self._messages[conversation_id].append(message)

    async def get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        return list(self._messages.get(conversation_id, []))

    async def clear(self, conversation_id: str) -> None:
        self._messages.pop(conversation_id, None)

    def conversation_ids(self) -> List[str]:
        return list(self._messages)
