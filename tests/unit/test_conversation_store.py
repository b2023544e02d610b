"""Conversation store tests."""

import pytest

from agentloom.contracts import ConversationMessage
from agentloom.conversation import InMemoryConversationStore, get_conversation_store


@pytest.mark.asyncio
async def test_inmemory_store_appends_per_conversation():
    store = InMemoryConversationStore()
    await store.append_message("c1", ConversationMessage(conversation_id="c1", role="user", content="hi"))
    await store.append_message("c2", ConversationMessage(conversation_id="c2", role="user", content="yo"))
    await store.append_message(
        "c1", ConversationMessage(conversation_id="c1", role="assistant", content="hello")
    )

    messages = await store.get_messages("c1")
    assert [m.content for m in messages] == ["hi", "hello"]
    assert sorted(store.conversation_ids()) == ["c1", "c2"]

    await store.clear("c1")
    assert await store.get_messages("c1") == []
    assert await store.get_messages("missing") == []


def test_factory_returns_fresh_stores():
    assert get_conversation_store() is not get_conversation_store()
