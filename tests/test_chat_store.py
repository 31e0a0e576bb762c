import asyncio
import uuid

import pytest

from zenux_api.db.models import as_utc
from zenux_api.services.chat_store import ChatNotFoundError


def test_messages_come_back_in_insertion_order(store):
    async def run():
        chat = await store.create_chat("u-1")
        saved = [
            await store.save_message(chat.id, role, f"m{i}")
            for i, role in enumerate(["user", "assistant"] * 5)
        ]
        return saved, await store.get_messages_by_chat_id(chat.id)

    saved, fetched = asyncio.run(run())

    assert [m.id for m in fetched] == [m.id for m in saved]
    stamps = [as_utc(m.created_at) for m in fetched]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


def test_create_message_touches_chat(store):
    async def run():
        chat = await store.create_chat("u-1", "Bills")
        message = await store.create_message(
            chat.id, "user", "hi", message_type="voice", metadata={"duration": 3}, ai_validated=True
        )
        return message, await store.get_chat(chat.id)

    message, chat = asyncio.run(run())

    assert as_utc(chat.last_message_at) == as_utc(message.created_at)
    assert message.message_type == "voice"
    assert message.message_metadata == {"duration": 3}
    assert message.ai_validated is True
    assert message.encrypted is False


def test_create_message_validates_role_type_and_chat(store):
    async def run():
        chat = await store.create_chat("u-1")
        with pytest.raises(ValueError):
            await store.create_message(chat.id, "system", "x")
        with pytest.raises(ValueError):
            await store.create_message(chat.id, "user", "x", message_type="video")
        with pytest.raises(ChatNotFoundError):
            await store.create_message(uuid.uuid4(), "user", "x")

    asyncio.run(run())


def test_blank_title_falls_back_to_default(store):
    chat = asyncio.run(store.create_chat("u-1", "   "))
    assert chat.title == "New Chat"


def test_touch_and_update_unknown_chat_raise(store):
    async def run():
        with pytest.raises(ChatNotFoundError):
            await store.touch_chat(uuid.uuid4())
        with pytest.raises(ChatNotFoundError):
            await store.update_chat(uuid.uuid4(), "x")

    asyncio.run(run())


def test_delete_chat_removes_its_messages_only(store):
    async def run():
        doomed = await store.create_chat("u-1")
        kept = await store.create_chat("u-1")
        await store.save_message(doomed.id, "user", "bye")
        await store.save_message(kept.id, "user", "stay")
        await store.delete_chat(doomed.id)
        return (
            await store.get_chat(doomed.id),
            await store.get_messages_by_chat_id(doomed.id),
            await store.get_messages_by_chat_id(kept.id),
        )

    gone, doomed_messages, kept_messages = asyncio.run(run())

    assert gone is None
    assert doomed_messages == []
    assert [m.content for m in kept_messages] == ["stay"]


def test_usage_records_per_user(store):
    async def run():
        await store.record_usage("u-1", chat_id="conv-1")
        await store.record_usage("u-2")
        return await store.get_usage_by_user_id("u-1")

    usage = asyncio.run(run())

    assert len(usage) == 1
    assert usage[0].chat_id == "conv-1"
