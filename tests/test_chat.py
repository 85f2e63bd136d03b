"""Tests for the chat thread cache."""

import asyncio
import random
from unittest.mock import AsyncMock

import pytest

from conftest import message_payload, sign_in, thread_payload
from lostfound.client.chat import ChatThreadCache
from lostfound.client.errors import APIError, NotTrackedError


@pytest.fixture
def rooms():
    return AsyncMock()


@pytest.fixture
def chat(http, session, rooms):
    return ChatThreadCache(http, session, rooms)


class TestMessageMerge:
    """Test ordering and de-duplication of messages."""

    @pytest.mark.asyncio
    async def test_any_delivery_order_yields_sorted_unique_sequence(self, chat, session, api):
        await sign_in(session, api)
        payloads = [message_payload(f"m{i}", offset=i) for i in range(8)]
        # Two messages sharing a timestamp are ordered by id.
        payloads.append(message_payload("m3b", offset=3))
        deliveries = payloads + payloads[:4]
        random.Random(7).shuffle(deliveries)

        for payload in deliveries:
            await chat.on_push_message(payload)

        ids = [m.id for m in chat.messages("thread-1")]
        assert ids == ["m0", "m1", "m2", "m3", "m3b", "m4", "m5", "m6", "m7"]

    @pytest.mark.asyncio
    async def test_history_and_push_merge_by_id(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_message(message_payload("m3", offset=30))
        api.get_messages.return_value = [
            message_payload("m1", offset=10),
            message_payload("m2", offset=20),
            message_payload("m3", offset=30),
        ]

        messages = await chat.load_thread("thread-1")

        assert [m.id for m in messages] == ["m1", "m2", "m3"]
        assert chat.get("thread-1").loaded
        api.get_messages.assert_called_once_with("thread-1")

    @pytest.mark.asyncio
    async def test_admitted_message_is_not_rewritten(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_message(message_payload("m1", text="original"))
        api.get_messages.return_value = [message_payload("m1", text="rewritten")]

        await chat.load_thread("thread-1")
        assert await chat.on_push_message(message_payload("m1", text="redelivered")) is False

        assert [m.text for m in chat.messages("thread-1")] == ["original"]

    @pytest.mark.asyncio
    async def test_duplicate_push_is_ignored(self, chat, session, api):
        await sign_in(session, api)
        assert await chat.on_push_message(message_payload("m1")) is True
        assert await chat.on_push_message(message_payload("m1")) is False
        assert len(chat.messages("thread-1")) == 1

    @pytest.mark.asyncio
    async def test_messages_for_unknown_thread(self, chat):
        with pytest.raises(NotTrackedError):
            chat.messages("nope")


class TestUnread:
    """Test the per-thread unread indicator."""

    @pytest.mark.asyncio
    async def test_push_marks_unfocused_thread_unread(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_message(message_payload("m1"))
        assert chat.get("thread-1").unread
        assert chat.unread_count == 1

        chat.mark_seen("thread-1")
        assert not chat.get("thread-1").unread

    @pytest.mark.asyncio
    async def test_focused_thread_stays_read(self, chat, session, api):
        await sign_in(session, api)
        chat.focus_provider = lambda: "thread-1"
        await chat.on_push_message(message_payload("m1"))
        assert not chat.get("thread-1").unread

    @pytest.mark.asyncio
    async def test_own_message_does_not_mark_unread(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_message(message_payload("m1", sender_user="user-1"))
        assert not chat.get("thread-1").unread

    @pytest.mark.asyncio
    async def test_own_message_recognised_by_participant_id(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_thread(thread_payload())
        payload = message_payload("m1", sender_user="user-1")
        del payload["sender"]

        await chat.on_push_message(payload)

        assert not chat.get("thread-1").unread


class TestThreads:
    """Test thread tracking and lookup."""

    @pytest.mark.asyncio
    async def test_load_threads_joins_rooms_once(self, chat, session, api, rooms):
        await sign_in(session, api)
        api.get_threads.return_value = [thread_payload("t1", "p1"), thread_payload("t2", "p2")]

        await chat.load_threads()
        await chat.load_threads()

        assert {s.id for s in chat.threads()} == {"t1", "t2"}
        assert rooms.join_thread.await_count == 2

    @pytest.mark.asyncio
    async def test_threads_ordered_by_latest_activity(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_thread(thread_payload("old", "p1", offset=-500))
        await chat.on_push_thread(thread_payload("new", "p2", offset=-100))
        await chat.on_push_message(message_payload("m1", thread_id="old", offset=10))

        assert [s.id for s in chat.threads()] == ["old", "new"]

    @pytest.mark.asyncio
    async def test_pushed_thread_is_tracked(self, chat, session, api, rooms):
        await sign_in(session, api)
        state = await chat.on_push_thread(thread_payload("t9", "p9"))
        assert state.thread.post.title == "Post p9"
        rooms.join_thread.assert_awaited_once_with("t9")

    @pytest.mark.asyncio
    async def test_find_thread_by_post_and_participants(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_thread(thread_payload("t1", "p1", users=("user-1", "user-2")))
        await chat.on_push_thread(thread_payload("t2", "p1", users=("user-1", "user-3")))

        assert chat.find_thread("p1", ["user-3", "user-1"]).id == "t2"
        assert chat.find_thread("p1") is not None
        assert chat.find_thread("p2") is None
        assert chat.find_thread("p1", ["user-4"]) is None

    @pytest.mark.asyncio
    async def test_get_or_create_twice_yields_one_thread(self, chat, session, api):
        await sign_in(session, api)
        api.get_or_create_thread.return_value = thread_payload("t1", "p1")

        first, second = await asyncio.gather(chat.get_or_create_thread("p1"), chat.get_or_create_thread("p1"))

        assert first.id == second.id == "t1"
        assert first is second
        assert len(chat.threads()) == 1

    @pytest.mark.asyncio
    async def test_send_does_not_insert_locally(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_thread(thread_payload("t1"))

        await chat.send_message("t1", "hello")

        api.send_message.assert_called_once_with("t1", "hello", None)
        assert chat.messages("t1") == []

    @pytest.mark.asyncio
    async def test_send_failure_propagates(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_thread(thread_payload("t1"))
        api.send_message.side_effect = APIError(400, "Message text is required")
        with pytest.raises(APIError):
            await chat.send_message("t1", "")

    @pytest.mark.asyncio
    async def test_send_to_untracked_thread(self, chat):
        with pytest.raises(NotTrackedError):
            await chat.send_message("nope", "hello")

    @pytest.mark.asyncio
    async def test_reset_on_logout(self, chat, session, api):
        await sign_in(session, api)
        await chat.on_push_message(message_payload("m1"))
        session.logout()
        assert chat.threads() == []
