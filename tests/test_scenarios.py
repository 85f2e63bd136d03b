"""End-to-end scenarios through the client facade."""

import pytest

from conftest import make_token, message_payload, notification_payload, thread_payload
from lostfound.client.app import LostFoundClient
from lostfound.client.connection import MESSAGE_CREATED, NOTIFICATION_CREATED, THREAD_CREATED, ConnectionState
from lostfound.client.errors import APIError, CredentialRejectedError, RateLimitedError
from lostfound.client.models import SessionState


@pytest.fixture
def client(store, api, clock, sockets, sleep):
    return LostFoundClient(
        "http://api.test/api",
        store=store,
        api=api,
        clock=clock,
        client_factory=sockets,
        sleep=sleep,
        max_attempts=3,
    )


@pytest.fixture
def log_file(tmp_path):
    return tmp_path / "client.log"


async def logged_in(client, api):
    api.login.return_value = make_token()
    await client.session.login("alice", "pw")
    await client.wait_idle()


class TestStartup:
    """Test restoring a session at process start."""

    @pytest.mark.asyncio
    async def test_restore_connects_and_loads_caches(self, client, api, store, sockets, log_file):
        store.store_token(make_token())
        api.get_notifications.return_value = [notification_payload("n1")]
        api.get_threads.return_value = [thread_payload("t1")]

        assert await client.start(log_file) is True
        assert client.session.is_authenticated

        await client.wait_idle()
        await client.session.refresh_task

        assert client.connection.url == "http://api.test"
        assert client.connection.state is ConnectionState.CONNECTED
        assert client.notifications.unread_count == 1
        assert [s.id for s in client.chat.threads()] == ["t1"]
        assert ("join_thread", "t1") in sockets.last.emitted

    @pytest.mark.asyncio
    async def test_expired_credential_stays_logged_out(self, client, store, sockets, log_file):
        store.store_token(make_token(expires_in=-1))

        assert await client.start(log_file) is False
        await client.wait_idle()

        assert client.session.state is SessionState.UNAUTHENTICATED
        assert store.get_token() is None
        assert sockets.clients == []


class TestNavigation:
    """Test where the user lands around login."""

    @pytest.mark.asyncio
    async def test_login_leaves_home_view(self, client, api):
        assert client.views.current == "home"
        await logged_in(client, api)
        assert client.views.current == "posts"


class TestForcedLogout:
    """Test the two independent forced-logout paths converging."""

    @pytest.mark.asyncio
    async def test_realtime_rejection_then_rest_rejection(self, client, api, sockets, store):
        await logged_in(client, api)
        socket = sockets.last

        # The server revokes the credential; the next handshake is refused.
        sockets.script.append("auth")
        await socket.trigger("disconnect")
        await client.wait_idle()

        assert client.session.state is SessionState.UNAUTHENTICATED
        assert client.connection.state is ConnectionState.DISCONNECTED
        assert client.views.current == "login"
        assert store.get_token() is None

        api.get_notifications.side_effect = CredentialRejectedError(401, "Invalid token")
        with pytest.raises(CredentialRejectedError):
            await client.notifications.initialize()

        assert client.session.logout() is False
        assert [n.title for n in client.notices.drain()] == ["Real-time connection failed"]

    @pytest.mark.asyncio
    async def test_rest_rejection_disconnects_socket(self, client, api, sockets):
        await logged_in(client, api)
        socket = sockets.last
        api.get_threads.side_effect = CredentialRejectedError(401)

        with pytest.raises(CredentialRejectedError):
            await client.chat.load_threads()
        await client.wait_idle()

        assert socket.disconnect_calls == 1
        assert socket.handlers == {}
        assert client.connection.state is ConnectionState.DISCONNECTED
        assert [n.title for n in client.notices.drain()] == ["Session expired or access denied"]


class TestPushes:
    """Test pushed events reaching the caches."""

    @pytest.mark.asyncio
    async def test_redelivered_notification_counts_once(self, client, api, sockets):
        await logged_in(client, api)
        socket = sockets.last

        await socket.trigger(NOTIFICATION_CREATED, notification_payload("n1"))
        await socket.trigger(NOTIFICATION_CREATED, notification_payload("n1"))

        assert client.notifications.unread_count == 1

    @pytest.mark.asyncio
    async def test_new_thread_and_message_push(self, client, api, sockets):
        await logged_in(client, api)
        socket = sockets.last

        await socket.trigger(THREAD_CREATED, thread_payload("t1", "p1"))
        await socket.trigger(MESSAGE_CREATED, message_payload("m1", thread_id="t1"))

        assert ("join_thread", "t1") in socket.emitted
        assert [m.id for m in client.chat.messages("t1")] == ["m1"]
        assert client.chat.get("t1").unread

    @pytest.mark.asyncio
    async def test_reconnect_refetches_notifications(self, client, api, sockets):
        await logged_in(client, api)
        fetches = api.get_notifications.call_count
        api.get_notifications.return_value = [notification_payload("missed")]

        await sockets.last.trigger("disconnect")
        await client.wait_idle()

        assert api.get_notifications.call_count == fetches + 1
        assert "missed" in client.notifications

    @pytest.mark.asyncio
    async def test_reconnect_refetches_loaded_thread_history(self, client, api, sockets):
        await logged_in(client, api)
        await sockets.last.trigger(THREAD_CREATED, thread_payload("t1", "p1"))
        await sockets.last.trigger(THREAD_CREATED, thread_payload("t2", "p2"))
        api.get_messages.return_value = [message_payload("m1", thread_id="t1", offset=10)]
        await client.chat.load_thread("t1")
        api.get_messages.reset_mock()
        api.get_messages.return_value = [
            message_payload("m1", thread_id="t1", offset=10),
            message_payload("m2", thread_id="t1", offset=20),
        ]

        await sockets.last.trigger("disconnect")
        await client.wait_idle()

        api.get_messages.assert_called_once_with("t1")
        assert [m.id for m in client.chat.messages("t1")] == ["m1", "m2"]


class TestFailures:
    """Test failures that must not touch the session."""

    @pytest.mark.asyncio
    async def test_mark_read_failure_restores_unread_count(self, client, api, sockets):
        await logged_in(client, api)
        await sockets.last.trigger(NOTIFICATION_CREATED, notification_payload("n1"))
        api.mark_notification_read.side_effect = APIError(500)

        with pytest.raises(APIError):
            await client.notifications.mark_read("n1")

        assert client.notifications.get("n1").read is False
        assert client.notifications.unread_count == 1

    @pytest.mark.asyncio
    async def test_throttling_keeps_session(self, client, api):
        await logged_in(client, api)
        api.get_threads.side_effect = RateLimitedError(429, "")

        with pytest.raises(RateLimitedError):
            await client.chat.load_threads()

        assert client.session.is_authenticated
        assert client.connection.is_connected
        assert [n.title for n in client.notices.drain()] == ["Rate limit exceeded"]

    @pytest.mark.asyncio
    async def test_close_disconnects(self, client, api, sockets):
        await logged_in(client, api)
        await client.close()
        assert sockets.last.disconnect_calls == 1
        assert client.connection.state is ConnectionState.DISCONNECTED
