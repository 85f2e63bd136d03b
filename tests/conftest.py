"""Shared fixtures for the client core tests.

REST calls are served by a ``MagicMock`` shaped like ``APIClient``; the
realtime transport is replaced by ``FakeSocketClient``, which follows the
python-socketio ``AsyncClient`` surface the connection manager uses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from lostfound.client.api import APIClient
from lostfound.client.boundary import HTTPBoundary
from lostfound.client.connection import ConnectionManager
from lostfound.client.notices import NoticeBoard
from lostfound.client.session import SessionManager
from lostfound.client.storage import CredentialStore
from lostfound.client.views import ViewState

NOW = 1_800_000_000
TEST_SECRET = "lostfound-test-secret-0123456789abcdef"


def make_token(user_id: str = "user-1", roles=("USER",), expires_in: int = 3600, **claims: Any) -> str:
    payload = {"userId": user_id, "roles": list(roles), "iat": NOW - 60, "exp": NOW + expires_in}
    payload.update(claims)
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


def iso(offset: int = 0) -> str:
    return datetime.fromtimestamp(NOW + offset, tz=timezone.utc).isoformat()


def notification_payload(notification_id: str, offset: int = 0, read: bool = False, **extra: Any) -> Dict[str, Any]:
    payload = {
        "id": notification_id,
        "userId": "user-1",
        "type": "NEW_MESSAGE",
        "content": f"notification {notification_id}",
        "isRead": read,
        "createdAt": iso(offset),
    }
    payload.update(extra)
    return payload


def message_payload(
    message_id: str, thread_id: str = "thread-1", offset: int = 0, sender_user: str = "user-2", **extra: Any
) -> Dict[str, Any]:
    payload = {
        "id": message_id,
        "threadId": thread_id,
        "senderId": f"participant-{sender_user}",
        "text": f"message {message_id}",
        "createdAt": iso(offset),
        "sender": {"id": f"participant-{sender_user}", "userId": sender_user, "user": {"id": sender_user}},
    }
    payload.update(extra)
    return payload


def thread_payload(thread_id: str = "thread-1", post_id: str = "post-1", users=("user-1", "user-2"), offset: int = 0):
    return {
        "id": thread_id,
        "postId": post_id,
        "createdAt": iso(offset),
        "participants": [{"id": f"participant-{u}", "userId": u, "user": {"id": u}} for u in users],
        "post": {"id": post_id, "title": f"Post {post_id}", "type": "LOST"},
        "messages": [],
    }


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSocketClient:
    """Scripted stand-in for ``socketio.AsyncClient``.

    Each ``connect`` consumes one outcome from the shared script: ``"ok"``,
    ``"auth"`` (authentication rejection) or ``"network"``. An empty script
    means every attempt succeeds.
    """

    def __init__(self, script: List[str]):
        self.script = script
        self.handlers: Dict[str, Any] = {}
        self.connect_calls: List[Any] = []
        self.emitted: List[Any] = []
        self.disconnect_calls = 0

    def on(self, event: str, handler: Optional[Any] = None) -> None:
        self.handlers[event] = handler

    async def trigger(self, event: str, *args: Any) -> None:
        handler = self.handlers.get(event)
        if handler is not None:
            await handler(*args)

    async def connect(self, url: str, **kwargs: Any) -> None:
        self.connect_calls.append((url, kwargs))
        outcome = self.script.pop(0) if self.script else "ok"
        if outcome == "ok":
            await self.trigger("connect")
            return
        if outcome == "auth":
            await self.trigger("connect_error", {"message": "Authentication error: Token expired"})
        else:
            await self.trigger("connect_error", {"message": "websocket error"})
        raise SocketConnectionError("One or more namespaces failed to connect")

    async def emit(self, event: str, data: Any = None) -> None:
        self.emitted.append((event, data))

    async def disconnect(self) -> None:
        self.disconnect_calls += 1


class FakeSocketFactory:
    def __init__(self):
        self.clients: List[FakeSocketClient] = []
        self.script: List[str] = []

    def __call__(self) -> FakeSocketClient:
        client = FakeSocketClient(self.script)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeSocketClient:
        return self.clients[-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "state.json")


@pytest.fixture
def api():
    mock = MagicMock(spec=APIClient)
    mock.get_profile.return_value = {}
    mock.get_notifications.return_value = []
    mock.get_threads.return_value = []
    mock.get_messages.return_value = []
    return mock


@pytest.fixture
def views():
    return ViewState("posts")


@pytest.fixture
def notices():
    return NoticeBoard()


@pytest.fixture
def http(api, views, notices):
    return HTTPBoundary(api, views, notices)


@pytest.fixture
def session(http, store, notices, clock):
    return SessionManager(http, store, notices, clock=clock)


@pytest.fixture
def sockets():
    return FakeSocketFactory()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def connection(session, notices, views, sockets, sleep):
    return ConnectionManager(
        session, notices, views, url="http://chat.test", max_attempts=3, client_factory=sockets, sleep=sleep
    )


async def sign_in(session: SessionManager, api: MagicMock, token: Optional[str] = None) -> str:
    token = token or make_token()
    api.login.return_value = token
    await session.login("alice", "correct horse")
    return token
