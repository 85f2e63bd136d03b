"""The single realtime connection, gated by session state."""
import asyncio
import inspect
import random
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, DefaultDict, List, Optional, Set
from urllib.parse import urlencode

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from .config import (
    AUTH_ERROR_PREFIX,
    HANDSHAKE_TIMEOUT,
    RECONNECT_ATTEMPTS,
    RECONNECT_DELAY,
    RECONNECT_DELAY_MAX,
    RECONNECT_RANDOMIZATION,
    SOCKET_URL,
)
from .logging_config import get_logger
from .models import SessionState
from .notices import NoticeBoard
from .session import SessionManager
from .views import ViewState

logger = get_logger("connection")

NOTIFICATION_CREATED = "new_notification"
MESSAGE_CREATED = "new_message"
THREAD_CREATED = "new_thread"
PUSH_EVENTS = (NOTIFICATION_CREATED, MESSAGE_CREATED, THREAD_CREATED)

CONNECTED = "connected"
DISCONNECTED = "disconnected"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTH_REJECTED = "auth_rejected"


def auth_rejection_reason(data: Any) -> Optional[str]:
    """Return the server's message if a connect error is an authentication failure."""
    message = data.get("message") if isinstance(data, dict) else data
    message = str(message or "")
    return message if message.startswith(AUTH_ERROR_PREFIX) else None


def default_client_factory() -> socketio.AsyncClient:
    # Reconnection is driven by ConnectionManager so auth rejections can stop it.
    return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)


class ConnectionManager:
    """Owns the process-wide socket.

    Connects when the session becomes authenticated and disconnects when it
    stops being so. Pushed events are fanned out to listeners registered with
    :meth:`add_listener`; lifecycle listeners receive ``connected`` (with a
    ``reconnect`` flag) and ``disconnected``.
    """

    def __init__(
        self,
        session: SessionManager,
        notices: NoticeBoard,
        views: Optional[ViewState] = None,
        url: str = SOCKET_URL,
        max_attempts: int = RECONNECT_ATTEMPTS,
        client_factory: Callable[[], Any] = default_client_factory,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.notices = notices
        self.views = views
        self.url = url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self.state = ConnectionState.DISCONNECTED
        self._client_factory = client_factory
        self._sleep = sleep
        self._client: Optional[Any] = None
        self._rejection: Optional[str] = None
        self._connect_count = 0
        self._thread_rooms: Set[str] = set()
        self._listeners: DefaultDict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()
        session.subscribe(self._on_session_change)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def add_listener(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        self._listeners[event].append(callback)
        return lambda: self._listeners[event].remove(callback)

    # Session gating

    def _on_session_change(self, old: SessionState, new: SessionState) -> None:
        if new is SessionState.AUTHENTICATED:
            self._schedule(self.connect())
        elif old is SessionState.AUTHENTICATED:
            # Unbind synchronously so no push lands in caches being reset.
            client = self._detach()
            self._thread_rooms.clear()
            self._schedule(self._close(client))

    def _schedule(self, coro: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("SOCKET_TASK_FAIL error=%r", task.exception())

    async def drain(self) -> None:
        """Wait for scheduled connect/disconnect work to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Lifecycle

    async def connect(self) -> None:
        if self._client is not None:
            logger.debug("SOCKET_CONNECT_SKIPPED reason=already_live state=%s", self.state.value)
            return
        if not self.session.is_authenticated:
            return
        self._rejection = None
        client = self._client_factory()
        self._client = client
        self._bind(client)
        await self._establish(client)

    async def disconnect(self) -> None:
        await self._close(self._detach())

    def _detach(self) -> Optional[Any]:
        client, self._client = self._client, None
        self._connect_count = 0
        if client is not None:
            client.handlers.clear()
        if self.state is not ConnectionState.AUTH_REJECTED:
            self.state = ConnectionState.DISCONNECTED
        return client

    async def _close(self, client: Optional[Any]) -> None:
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.warning("SOCKET_CLOSE_FAIL error=%s", exc)
        logger.info("SOCKET_CLOSED")

    async def _establish(self, client: Any, delay_first: bool = False) -> bool:
        """Bounded retry loop for non-auth failures; stops at the first auth rejection."""
        for attempt in range(1, self.max_attempts + 1):
            if delay_first or attempt > 1:
                await self._sleep(self._backoff(attempt))
            if client is not self._client:
                return False
            if not self.session.is_authenticated:
                self.session.check_expiry()
                return False
            token = self.session.get_token()
            self.state = ConnectionState.CONNECTING
            try:
                await client.connect(
                    self._handshake_url(token),
                    auth={"token": token},
                    transports=["websocket"],
                    wait_timeout=HANDSHAKE_TIMEOUT,
                )
            except SocketConnectionError as exc:
                if self._rejection is not None:
                    await self._reject(client, self._rejection)
                    return False
                if client is not self._client:
                    return False
                logger.warning("SOCKET_CONNECT_FAIL attempt=%s/%s error=%s", attempt, self.max_attempts, exc)
                continue
            if client is not self._client:
                await self._close(client)
                return False
            return True

        if client is self._client:
            # Giving up is silent: the session itself may still be valid.
            logger.warning("SOCKET_GAVE_UP attempts=%s", self.max_attempts)
            self._detach()
            await self._close(client)
        return False

    def _backoff(self, attempt: int) -> float:
        delay = min(RECONNECT_DELAY * 2 ** (attempt - 1), RECONNECT_DELAY_MAX)
        return delay + delay * RECONNECT_RANDOMIZATION * (2 * random.random() - 1)

    def _handshake_url(self, token: Optional[str]) -> str:
        return f"{self.url}?{urlencode({'token': token or ''})}"

    async def _reject(self, client: Any, reason: str) -> None:
        logger.warning("SOCKET_AUTH_REJECTED reason=%s", reason)
        if client is self._client:
            self._detach()
        self.state = ConnectionState.AUTH_REJECTED
        await self._close(client)
        self.session.force_invalidate("realtime_auth_rejected")
        if self.views is not None:
            self.views.redirect_to_public()
        self.notices.error("Real-time connection failed", "Your session may be invalid. Please log in again.")
        self.state = ConnectionState.DISCONNECTED

    # Rooms

    async def join_thread(self, thread_id: str) -> None:
        """Subscribe to a thread's room now and after every reconnect."""
        if thread_id in self._thread_rooms:
            return
        self._thread_rooms.add(thread_id)
        if self.is_connected and self._client is not None:
            await self._client.emit("join_thread", thread_id)

    # Transport events

    def _bind(self, client: Any) -> None:
        async def on_connect(*_: Any) -> None:
            await self._on_connect(client)

        async def on_connect_error(data: Any = None, *_: Any) -> None:
            reason = auth_rejection_reason(data)
            if reason is not None and client is self._client:
                self._rejection = reason
            else:
                logger.info("SOCKET_CONNECT_ERROR data=%s", data)

        async def on_disconnect(*_: Any) -> None:
            await self._on_disconnect(client)

        client.on("connect", on_connect)
        client.on("connect_error", on_connect_error)
        client.on("disconnect", on_disconnect)
        for event in PUSH_EVENTS:
            client.on(event, self._push_handler(client, event))

    def _push_handler(self, client: Any, event: str) -> Callable[..., Awaitable[None]]:
        async def handler(payload: Any = None, *_: Any) -> None:
            if client is not self._client:
                return
            await self._dispatch(event, payload)

        return handler

    async def _on_connect(self, client: Any) -> None:
        if client is not self._client:
            return
        self.state = ConnectionState.CONNECTED
        reconnect = self._connect_count > 0
        self._connect_count += 1
        session = self.session.session
        logger.info("SOCKET_CONNECTED reconnect=%s", reconnect)
        if session is not None:
            await client.emit("join_user_room", session.user_id)
        for thread_id in sorted(self._thread_rooms):
            await client.emit("join_thread", thread_id)
        await self._dispatch(CONNECTED, reconnect)

    async def _on_disconnect(self, client: Any) -> None:
        if client is not self._client:
            return
        self.state = ConnectionState.DISCONNECTED
        logger.info("SOCKET_DROPPED")
        await self._dispatch(DISCONNECTED)
        if self.session.get_token() is not None:
            self._schedule(self._establish(client, delay_first=True))

    async def _dispatch(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("SOCKET_LISTENER_FAIL event=%s", event)
