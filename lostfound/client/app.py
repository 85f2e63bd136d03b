"""Client facade wiring the session, realtime connection and caches together."""
import asyncio
import time
from pathlib import Path
from typing import Any, Callable, Optional, Set

from .api import APIClient
from .boundary import HTTPBoundary
from .chat import ChatThreadCache
from .config import API_URL, POSTS_VIEW, SOCKET_URL
from .connection import CONNECTED, MESSAGE_CREATED, NOTIFICATION_CREATED, THREAD_CREATED, ConnectionManager
from .drawer import DrawerController
from .errors import LostFoundError
from .logging_config import configure_logging, get_logger
from .models import SessionState
from .notices import NoticeBoard
from .notifications import NotificationStream
from .session import SessionManager
from .storage import CredentialStore
from .views import ViewState
from ..shared.utils import socket_url_from_api

logger = get_logger("app")


class LostFoundClient:
    """One instance per process; owns every long-lived client component."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        socket_url: Optional[str] = None,
        store: Optional[CredentialStore] = None,
        api: Optional[APIClient] = None,
        clock: Callable[[], float] = time.time,
        **connection_options: Any,
    ):
        self.store = store or CredentialStore()
        self.base_url = (base_url or self.store.get_server_url() or API_URL).rstrip("/")
        if socket_url is None:
            socket_url = SOCKET_URL if self.base_url == API_URL else socket_url_from_api(self.base_url)
        self.api = api or APIClient(self.base_url)
        self.views = ViewState()
        self.notices = NoticeBoard()
        self.http = HTTPBoundary(self.api, self.views, self.notices)
        self.session = SessionManager(self.http, self.store, self.notices, clock=clock)
        self.connection = ConnectionManager(
            self.session, self.notices, self.views, url=socket_url, **connection_options
        )
        self.notifications = NotificationStream(self.http, self.session)
        self.chat = ChatThreadCache(self.http, self.session, self.connection)
        self.drawer = DrawerController(self.chat)
        self._loads: Set[asyncio.Task] = set()

        self.connection.add_listener(NOTIFICATION_CREATED, self.notifications.on_push)
        self.connection.add_listener(MESSAGE_CREATED, self.chat.on_push_message)
        self.connection.add_listener(THREAD_CREATED, self.chat.on_push_thread)
        self.connection.add_listener(CONNECTED, self._on_connected)
        self.session.subscribe(self._on_session_change)

    def set_base_url(self, url: str) -> None:
        self.base_url = url.rstrip("/")
        self.store.store_server_url(self.base_url)
        self.api.base_url = self.base_url
        self.connection.url = socket_url_from_api(self.base_url)

    async def start(self, log_file: Optional[Path] = None) -> bool:
        configure_logging(log_file)
        logger.info("CLIENT_START api=%s socket=%s", self.base_url, self.connection.url)
        return await self.session.restore_session()

    async def close(self) -> None:
        await self.connection.disconnect()
        await self.connection.drain()
        for task in list(self._loads):
            task.cancel()
        await asyncio.gather(*self._loads, return_exceptions=True)
        logger.info("CLIENT_CLOSED")

    def _on_session_change(self, old: SessionState, new: SessionState) -> None:
        if new is SessionState.AUTHENTICATED:
            self.drawer.close()
            if self.views.is_public:
                self.views.navigate(POSTS_VIEW)
            self._spawn(self.load_caches())
        elif old is SessionState.AUTHENTICATED:
            self.drawer.close()

    def _on_connected(self, reconnect: bool) -> None:
        # Pushes missed while the socket was down are only recoverable by re-fetching.
        if reconnect:
            self._spawn(self.load_caches(reconnect=True))

    async def load_caches(self, reconnect: bool = False) -> None:
        for load in (self.notifications.initialize, self.chat.load_threads):
            try:
                await load()
            except LostFoundError as exc:
                logger.warning("CACHE_LOAD_FAIL source=%s error=%s", load.__qualname__, exc)
        if not reconnect:
            return
        for state in self.chat.threads():
            if not state.loaded:
                continue
            try:
                await self.chat.load_thread(state.id)
            except LostFoundError as exc:
                logger.warning("CACHE_LOAD_FAIL source=load_thread thread=%s error=%s", state.id, exc)

    def _spawn(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._loads.add(task)
        task.add_done_callback(self._loads.discard)

    async def wait_idle(self) -> None:
        """Wait for background cache loads and connection work to settle."""
        await self.connection.drain()
        while self._loads:
            await asyncio.gather(*list(self._loads), return_exceptions=True)
            await self.connection.drain()
