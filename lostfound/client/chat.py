"""Per-thread chat cache fed by REST history and pushed messages."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from ..shared.dto import Message, Thread
from .boundary import HTTPBoundary
from .errors import NotTrackedError
from .logging_config import get_logger
from .models import SessionState
from .session import SessionManager

logger = get_logger("chat")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class ThreadState:
    id: str
    thread: Optional[Thread] = None
    messages: Dict[str, Message] = field(default_factory=dict)
    unread: bool = False
    loaded: bool = False

    def ordered(self) -> List[Message]:
        return sorted(self.messages.values(), key=lambda m: m.sort_key)

    @property
    def last_activity(self) -> datetime:
        latest = max((m.created_at for m in self.messages.values()), default=None)
        preview = self.thread.last_preview if self.thread else None
        candidates = [
            latest,
            preview.created_at if preview else None,
            self.thread.created_at if self.thread else None,
        ]
        return max((c for c in candidates if c is not None), default=_EPOCH)


class ChatThreadCache:
    """Threads keyed by id, each holding its messages keyed by id.

    ``on_push_message`` is the only path that adds a message the user sent;
    ``send_message`` never inserts locally and relies on the server pushing
    the stored message back.
    """

    def __init__(
        self,
        http: HTTPBoundary,
        session: SessionManager,
        connection: Optional[Any] = None,
        focus_provider: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.http = http
        self.session = session
        self.connection = connection
        self.focus_provider = focus_provider
        self._threads: Dict[str, ThreadState] = {}
        session.subscribe(self._on_session_change)

    def _on_session_change(self, old: SessionState, new: SessionState) -> None:
        if old is SessionState.AUTHENTICATED:
            self.reset()

    def reset(self) -> None:
        self._threads.clear()

    # Views

    def threads(self) -> List[ThreadState]:
        return sorted(self._threads.values(), key=lambda s: (s.last_activity, s.id), reverse=True)

    def get(self, thread_id: str) -> Optional[ThreadState]:
        return self._threads.get(thread_id)

    def messages(self, thread_id: str) -> List[Message]:
        state = self._threads.get(thread_id)
        if state is None:
            raise NotTrackedError("thread", thread_id)
        return state.ordered()

    def find_thread(self, post_id: str, participant_ids: Optional[Iterable[str]] = None) -> Optional[ThreadState]:
        wanted: Optional[FrozenSet[str]] = frozenset(participant_ids) if participant_ids is not None else None
        for state in self._threads.values():
            thread = state.thread
            if thread is None or thread.post_id != post_id:
                continue
            if wanted is None or thread.participant_ids == wanted:
                return state
        return None

    def mark_seen(self, thread_id: str) -> None:
        state = self._threads.get(thread_id)
        if state is None:
            raise NotTrackedError("thread", thread_id)
        state.unread = False

    @property
    def unread_count(self) -> int:
        return sum(1 for s in self._threads.values() if s.unread)

    # Merge paths

    async def _track(self, thread_id: str, thread: Optional[Thread] = None) -> ThreadState:
        state = self._threads.get(thread_id)
        if state is None:
            state = self._threads[thread_id] = ThreadState(id=thread_id)
            logger.info("THREAD_TRACKED id=%s", thread_id)
            if self.connection is not None:
                await self.connection.join_thread(thread_id)
        if thread is not None:
            state.thread = thread
        return state

    def _merge(self, state: ThreadState, messages: Iterable[Message]) -> int:
        added = 0
        for message in messages:
            if message.thread_id != state.id:
                logger.warning("MESSAGE_THREAD_MISMATCH id=%s thread=%s", message.id, message.thread_id)
                continue
            # Admitted messages are immutable.
            if message.id in state.messages:
                continue
            state.messages[message.id] = message
            added += 1
        return added

    async def load_threads(self) -> List[ThreadState]:
        token = self.session.get_token()
        data = await self.http.call(self.http.api.get_threads)
        if token is None or self.session.get_token() != token:
            logger.info("THREADS_FETCH_DISCARDED reason=session_changed")
            return self.threads()
        for raw in data or []:
            thread = Thread.model_validate(raw)
            await self._track(thread.id, thread)
        logger.info("THREADS_LOADED count=%s", len(self._threads))
        return self.threads()

    async def load_thread(self, thread_id: str) -> List[Message]:
        """Fetch a thread's full history and merge it by message id."""
        token = self.session.get_token()
        data = await self.http.call(self.http.api.get_messages, thread_id)
        if token is None or self.session.get_token() != token:
            logger.info("MESSAGES_FETCH_DISCARDED thread=%s reason=session_changed", thread_id)
            return []
        state = await self._track(thread_id)
        added = self._merge(state, (Message.model_validate(raw) for raw in data or []))
        state.loaded = True
        logger.info("MESSAGES_LOADED thread=%s count=%s new=%s", thread_id, len(state.messages), added)
        return state.ordered()

    async def on_push_message(self, payload: Any) -> bool:
        """Admit a pushed message. False when its id was already held."""
        message = payload if isinstance(payload, Message) else Message.model_validate(payload)
        state = await self._track(message.thread_id)
        if not self._merge(state, [message]):
            return False
        if self._is_own(message, state):
            return True
        focused = self.focus_provider() if self.focus_provider else None
        if focused != state.id:
            state.unread = True
        return True

    async def on_push_thread(self, payload: Any) -> ThreadState:
        thread = payload if isinstance(payload, Thread) else Thread.model_validate(payload)
        return await self._track(thread.id, thread)

    def _is_own(self, message: Message, state: ThreadState) -> bool:
        session = self.session.session
        if session is None:
            return False
        if message.sender_user_id is not None:
            return message.sender_user_id == session.user_id
        # senderId is the participant id, not the user id.
        if state.thread is not None and message.sender_id is not None:
            return any(
                p.id == message.sender_id and p.user_id == session.user_id for p in state.thread.participants
            )
        return False

    # Requests

    async def get_or_create_thread(self, post_id: str) -> ThreadState:
        """Return the caller's thread for a post, creating it server-side if needed.

        Concurrent calls may both reach the server; the server resolves them to
        one thread and the id-keyed merge makes the second result a no-op.
        """
        data = await self.http.call(self.http.api.get_or_create_thread, post_id)
        thread = Thread.model_validate(data)
        return await self._track(thread.id, thread)

    async def send_message(self, thread_id: str, text: str, image_url: Optional[str] = None) -> None:
        if thread_id not in self._threads:
            raise NotTrackedError("thread", thread_id)
        await self.http.call(self.http.api.send_message, thread_id, text, image_url)
        logger.info("MESSAGE_SENT thread=%s image=%s", thread_id, bool(image_url))
