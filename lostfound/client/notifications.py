"""Notification cache merging REST fetches with pushed events."""
from typing import Any, Dict, List, Optional, Set

from ..shared.dto import Notification
from .boundary import HTTPBoundary
from .errors import LostFoundError, NotTrackedError
from .logging_config import get_logger
from .models import SessionState
from .session import SessionManager

logger = get_logger("notifications")


class NotificationStream:
    """Newest-first notification view with an unread counter.

    Entries are held in a mapping keyed by id, so repeated delivery of the
    same notification (fetch and push racing, redelivery after reconnect)
    never produces a second copy.
    """

    def __init__(self, http: HTTPBoundary, session: SessionManager):
        self.http = http
        self.session = session
        self._entries: Dict[str, Notification] = {}
        self._order: List[str] = []
        self._pushed_during_fetch: Set[str] = set()
        self._fetching = 0
        session.subscribe(self._on_session_change)

    def _on_session_change(self, old: SessionState, new: SessionState) -> None:
        if old is SessionState.AUTHENTICATED:
            self.reset()

    # Views

    @property
    def items(self) -> List[Notification]:
        return [self._entries[i] for i in self._order]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._entries.values() if not n.read)

    def get(self, notification_id: str) -> Optional[Notification]:
        return self._entries.get(notification_id)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._entries

    def reset(self) -> None:
        self._entries.clear()
        self._order.clear()
        self._pushed_during_fetch.clear()

    # Merge paths

    async def initialize(self) -> List[Notification]:
        """Replace the view with the server's list.

        Entries pushed while the fetch was in flight are kept at the front if
        the response does not already include them.
        """
        token = self.session.get_token()
        self._fetching += 1
        try:
            data = await self.http.call(self.http.api.get_notifications)
        finally:
            self._fetching -= 1
        if token is None or self.session.get_token() != token:
            logger.info("NOTIFICATIONS_FETCH_DISCARDED reason=session_changed")
            return self.items

        fetched = [Notification.model_validate(raw) for raw in data or []]
        fetched.sort(key=lambda n: (n.created_at, n.id), reverse=True)
        entries: Dict[str, Notification] = {}
        order: List[str] = []
        for notification in fetched:
            if notification.id not in entries:
                entries[notification.id] = notification
                order.append(notification.id)

        live = [i for i in self._order if i in self._pushed_during_fetch and i not in entries]
        for notification_id in live:
            entries[notification_id] = self._entries[notification_id]
        if not self._fetching:
            self._pushed_during_fetch.clear()

        self._entries = entries
        self._order = live + order
        logger.info("NOTIFICATIONS_LOADED count=%s unread=%s", len(self._order), self.unread_count)
        return self.items

    def on_push(self, payload: Any) -> bool:
        """Admit a pushed notification. False when its id was already seen."""
        notification = payload if isinstance(payload, Notification) else Notification.model_validate(payload)
        if notification.id in self._entries:
            logger.info("NOTIFICATION_DUPLICATE id=%s", notification.id)
            return False
        self._entries[notification.id] = notification
        self._order.insert(0, notification.id)
        if self._fetching:
            self._pushed_during_fetch.add(notification.id)
        return True

    # Mutations (optimistic, reverted on failure)

    async def mark_read(self, notification_id: str) -> None:
        current = self._entries.get(notification_id)
        if current is None:
            raise NotTrackedError("notification", notification_id)
        if current.read:
            return
        optimistic = current.model_copy(update={"read": True})
        self._entries[notification_id] = optimistic
        try:
            await self.http.call(self.http.api.mark_notification_read, notification_id)
        except LostFoundError as exc:
            if self._entries.get(notification_id) is optimistic:
                self._entries[notification_id] = current
            self._surface(exc, "Could not update notification status. Please try again.")
            raise

    async def mark_all_read(self) -> None:
        previous = {i: n for i, n in self._entries.items() if not n.read}
        if not previous:
            return
        optimistic = {i: n.model_copy(update={"read": True}) for i, n in previous.items()}
        self._entries.update(optimistic)
        try:
            await self.http.call(self.http.api.mark_all_notifications_read)
        except LostFoundError as exc:
            for notification_id, entry in optimistic.items():
                if self._entries.get(notification_id) is entry:
                    self._entries[notification_id] = previous[notification_id]
            self._surface(exc, "Could not update notifications. Please try again.")
            raise

    async def delete(self, notification_id: str) -> None:
        current = self._entries.get(notification_id)
        if current is None:
            raise NotTrackedError("notification", notification_id)
        position = self._order.index(notification_id)
        del self._entries[notification_id]
        self._order.remove(notification_id)
        try:
            await self.http.call(self.http.api.delete_notification, notification_id)
        except LostFoundError as exc:
            if notification_id not in self._entries and self.session.get_token() is not None:
                self._entries[notification_id] = current
                self._order.insert(min(position, len(self._order)), notification_id)
            self._surface(exc, "Could not delete notification. Please try again.")
            raise

    def _surface(self, exc: LostFoundError, text: str) -> None:
        logger.warning("NOTIFICATION_UPDATE_FAIL error=%s", exc)
        if not exc.surfaced:
            self.http.notices.error("Error", text)
            exc.surfaced = True
