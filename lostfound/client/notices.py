"""User-visible transient notices (toasts)."""
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List

INFO = "info"
ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: str
    title: str
    text: str = ""


class NoticeBoard:
    """Bounded queue of notices waiting to be shown.

    A notice identical to the most recent queued one is collapsed, so two
    collaborators reacting to the same failure cannot stack duplicates.
    """

    def __init__(self, maxlen: int = 20):
        self._queue: Deque[Notice] = deque(maxlen=maxlen)
        self._listeners: List[Callable[[Notice], None]] = []

    def post(self, level: str, title: str, text: str = "") -> bool:
        notice = Notice(level, title, text)
        if self._queue and self._queue[-1] == notice:
            return False
        self._queue.append(notice)
        for listener in list(self._listeners):
            listener(notice)
        return True

    def info(self, title: str, text: str = "") -> bool:
        return self.post(INFO, title, text)

    def error(self, title: str, text: str = "") -> bool:
        return self.post(ERROR, title, text)

    def pending(self) -> List[Notice]:
        return list(self._queue)

    def drain(self) -> List[Notice]:
        notices = list(self._queue)
        self._queue.clear()
        return notices

    def subscribe(self, listener: Callable[[Notice], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)
