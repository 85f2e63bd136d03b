"""Chat drawer state: which thread, if any, the user is looking at."""
import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import List, Optional

from ..shared.dto import Message
from .chat import ChatThreadCache, ThreadState
from .logging_config import get_logger

logger = get_logger("drawer")


class DrawerController:
    """UI-facing focus state on top of :class:`ChatThreadCache`.

    Every open/focus/close bumps a generation counter; async work started
    under an older generation discards its result instead of applying it.
    """

    def __init__(self, chat: ChatThreadCache):
        self.chat = chat
        self.is_open = False
        self.focused_thread_id: Optional[str] = None
        self.loading = False
        self.image_preview: Optional[str] = None
        self._generation = 0
        self._image_generation = 0
        chat.focus_provider = self.focused

    def focused(self) -> Optional[str]:
        return self.focused_thread_id if self.is_open else None

    def _bump(self) -> int:
        self._generation += 1
        self.clear_image()
        return self._generation

    async def open(self, post_id: Optional[str] = None) -> Optional[ThreadState]:
        """Open the drawer on the thread list, or on the thread for ``post_id``."""
        self.is_open = True
        if post_id is None:
            self._bump()
            self.focused_thread_id = None
            return None
        generation = self._bump()
        self.loading = True
        try:
            state = await self.chat.get_or_create_thread(post_id)
        finally:
            if generation == self._generation:
                self.loading = False
        if generation != self._generation:
            return None
        return await self.focus(state.id)

    async def focus(self, thread_id: str) -> Optional[ThreadState]:
        self.is_open = True
        generation = self._bump()
        self.focused_thread_id = thread_id
        self.loading = True
        try:
            await self.chat.load_thread(thread_id)
        finally:
            if generation == self._generation:
                self.loading = False
        if generation != self._generation:
            return None
        self.chat.mark_seen(thread_id)
        logger.info("DRAWER_FOCUS thread=%s", thread_id)
        return self.chat.get(thread_id)

    def back(self) -> None:
        """Return from a thread to the thread list."""
        self._bump()
        self.focused_thread_id = None
        self.loading = False

    def close(self) -> None:
        self._bump()
        self.is_open = False
        self.focused_thread_id = None
        self.loading = False

    def messages(self) -> List[Message]:
        if self.focused() is None:
            return []
        return self.chat.messages(self.focused_thread_id)

    async def send(self, text: str, image_url: Optional[str] = None) -> None:
        thread_id = self.focused()
        if thread_id is None:
            raise RuntimeError("No chat thread is open")
        text = text.strip()
        if not text and not image_url:
            raise ValueError("Message must have text or an image")
        await self.chat.send_message(thread_id, text, image_url)
        self.image_preview = None

    async def attach_image(self, path: Path) -> Optional[str]:
        """Read a local image into a data-URL preview.

        Returns None, leaving the preview untouched, when the drawer moved on
        while the file was being read.
        """
        generation = self._image_generation
        preview = await asyncio.to_thread(_read_preview, Path(path))
        if generation != self._image_generation or not self.is_open:
            logger.info("IMAGE_PREVIEW_DROPPED path=%s", path)
            return None
        self.image_preview = preview
        return preview

    def clear_image(self) -> None:
        self._image_generation += 1
        self.image_preview = None


def _read_preview(path: Path) -> str:
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    if not mime.startswith("image/"):
        raise ValueError(f"Not an image file: {path.name}")
    return f"data:{mime};base64,{base64.b64encode(path.read_bytes()).decode()}"
