"""Console client for the lost-and-found service."""
import asyncio
import getpass
import sys
from typing import List, Optional

from ..shared.dto import Message, Notification
from .app import LostFoundClient
from .chat import ThreadState
from .errors import LostFoundError
from .notices import ERROR


async def ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


async def ask_secret(prompt: str) -> str:
    return await asyncio.to_thread(getpass.getpass, prompt)


class ConsoleClient:
    """Interactive console front end over :class:`LostFoundClient`."""

    def __init__(self, client: LostFoundClient):
        self.client = client
        self._threads: List[ThreadState] = []

    def show_notices(self) -> None:
        for notice in self.client.notices.drain():
            marker = "!" if notice.level == ERROR else "*"
            line = f"{marker} {notice.title}"
            if notice.text:
                line += f": {notice.text}"
            print(line)

    async def register(self) -> None:
        print("=== Register ===")
        name = await ask("Name: ")
        email = await ask("Email (@cmu.ac.th): ")
        password = await ask_secret("Password: ")
        try:
            message = await self.client.session.register(name, email, password)
            print(message)
        except LostFoundError as exc:
            print(f"Registration failed: {exc}")

    async def login(self, admin: bool = False) -> bool:
        print("=== Admin login ===" if admin else "=== Login ===")
        identifier = await ask("Username or email: ")
        password = await ask_secret("Password: ")
        flow = self.client.session.admin_login if admin else self.client.session.login
        try:
            session = await flow(identifier, password)
        except LostFoundError as exc:
            print(f"Login failed: {exc}")
            return False
        if session is None:
            print("Login cancelled.")
            return False
        print(f"Welcome, {session.name or session.username or session.user_id}!")
        return True

    def logout(self) -> None:
        self.client.session.logout()

    # Notifications

    def list_notifications(self) -> List[Notification]:
        items = self.client.notifications.items
        print(f"Notifications ({self.client.notifications.unread_count} unread)")
        for index, notification in enumerate(items, 1):
            flag = " " if notification.read else "*"
            stamp = notification.created_at.strftime("%Y-%m-%d %H:%M")
            print(f"{flag}{index:>3}. [{stamp}] {notification.type}: {notification.content}")
        if not items:
            print("No notifications.")
        return items

    async def notifications_menu(self) -> None:
        await self._attempt(self.client.notifications.initialize())
        while self.client.session.is_authenticated:
            self.show_notices()
            items = self.list_notifications()
            print("\nNotification commands: [r]ead <n>, [a]ll read, [d]elete <n>, [b]ack")
            cmd, _, arg = (await ask("> ")).partition(" ")
            cmd = cmd.lower()
            if cmd == "b":
                break
            if cmd == "a":
                await self._attempt(self.client.notifications.mark_all_read())
                continue
            if cmd in ("r", "d"):
                target = _pick(items, arg)
                if target is None:
                    print("No such notification.")
                    continue
                if cmd == "r":
                    await self._attempt(self.client.notifications.mark_read(target.id))
                else:
                    await self._attempt(self.client.notifications.delete(target.id))

    # Chat

    def list_threads(self) -> List[ThreadState]:
        self._threads = self.client.chat.threads()
        for index, state in enumerate(self._threads, 1):
            thread = state.thread
            title = thread.post.title if thread and thread.post else state.id
            preview = thread.last_preview.text if thread and thread.last_preview else ""
            flag = "*" if state.unread else " "
            print(f"{flag}{index:>3}. {title} {preview[:40]}")
        if not self._threads:
            print("No conversations yet.")
        return self._threads

    async def chat_menu(self) -> None:
        await self._attempt(self.client.chat.load_threads())
        while self.client.session.is_authenticated:
            self.show_notices()
            self.list_threads()
            print("\nChat commands: [o]pen <n>, [p]ost <post id>, [b]ack")
            cmd, _, arg = (await ask("> ")).partition(" ")
            cmd = cmd.lower()
            if cmd == "b":
                break
            if cmd == "o":
                state = _pick(self._threads, arg)
                if state is None:
                    print("No such conversation.")
                    continue
                if await self._attempt(self.client.drawer.focus(state.id)):
                    await self.conversation()
            if cmd == "p" and arg:
                if await self._attempt(self.client.drawer.open(arg.strip())):
                    await self.conversation()

    async def conversation(self) -> None:
        drawer = self.client.drawer
        printed = set()
        while drawer.focused() is not None and self.client.session.is_authenticated:
            self.show_notices()
            me = self.client.session.session.user_id if self.client.session.session else None
            for message in drawer.messages():
                if message.id not in printed:
                    printed.add(message.id)
                    print(_format_message(message, me))
            print("\nConversation commands: [s]end <text>, [i]mage <path>, [r]efresh, [b]ack")
            cmd, _, arg = (await ask("> ")).partition(" ")
            cmd = cmd.lower()
            if cmd == "b":
                drawer.back()
                break
            if cmd == "s":
                await self._attempt(drawer.send(arg, drawer.image_preview))
            if cmd == "i" and arg:
                if await self._attempt(drawer.attach_image(arg.strip())):
                    print("Image attached; it will be sent with the next message.")
            if cmd == "r":
                await self._attempt(self.client.chat.load_thread(drawer.focused_thread_id))
            if drawer.focused() is not None:
                self.client.chat.mark_seen(drawer.focused_thread_id)

    async def _attempt(self, coro) -> Optional[object]:
        try:
            result = await coro
        except LostFoundError as exc:
            if not exc.surfaced:
                print(f"Error: {exc}")
            return None
        except (OSError, ValueError, RuntimeError) as exc:
            print(f"Error: {exc}")
            return None
        return result if result is not None else True

    async def user_menu(self) -> None:
        while self.client.session.is_authenticated:
            self.show_notices()
            unread = self.client.notifications.unread_count
            print(f"\nUser menu: [n]otifications ({unread}), [c]hat, [o] logout")
            sub = (await ask("> ")).lower()
            if sub == "o":
                self.logout()
                break
            if sub == "n":
                await self.notifications_menu()
            if sub == "c":
                await self.chat_menu()
        self.show_notices()


def _pick(items: list, arg: str):
    try:
        index = int(arg)
    except ValueError:
        return None
    return items[index - 1] if 1 <= index <= len(items) else None


def _format_message(message: Message, me: Optional[str]) -> str:
    stamp = message.created_at.strftime("%H:%M")
    if message.is_system_message:
        return f"[{stamp}] -- {message.text}"
    sender = message.sender
    if sender is not None and sender.user_id == me:
        who = "(you)"
    else:
        who = (sender.user.name or sender.user.username) if sender and sender.user else "them"
    image = " [image]" if message.image_url else ""
    return f"[{stamp}] {who}: {message.text}{image}"


async def run(server_url: Optional[str] = None) -> None:
    client = LostFoundClient(server_url)
    if server_url:
        client.set_base_url(server_url)
    console = ConsoleClient(client)
    if await client.start():
        print("Session restored.")
    try:
        while True:
            if client.session.is_authenticated:
                await console.user_menu()
                continue
            console.show_notices()
            print("\nMenu: [r]egister, [l]ogin, [a]dmin login, [q]uit")
            choice = (await ask("> ")).lower()
            if choice == "q":
                break
            if choice == "r":
                await console.register()
            if choice == "l":
                await console.login()
            if choice == "a":
                await console.login(admin=True)
    finally:
        await client.close()


def main():
    print("Lost & Found Client")
    server_url = input("Server URL (blank for default): ").strip() or None
    try:
        asyncio.run(run(server_url))
    except (KeyboardInterrupt, EOFError):
        pass
    sys.exit(0)


if __name__ == "__main__":
    main()
