"""Chat transport boundary plus a console implementation for local sessions."""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from typing import Protocol

from rich.console import Console
from rich.markdown import Markdown

from .model import REL_THREAD, IncomingMessage, Relation

__all__ = [
    "ChatTransport",
    "ConsoleTransport",
    "OutgoingReply",
]


@dataclass(frozen=True, slots=True)
class OutgoingReply:
    room_id: str
    root_event_id: str
    text: str
    thread: bool = False
    rich: bool = False


class ChatTransport(Protocol):
    user_id: str
    display_name: str | None

    def is_dm(self, room_id: str) -> bool: ...

    async def get_event(self, room_id: str, event_id: str) -> IncomingMessage | None: ...

    async def send_read_receipt(self, room_id: str, event_id: str) -> None: ...

    async def set_typing(self, room_id: str, typing: bool, timeout_s: float) -> None: ...

    async def send_text(self, room_id: str, text: str) -> None: ...

    async def send_reply(self, reply: OutgoingReply) -> None: ...


class ConsoleTransport:
    """A single direct-message room backed by the terminal."""

    def __init__(
        self,
        *,
        console: Console | None = None,
        user_id: str = "@assistbridge:localhost",
        display_name: str | None = "assistbridge",
        sender: str = "@operator:localhost",
        room_id: str = "!console:localhost",
    ) -> None:
        self.console = console or Console()
        self.user_id = user_id
        self.display_name = display_name
        self.sender = sender
        self.room_id = room_id
        self._events: dict[str, IncomingMessage] = {}
        self._ids = itertools.count(1)

    def is_dm(self, room_id: str) -> bool:
        return room_id == self.room_id

    def message(self, body: str, *, thread_root: str | None = None) -> IncomingMessage:
        relation = None
        if thread_root is not None:
            relation = Relation(rel_type=REL_THREAD, event_id=thread_root)
        msg = IncomingMessage(
            event_id=f"$console-{next(self._ids)}",
            room_id=self.room_id,
            sender=self.sender,
            body=body,
            origin_ts=int(time.time() * 1000),
            relation=relation,
        )
        self._events[msg.event_id] = msg
        return msg

    async def get_event(self, room_id: str, event_id: str) -> IncomingMessage | None:
        if room_id != self.room_id:
            return None
        return self._events.get(event_id)

    async def send_read_receipt(self, room_id: str, event_id: str) -> None:
        return None

    async def set_typing(self, room_id: str, typing: bool, timeout_s: float) -> None:
        if typing:
            self.console.print("[dim]assistant is typing…[/]")

    async def send_text(self, room_id: str, text: str) -> None:
        self.console.print(f"[red]{text}[/]")

    async def send_reply(self, reply: OutgoingReply) -> None:
        if reply.rich:
            self.console.print(Markdown(reply.text))
        else:
            self.console.print(reply.text, markup=False)
