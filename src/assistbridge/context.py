"""Decide whether an incoming message is owed a reply and under which conversation key."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .config import BridgeSettings
from .model import TEXT_MSGTYPE, ConversationState, IncomingMessage

__all__ = [
    "BotIdentity",
    "ContextResolver",
    "EventSource",
    "Resolution",
    "STALE_AFTER_MS",
    "localpart",
]

STALE_AFTER_MS = 10_000


def localpart(user_id: str) -> str:
    if ":" not in user_id or not user_id.startswith("@"):
        return user_id
    return user_id[1:].split(":", 1)[0]


@dataclass(frozen=True, slots=True)
class BotIdentity:
    user_id: str
    display_name: str | None = None

    @property
    def localpart(self) -> str:
        return localpart(self.user_id)


class EventSource(Protocol):
    def is_dm(self, room_id: str) -> bool: ...

    async def get_event(self, room_id: str, event_id: str) -> IncomingMessage | None: ...


@dataclass(frozen=True, slots=True)
class Resolution:
    accept: bool
    key: str | None = None
    body: str = ""
    reason: str | None = None


def _matches_suffix(value: str, suffixes: Sequence[str]) -> bool:
    return any(value.endswith(suffix) for suffix in suffixes)


def _find_prefix(body: str, prefixes: Sequence[str]) -> str | None:
    for prefix in prefixes:
        if body.startswith(prefix):
            return prefix
    return None


class ContextResolver:
    def __init__(
        self,
        *,
        settings: BridgeSettings,
        identity: BotIdentity,
        events: EventSource,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._identity = identity
        self._events = events
        self._clock = clock

    def gate(self, msg: IncomingMessage, *, now_ms: int | None = None) -> str | None:
        """Return the reason the message must be ignored, or None to keep it."""
        settings = self._settings
        if msg.sender == self._identity.user_id:
            return "own_message"
        if _matches_suffix(msg.sender, settings.blacklist):
            return "sender_blacklisted"
        if settings.whitelist and not _matches_suffix(msg.sender, settings.whitelist):
            return "sender_not_whitelisted"
        if _matches_suffix(msg.room_id, settings.room_blacklist):
            return "room_blacklisted"
        if settings.room_whitelist and not _matches_suffix(
            msg.room_id, settings.room_whitelist
        ):
            return "room_not_whitelisted"
        if now_ms is None:
            now_ms = int(self._clock() * 1000)
        if now_ms - msg.origin_ts > STALE_AFTER_MS:
            return "stale"
        if msg.is_edit:
            return "edit"
        if settings.ignore_media and msg.msgtype != TEXT_MSGTYPE:
            return "media"
        return None

    def conversation_key(self, msg: IncomingMessage) -> str:
        root_event_id = msg.root_event_id
        mode = self._settings.context
        if mode == "room":
            return msg.room_id
        if mode == "thread":
            return root_event_id
        return root_event_id if root_event_id != msg.event_id else msg.room_id

    def prefixes(self, state: ConversationState | None) -> list[str]:
        identity = self._identity
        candidates = [
            self._prefix(state),
            f"{identity.localpart}:",
            f"{identity.display_name}:" if identity.display_name else "",
            f"{identity.user_id}:",
        ]
        return [prefix for prefix in candidates if prefix]

    def _prefix(self, state: ConversationState | None) -> str:
        if state is not None and state.config.prefix is not None:
            return state.config.prefix
        return self._settings.prefix

    def _prefix_reply(self, state: ConversationState | None) -> bool:
        if state is not None and state.config.prefix_reply is not None:
            return state.config.prefix_reply
        return self._settings.prefix_reply

    def _must_prefix(self, msg: IncomingMessage, state: ConversationState | None) -> bool:
        in_thread = msg.relation is not None
        if not self._settings.prefix_dm and self._events.is_dm(msg.room_id):
            return False
        if in_thread:
            return self._prefix_reply(state)
        return bool(self._prefix(state))

    async def _is_directed(
        self, msg: IncomingMessage, state: ConversationState | None
    ) -> bool:
        relation = msg.relation
        prefix = self._prefix(state)
        prefixes = self.prefixes(state)
        if relation is not None and not self._prefix_reply(state):
            if relation.event_id is None:
                # plain replies carry no thread root to inspect
                return False
            root = await self._events.get_event(msg.room_id, relation.event_id)
            root_prefix = (
                _find_prefix(root.body, prefixes) if root is not None else None
            )
            dm_exempt = not self._settings.prefix_dm and self._events.is_dm(
                msg.room_id
            )
            if prefix and root_prefix is None and not dm_exempt:
                return False
        if self._must_prefix(msg, state) and _find_prefix(msg.body, prefixes) is None:
            return False
        return True

    def strip_prefix(self, msg: IncomingMessage, state: ConversationState | None) -> str:
        prefix_used = _find_prefix(msg.body, self.prefixes(state))
        body = msg.body
        if prefix_used is not None and self._must_prefix(msg, state):
            body = body[len(prefix_used) :]
        return body.lstrip()

    async def resolve(
        self,
        msg: IncomingMessage,
        prior_state: ConversationState | None,
        *,
        now_ms: int | None = None,
    ) -> Resolution:
        reason = self.gate(msg, now_ms=now_ms)
        if reason is not None:
            return Resolution(accept=False, reason=reason)
        key = self.conversation_key(msg)
        if not await self._is_directed(msg, prior_state):
            return Resolution(accept=False, key=key, reason="not_directed")
        return Resolution(
            accept=True,
            key=key,
            body=self.strip_prefix(msg, prior_state),
        )
