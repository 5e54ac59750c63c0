"""Per-message pipeline: gate, key, resolve, run the assistant, reply, persist."""

from __future__ import annotations

import time
from collections.abc import Callable
from weakref import WeakValueDictionary

import anyio

from .config import BridgeSettings
from .context import ContextResolver, localpart
from .identity import IdentityClient, IdentityError
from .logging import bound_message, get_logger
from .model import (
    CallerMeta,
    ConversationConfig,
    ConversationState,
    IncomingMessage,
    RunResult,
)
from .orchestrator import RunOrchestrator
from .store import ConversationStore
from .transport import ChatTransport, OutgoingReply

logger = get_logger(__name__)

__all__ = ["MalformedInputError", "MessageBridge", "UNSUPPORTED_CONTENT"]

UNSUPPORTED_CONTENT = "Message content not supported."
TYPING_OFF_TIMEOUT_S = 0.5


class MalformedInputError(ValueError):
    pass


def error_message(exc: Exception) -> str:
    if isinstance(exc, MalformedInputError):
        return str(exc)
    status = getattr(exc, "status", None)
    return (
        "The bot has encountered an error, please contact your administrator "
        f"(Error code {status or 'Unknown'})."
    )


class MessageBridge:
    def __init__(
        self,
        *,
        settings: BridgeSettings,
        transport: ChatTransport,
        resolver: ContextResolver,
        orchestrator: RunOrchestrator,
        conversations: ConversationStore,
        identity: IdentityClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._resolver = resolver
        self._orchestrator = orchestrator
        self._conversations = conversations
        self._identity = identity
        self._clock = clock
        self._locks: WeakValueDictionary[str, anyio.Lock] = WeakValueDictionary()

    def _lock_for(self, key: str) -> anyio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = anyio.Lock()
            self._locks[key] = lock
        return lock

    async def handle_message(self, msg: IncomingMessage) -> RunResult | None:
        now_ms = int(self._clock() * 1000)
        reason = self._resolver.gate(msg, now_ms=now_ms)
        if reason is not None:
            logger.debug("bridge.ignored", event_id=msg.event_id, reason=reason)
            return None
        key = self._resolver.conversation_key(msg)
        with bound_message(event_id=msg.event_id, room_id=msg.room_id):
            async with self._lock_for(key):
                try:
                    return await self._round_trip(msg, key, now_ms)
                except Exception as exc:
                    logger.error(
                        "bridge.failed",
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
                    await self._report_error(msg, error_message(exc))
                    return None

    async def _round_trip(
        self, msg: IncomingMessage, key: str, now_ms: int
    ) -> RunResult | None:
        state = await self._conversations.load(key, msg.room_id)
        resolution = await self._resolver.resolve(msg, state, now_ms=now_ms)
        if not resolution.accept:
            logger.debug("bridge.ignored", reason=resolution.reason)
            return None
        meta = await self._caller_meta(msg.sender)
        transport = self._transport
        await transport.send_read_receipt(msg.room_id, msg.event_id)
        await transport.set_typing(msg.room_id, True, self._settings.timeout_s)
        if not resolution.body:
            raise MalformedInputError(f"Error with body: {msg.body}")

        logger.info("bridge.round_trip", key=key, new_conversation=state is None)
        result = await self._orchestrator.run(state, resolution.body, meta)
        await transport.set_typing(msg.room_id, False, TYPING_OFF_TIMEOUT_S)
        await transport.send_reply(
            OutgoingReply(
                room_id=msg.room_id,
                root_event_id=msg.root_event_id,
                text=result.text or UNSUPPORTED_CONTENT,
                thread=self._settings.threads,
                rich=self._settings.rich_text,
            )
        )
        config = state.config if state is not None else ConversationConfig()
        await self._conversations.save(
            key,
            ConversationState(thread_id=result.thread_id, config=config),
            room_id=msg.room_id,
            event_id=msg.event_id,
        )
        return result

    async def _caller_meta(self, sender: str) -> CallerMeta | None:
        if self._identity is None:
            return None
        try:
            identity = await self._identity.lookup(localpart(sender))
        except IdentityError as exc:
            logger.warning("bridge.identity_unavailable", sender=sender, error=str(exc))
            return None
        return identity.meta()

    async def _report_error(self, msg: IncomingMessage, text: str) -> None:
        transport = self._transport
        try:
            await transport.set_typing(msg.room_id, False, TYPING_OFF_TIMEOUT_S)
            await transport.send_text(msg.room_id, text)
            await transport.send_read_receipt(msg.room_id, msg.event_id)
        except Exception as exc:
            logger.error(
                "bridge.report_failed",
                room_id=msg.room_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
