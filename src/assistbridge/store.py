from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol

import anyio
import msgspec

from .logging import get_logger
from .model import ContextMode, ConversationState

logger = get_logger(__name__)

__all__ = [
    "ConversationStore",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "STORE_VERSION",
]

STORE_VERSION = 1
CONVERSATION_NAMESPACE = "gpt-"


class KeyValueStore(Protocol):
    async def read(self, key: str) -> str | None: ...

    async def write(self, key: str, value: str) -> None: ...


class MemoryStore:
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})

    async def read(self, key: str) -> str | None:
        return self.values.get(key)

    async def write(self, key: str, value: str) -> None:
        self.values[key] = value


class _StoreFile(msgspec.Struct, forbid_unknown_fields=False):
    version: int
    values: dict[str, str] = msgspec.field(default_factory=dict)


class JsonFileStore:
    """Key-value store persisted as one JSON document, rewritten atomically."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = anyio.Lock()
        self._state: _StoreFile | None = None
        self._mtime_ns: int | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _stat_mtime_ns(self) -> int | None:
        try:
            return self._path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def _reload_locked_if_needed(self) -> _StoreFile:
        mtime_ns = self._stat_mtime_ns()
        if self._state is not None and mtime_ns == self._mtime_ns:
            return self._state
        self._mtime_ns = mtime_ns
        if mtime_ns is None:
            self._state = _StoreFile(version=STORE_VERSION)
            return self._state
        try:
            state = msgspec.json.decode(self._path.read_bytes(), type=_StoreFile)
        except (OSError, msgspec.DecodeError) as exc:
            logger.warning(
                "store.load_failed", path=str(self._path), error=str(exc)
            )
            state = _StoreFile(version=STORE_VERSION)
        if state.version != STORE_VERSION:
            logger.warning(
                "store.version_mismatch",
                path=str(self._path),
                version=state.version,
                expected=STORE_VERSION,
            )
            state = _StoreFile(version=STORE_VERSION)
        self._state = state
        return state

    def _save_locked(self, state: _StoreFile) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = msgspec.json.encode(state)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._mtime_ns = self._stat_mtime_ns()

    async def read(self, key: str) -> str | None:
        async with self._lock:
            return self._reload_locked_if_needed().values.get(key)

    async def write(self, key: str, value: str) -> None:
        async with self._lock:
            current = self._reload_locked_if_needed()
            updated = msgspec.structs.replace(
                current, values={**current.values, key: value}
            )
            self._save_locked(updated)
            self._state = updated


class ConversationStore:
    def __init__(self, store: KeyValueStore, *, context: ContextMode) -> None:
        self._store = store
        self._context = context

    @staticmethod
    def storage_key(key: str) -> str:
        return f"{CONVERSATION_NAMESPACE}{key}"

    async def _read(self, key: str) -> ConversationState | None:
        raw = await self._store.read(self.storage_key(key))
        if raw is None:
            return None
        try:
            return msgspec.json.decode(raw, type=ConversationState)
        except msgspec.DecodeError as exc:
            logger.warning("conversation.decode_failed", key=key, error=str(exc))
            return None

    async def load(self, key: str, room_id: str) -> ConversationState | None:
        """Read the state for ``key``, falling back to the room-wide entry.

        The fallback keeps conversations reachable after the context mode
        changes; a miss on both means a brand-new conversation.
        """
        state = await self._read(key)
        if state is None and key != room_id:
            state = await self._read(room_id)
        return state

    async def save(
        self,
        key: str,
        state: ConversationState,
        *,
        room_id: str | None = None,
        event_id: str | None = None,
    ) -> None:
        value = msgspec.json.encode(state).decode("utf-8")
        await self._store.write(self.storage_key(key), value)
        if (
            self._context == "both"
            and event_id is not None
            and room_id is not None
            and key == room_id
        ):
            # a thread later rooted at this message continues the room conversation
            await self._store.write(self.storage_key(event_id), value)
