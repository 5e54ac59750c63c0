"""Bridge domain model types (messages, conversation state, tool calls, run results)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, TypeAlias

import msgspec

ContextMode: TypeAlias = Literal["room", "thread", "both"]

CONTEXT_MODES: tuple[ContextMode, ...] = ("room", "thread", "both")

TEXT_MSGTYPE = "m.text"
REL_THREAD = "m.thread"
REL_REPLACE = "m.replace"


@dataclass(frozen=True, slots=True)
class Relation:
    rel_type: str | None = None
    event_id: str | None = None
    in_reply_to: str | None = None


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    event_id: str
    room_id: str
    sender: str
    body: str
    origin_ts: int
    msgtype: str = TEXT_MSGTYPE
    relation: Relation | None = None

    @property
    def is_edit(self) -> bool:
        return self.relation is not None and self.relation.rel_type == REL_REPLACE

    @property
    def root_event_id(self) -> str:
        if self.relation is not None and self.relation.event_id is not None:
            return self.relation.event_id
        return self.event_id


class ConversationConfig(msgspec.Struct, forbid_unknown_fields=False, omit_defaults=True):
    prefix: str | None = msgspec.field(default=None, name="MATRIX_PREFIX")
    prefix_reply: bool | None = msgspec.field(default=None, name="MATRIX_PREFIX_REPLY")


class ConversationState(msgspec.Struct, forbid_unknown_fields=False):
    thread_id: str = msgspec.field(name="threadId")
    config: ConversationConfig = msgspec.field(default_factory=ConversationConfig)


@dataclass(frozen=True, slots=True)
class CallerMeta:
    name: str
    gid_uuid: str


@dataclass(frozen=True, slots=True)
class RunHandle:
    thread_id: str
    run_id: str


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    arguments: str


@dataclass(frozen=True, slots=True)
class ToolOutput:
    tool_call_id: str
    output: str


@dataclass(frozen=True, slots=True)
class RunResult:
    reply: dict[str, Any]
    thread_id: str

    @property
    def text(self) -> str | None:
        if self.reply.get("type") != "text":
            return None
        text = self.reply.get("text")
        if isinstance(text, dict):
            value = text.get("value")
            return value if isinstance(value, str) else None
        return None


def action_fingerprint(calls: list[ToolCall]) -> str:
    return "".join(call.id for call in calls)
