"""Wire structs for the assistant service (threads, runs, messages)."""

from __future__ import annotations

from typing import Any, Literal

import msgspec

__all__ = [
    "FunctionCall",
    "LastError",
    "MessageList",
    "RequiredAction",
    "Run",
    "SubmitToolOutputs",
    "TERMINAL_FAILURE_STATUSES",
    "Thread",
    "ThreadMessage",
    "ToolCallPayload",
    "decode_message_list",
    "decode_run",
    "decode_thread",
]


TERMINAL_FAILURE_STATUSES: frozenset[str] = frozenset(
    {"failed", "cancelled", "expired", "incomplete"}
)


class Thread(msgspec.Struct, forbid_unknown_fields=False):
    id: str


class FunctionCall(msgspec.Struct, forbid_unknown_fields=False):
    name: str
    arguments: str = ""


class ToolCallPayload(msgspec.Struct, forbid_unknown_fields=False):
    id: str
    function: FunctionCall
    type: str = "function"


class SubmitToolOutputs(msgspec.Struct, forbid_unknown_fields=False):
    tool_calls: list[ToolCallPayload] = msgspec.field(default_factory=list)


class RequiredAction(msgspec.Struct, forbid_unknown_fields=False):
    type: str
    submit_tool_outputs: SubmitToolOutputs | None = None


class LastError(msgspec.Struct, forbid_unknown_fields=False):
    code: str | None = None
    message: str | None = None


class Run(msgspec.Struct, forbid_unknown_fields=False):
    id: str
    thread_id: str
    status: str
    required_action: RequiredAction | None = None
    last_error: LastError | None = None


class ThreadMessage(msgspec.Struct, forbid_unknown_fields=False):
    id: str
    role: str = "assistant"
    content: list[dict[str, Any]] = msgspec.field(default_factory=list)


class MessageList(msgspec.Struct, forbid_unknown_fields=False):
    data: list[ThreadMessage] = msgspec.field(default_factory=list)
    object: Literal["list"] = "list"


_THREAD_DECODER = msgspec.json.Decoder(Thread)
_RUN_DECODER = msgspec.json.Decoder(Run)
_MESSAGE_LIST_DECODER = msgspec.json.Decoder(MessageList)


def decode_thread(raw: bytes) -> Thread:
    return _THREAD_DECODER.decode(raw)


def decode_run(raw: bytes) -> Run:
    return _RUN_DECODER.decode(raw)


def decode_message_list(raw: bytes) -> MessageList:
    return _MESSAGE_LIST_DECODER.decode(raw)
