"""Tool dispatch: an explicit name -> executor mapping handed to the orchestrator."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from typing import Any, TypeAlias

import msgspec

__all__ = [
    "CREATE_ZENDESK_TICKET",
    "ToolArguments",
    "ToolExecutor",
    "ToolRegistry",
    "UnrecognizedToolArgs",
    "ZendeskTicketArgs",
    "decode_arguments",
    "encode_result",
    "parse_tool_arguments",
]

CREATE_ZENDESK_TICKET = "create_zendesk_ticket"

ToolExecutor: TypeAlias = Callable[[str], Awaitable[Any]]


class ZendeskTicketArgs(msgspec.Struct, kw_only=True):
    subject: str = ""
    comment: str = ""
    name: str | None = None
    email: str | None = None
    priority: str | None = None
    type: str | None = None


class UnrecognizedToolArgs(msgspec.Struct, kw_only=True):
    name: str
    data: dict[str, Any] = msgspec.field(default_factory=dict)


ToolArguments: TypeAlias = ZendeskTicketArgs | UnrecognizedToolArgs


def decode_arguments(raw: str | None) -> dict[str, Any]:
    """Parse a tool call's argument payload; anything but a JSON object becomes {}."""
    if not raw:
        return {}
    try:
        data = msgspec.json.decode(raw)
    except msgspec.DecodeError:
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def parse_tool_arguments(name: str, data: dict[str, Any]) -> ToolArguments:
    if name == CREATE_ZENDESK_TICKET:
        try:
            return msgspec.convert(data, type=ZendeskTicketArgs)
        except msgspec.ValidationError:
            pass
    return UnrecognizedToolArgs(name=name, data=data)


def encode_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return msgspec.json.encode(result).decode("utf-8")


class ToolRegistry(Mapping[str, ToolExecutor]):
    def __init__(self, executors: Mapping[str, ToolExecutor] | None = None) -> None:
        self._executors: dict[str, ToolExecutor] = dict(executors or {})

    def __getitem__(self, name: str) -> ToolExecutor:
        return self._executors[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)

    def with_tool(self, name: str, executor: ToolExecutor) -> ToolRegistry:
        executors = dict(self._executors)
        executors[name] = executor
        return ToolRegistry(executors)
