"""Drive one assistant run to completion, servicing tool calls along the way."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import anyio

from .assistant import AssistantAPI, AssistantError
from .config import DEFAULT_POLL_INTERVAL_S, DEFAULT_TIMEOUT_S
from .logging import get_logger
from .model import (
    CallerMeta,
    ConversationState,
    RunHandle,
    RunResult,
    ToolCall,
    ToolOutput,
    action_fingerprint,
)
from .schemas.assistant import TERMINAL_FAILURE_STATUSES, Run
from .tools import (
    ToolRegistry,
    ZendeskTicketArgs,
    decode_arguments,
    encode_result,
    parse_tool_arguments,
)
from .tools.zendesk import append_reporter_footer

logger = get_logger(__name__)

__all__ = [
    "NoContentError",
    "RunFailed",
    "RunOrchestrator",
    "RunTimeout",
]


class RunFailed(AssistantError):
    def __init__(self, run_status: str) -> None:
        super().__init__(f"Run ended with status: {run_status}")
        self.run_status = run_status


class RunTimeout(AssistantError):
    pass


class NoContentError(AssistantError):
    pass


def pending_tool_calls(run: Run) -> list[ToolCall]:
    action = run.required_action
    if action is None or action.submit_tool_outputs is None:
        return []
    return [
        ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments)
        for call in action.submit_tool_outputs.tool_calls
    ]


def _error_output(call: ToolCall, message: str) -> ToolOutput:
    return ToolOutput(tool_call_id=call.id, output=encode_result({"error": message}))


class _RunDriver:
    """Polls a single run; owns the dedup state for its requires-action rounds."""

    def __init__(
        self,
        *,
        api: AssistantAPI,
        handle: RunHandle,
        tools: ToolRegistry,
        meta: CallerMeta | None,
        poll_interval_s: float,
        sleep: Callable[[float], Awaitable[None]],
    ) -> None:
        self.api = api
        self.handle = handle
        self.tools = tools
        self.meta = meta
        self.poll_interval_s = poll_interval_s
        self.sleep = sleep
        self.handled: set[str] = set()
        self.submitting = False

    async def drive(self) -> dict[str, Any]:
        while True:
            await self.sleep(self.poll_interval_s)
            reply = await self.tick()
            if reply is not None:
                return reply

    async def tick(self) -> dict[str, Any] | None:
        handle = self.handle
        run = await self.api.retrieve_run(handle.thread_id, handle.run_id)
        status = run.status
        if status == "completed":
            logger.info("run.completed", run_id=handle.run_id)
            return await self._latest_content()
        if status in TERMINAL_FAILURE_STATUSES:
            logger.error(
                "run.ended",
                run_id=handle.run_id,
                status=status,
                error=run.last_error.message if run.last_error else None,
            )
            raise RunFailed(status)
        if status == "requires_action":
            await self.service_action(run)
        return None

    async def _latest_content(self) -> dict[str, Any]:
        message = await self.api.latest_message(self.handle.thread_id)
        if message is None or not message.content:
            logger.error("run.no_content", run_id=self.handle.run_id)
            raise NoContentError("No message content available")
        return message.content[0]

    async def service_action(self, run: Run) -> None:
        calls = pending_tool_calls(run)
        if not calls:
            logger.debug("run.requires_action.empty", run_id=run.id)
            return
        fingerprint = action_fingerprint(calls)
        if fingerprint in self.handled:
            logger.debug("run.requires_action.already_handled", run_id=run.id)
            return
        if self.submitting:
            logger.debug("run.requires_action.in_flight", run_id=run.id)
            return
        self.submitting = True
        try:
            outputs = [await self.execute(call) for call in calls]
            current = await self.api.retrieve_run(self.handle.thread_id, run.id)
            if current.status != "requires_action":
                logger.warning(
                    "run.tool_outputs.discarded", run_id=run.id, status=current.status
                )
                return
            await self.api.submit_tool_outputs(self.handle.thread_id, run.id, outputs)
            self.handled.add(fingerprint)
            logger.info(
                "run.tool_outputs.submitted", run_id=run.id, count=len(outputs)
            )
        finally:
            self.submitting = False

    async def execute(self, call: ToolCall) -> ToolOutput:
        data = decode_arguments(call.arguments)
        args = parse_tool_arguments(call.name, data)
        if isinstance(args, ZendeskTicketArgs) and self.meta is not None:
            data["comment"] = append_reporter_footer(args.comment, self.meta)
        executor = self.tools.get(call.name)
        if executor is None:
            logger.warning("tool.not_found", tool=call.name, call_id=call.id)
            return _error_output(call, f"Tool {call.name} not found")
        logger.info("tool.started", tool=call.name, call_id=call.id)
        try:
            result = await executor(encode_result(data))
            output = encode_result(result)
        except Exception as exc:
            logger.error(
                "tool.failed",
                tool=call.name,
                call_id=call.id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return _error_output(call, str(exc) or exc.__class__.__name__)
        return ToolOutput(tool_call_id=call.id, output=output)


class RunOrchestrator:
    def __init__(
        self,
        *,
        api: AssistantAPI,
        assistant_id: str,
        tools: ToolRegistry,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._api = api
        self._assistant_id = assistant_id
        self._tools = tools
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._sleep = sleep

    async def _acquire_thread(self, state: ConversationState | None) -> str:
        if state is not None:
            return state.thread_id
        thread = await self._api.create_thread()
        logger.info("run.thread.created", thread_id=thread.id)
        return thread.id

    async def run(
        self,
        state: ConversationState | None,
        message: str,
        meta: CallerMeta | None = None,
    ) -> RunResult:
        thread_id = await self._acquire_thread(state)
        await self._api.add_message(thread_id, message)
        run = await self._api.create_run(thread_id, self._assistant_id)
        handle = RunHandle(thread_id=thread_id, run_id=run.id)
        logger.info("run.started", thread_id=thread_id, run_id=run.id)

        driver = _RunDriver(
            api=self._api,
            handle=handle,
            tools=self._tools,
            meta=meta,
            poll_interval_s=self._poll_interval_s,
            sleep=self._sleep,
        )
        reply: dict[str, Any] | None = None
        with anyio.move_on_after(self._timeout_s) as scope:
            reply = await driver.drive()
        if scope.cancelled_caught or reply is None:
            logger.error(
                "run.timeout", run_id=run.id, timeout_s=self._timeout_s
            )
            raise RunTimeout("Response timed out")
        return RunResult(reply=reply, thread_id=thread_id)
