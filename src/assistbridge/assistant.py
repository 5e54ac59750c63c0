from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import httpx
import msgspec

from .logging import get_logger
from .model import ToolOutput
from .schemas.assistant import (
    Run,
    Thread,
    ThreadMessage,
    decode_message_list,
    decode_run,
    decode_thread,
)

logger = get_logger(__name__)

__all__ = [
    "AssistantAPI",
    "AssistantAPIError",
    "AssistantClient",
    "AssistantError",
    "OPENAI_API_BASE",
]

OPENAI_API_BASE = "https://api.openai.com/v1"
ASSISTANTS_BETA_HEADER = "assistants=v2"

T = TypeVar("T")


class AssistantError(Exception):
    """Base class for failures while talking to the assistant service."""

    status: int | None = None


class AssistantAPIError(AssistantError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AssistantAPI(Protocol):
    async def create_thread(self) -> Thread: ...

    async def add_message(self, thread_id: str, content: str) -> ThreadMessage: ...

    async def create_run(self, thread_id: str, assistant_id: str) -> Run: ...

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run: ...

    async def latest_message(self, thread_id: str) -> ThreadMessage | None: ...

    async def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: list[ToolOutput]
    ) -> Run: ...


class AssistantClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = OPENAI_API_BASE,
        timeout_s: float = 60,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API key is empty")
        self._base = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": ASSISTANTS_BETA_HEADER,
        }
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        decode: Callable[[bytes], T],
        *,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> T:
        url = f"{self._base}{path}"
        logger.debug("assistant.request", method=method, path=path, payload=json_data)
        try:
            resp = await self._client.request(
                method, url, json=json_data, params=params, headers=self._headers
            )
        except httpx.HTTPError as e:
            logger.error(
                "assistant.network_error",
                path=path,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            raise AssistantAPIError(f"{method} {path} failed: {e}") from e

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "assistant.http_error",
                path=path,
                status=resp.status_code,
                body=resp.text,
            )
            raise AssistantAPIError(
                f"{method} {path} failed with status {resp.status_code}",
                status=resp.status_code,
            ) from e

        try:
            result = decode(resp.content)
        except msgspec.DecodeError as e:
            logger.error(
                "assistant.bad_response",
                path=path,
                status=resp.status_code,
                error=str(e),
                body=resp.text,
            )
            raise AssistantAPIError(
                f"{method} {path} returned an invalid payload",
                status=resp.status_code,
            ) from e

        logger.debug("assistant.response", path=path, status=resp.status_code)
        return result

    async def create_thread(self) -> Thread:
        logger.debug("assistant.thread.create")
        return await self._request("POST", "/threads", decode_thread, json_data={})

    async def add_message(self, thread_id: str, content: str) -> ThreadMessage:
        logger.debug("assistant.message.add", thread_id=thread_id)
        return await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            _decode_thread_message,
            json_data={"role": "user", "content": content},
        )

    async def create_run(self, thread_id: str, assistant_id: str) -> Run:
        logger.debug("assistant.run.create", thread_id=thread_id)
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            decode_run,
            json_data={"assistant_id": assistant_id},
        )

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        return await self._request(
            "GET", f"/threads/{thread_id}/runs/{run_id}", decode_run
        )

    async def latest_message(self, thread_id: str) -> ThreadMessage | None:
        listing = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            decode_message_list,
            params={"order": "desc", "limit": 1},
        )
        if not listing.data:
            return None
        return listing.data[0]

    async def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: list[ToolOutput]
    ) -> Run:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            decode_run,
            json_data={
                "tool_outputs": [
                    {"tool_call_id": item.tool_call_id, "output": item.output}
                    for item in outputs
                ]
            },
        )


def _decode_thread_message(raw: bytes) -> ThreadMessage:
    return msgspec.json.decode(raw, type=ThreadMessage)
