import json

import httpx
import pytest

from assistbridge.assistant import AssistantAPIError, AssistantClient
from assistbridge.model import ToolOutput


def _client(handler) -> tuple[AssistantClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AssistantClient("sk-test-key-000000", client=http), http


def test_empty_api_key_raises() -> None:
    with pytest.raises(ValueError, match="empty"):
        AssistantClient("")


@pytest.mark.anyio
async def test_requests_carry_auth_and_beta_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "thread_1", "object": "thread"})

    client, http = _client(handler)
    try:
        thread = await client.create_thread()
    finally:
        await http.aclose()

    assert thread.id == "thread_1"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/threads"
    assert request.headers["Authorization"] == "Bearer sk-test-key-000000"
    assert request.headers["OpenAI-Beta"] == "assistants=v2"


@pytest.mark.anyio
async def test_add_message_and_create_run() -> None:
    bodies: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/messages"):
            return httpx.Response(200, json={"id": "msg_1", "role": "user"})
        return httpx.Response(
            200, json={"id": "run_1", "thread_id": "thread_1", "status": "queued"}
        )

    client, http = _client(handler)
    try:
        message = await client.add_message("thread_1", "hello")
        run = await client.create_run("thread_1", "asst_1")
    finally:
        await http.aclose()

    assert message.id == "msg_1"
    assert run.id == "run_1"
    assert run.status == "queued"
    assert bodies == [
        ("/v1/threads/thread_1/messages", {"role": "user", "content": "hello"}),
        ("/v1/threads/thread_1/runs", {"assistant_id": "asst_1"}),
    ]


@pytest.mark.anyio
async def test_retrieve_run_decodes_required_action() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/threads/thread_1/runs/run_1"
        return httpx.Response(
            200,
            json={
                "id": "run_1",
                "object": "thread.run",
                "thread_id": "thread_1",
                "status": "requires_action",
                "required_action": {
                    "type": "submit_tool_outputs",
                    "submit_tool_outputs": {
                        "tool_calls": [
                            {
                                "id": "call_1",
                                "type": "function",
                                "function": {
                                    "name": "create_zendesk_ticket",
                                    "arguments": "{\"subject\": \"x\"}",
                                },
                            }
                        ]
                    },
                },
            },
        )

    client, http = _client(handler)
    try:
        run = await client.retrieve_run("thread_1", "run_1")
    finally:
        await http.aclose()

    assert run.status == "requires_action"
    assert run.required_action is not None
    call = run.required_action.submit_tool_outputs.tool_calls[0]
    assert call.id == "call_1"
    assert call.function.name == "create_zendesk_ticket"


@pytest.mark.anyio
async def test_latest_message_requests_newest_first() -> None:
    params: list[httpx.QueryParams] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params.append(request.url.params)
        return httpx.Response(
            200,
            json={
                "object": "list",
                "data": [
                    {
                        "id": "msg_2",
                        "role": "assistant",
                        "content": [
                            {"type": "text", "text": {"value": "hi", "annotations": []}}
                        ],
                    }
                ],
            },
        )

    client, http = _client(handler)
    try:
        message = await client.latest_message("thread_1")
    finally:
        await http.aclose()

    assert params[0]["order"] == "desc"
    assert params[0]["limit"] == "1"
    assert message is not None
    assert message.content[0]["text"]["value"] == "hi"


@pytest.mark.anyio
async def test_latest_message_empty_thread() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"object": "list", "data": []})

    client, http = _client(handler)
    try:
        assert await client.latest_message("thread_1") is None
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_submit_tool_outputs_payload() -> None:
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/threads/thread_1/runs/run_1/submit_tool_outputs"
        captured.append(json.loads(request.content))
        return httpx.Response(
            200, json={"id": "run_1", "thread_id": "thread_1", "status": "queued"}
        )

    client, http = _client(handler)
    try:
        await client.submit_tool_outputs(
            "thread_1",
            "run_1",
            [ToolOutput(tool_call_id="call_1", output='{"ok":true}')],
        )
    finally:
        await http.aclose()

    assert captured == [
        {"tool_outputs": [{"tool_call_id": "call_1", "output": '{"ok":true}'}]}
    ]


@pytest.mark.anyio
async def test_http_error_carries_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "slow down"}})

    client, http = _client(handler)
    try:
        with pytest.raises(AssistantAPIError) as exc_info:
            await client.create_thread()
    finally:
        await http.aclose()

    assert exc_info.value.status == 429


@pytest.mark.anyio
async def test_network_error_has_no_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client, http = _client(handler)
    try:
        with pytest.raises(AssistantAPIError) as exc_info:
            await client.retrieve_run("thread_1", "run_1")
    finally:
        await http.aclose()

    assert exc_info.value.status is None


@pytest.mark.anyio
async def test_invalid_payload_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    client, http = _client(handler)
    try:
        with pytest.raises(AssistantAPIError, match="invalid payload"):
            await client.create_thread()
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_close_owned_client() -> None:
    client = AssistantClient("sk-test-key-000000")
    await client.close()


@pytest.mark.anyio
async def test_close_external_client() -> None:
    async with httpx.AsyncClient() as ext:
        client = AssistantClient("sk-test-key-000000", client=ext)
        await client.close()
        assert not ext.is_closed
