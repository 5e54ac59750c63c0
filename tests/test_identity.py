import json

import httpx
import pytest

from assistbridge.identity import IdentityClient, IdentityError
from assistbridge.model import CallerMeta
from assistbridge.store import MemoryStore

API = "https://directory.example.org/"


@pytest.mark.anyio
async def test_lookup_fetches_and_caches() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(
            200,
            json={"gid_uuid": "u-1", "name": "Alice A", "country_code": "NZ"},
        )

    cache = MemoryStore()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        client = IdentityClient(API, cache=cache, client=http)
        first = await client.lookup("alice")
        second = await client.lookup("alice")
    finally:
        await http.aclose()

    assert calls == ["https://directory.example.org/v1/directory/alice"]
    assert first.meta() == CallerMeta(name="Alice A", gid_uuid="u-1")
    assert second == first
    assert json.loads(cache.values["user-alice"])["gid_uuid"] == "u-1"


@pytest.mark.anyio
async def test_lookup_uses_existing_cache_entry() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("directory should not be called")

    cache = MemoryStore(
        {"user-bob": json.dumps({"gid_uuid": "u-2", "name": "Bob", "type": "staff"})}
    )
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        identity = await IdentityClient(API, cache=cache, client=http).lookup("bob")
    finally:
        await http.aclose()

    assert identity.name == "Bob"
    assert identity.type == "staff"


@pytest.mark.anyio
async def test_lookup_http_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    cache = MemoryStore()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(IdentityError, match="carol"):
            await IdentityClient(API, cache=cache, client=http).lookup("carol")
    finally:
        await http.aclose()

    assert cache.values == {}


@pytest.mark.anyio
async def test_lookup_invalid_payload_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"name": "No Id"})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(IdentityError, match="invalid identity payload"):
            await IdentityClient(API, cache=MemoryStore(), client=http).lookup("dave")
    finally:
        await http.aclose()
