from __future__ import annotations

import httpx
import msgspec

from .logging import get_logger
from .model import CallerMeta
from .store import KeyValueStore

logger = get_logger(__name__)

__all__ = ["IdentityClient", "IdentityError", "IdentityResponse"]

CACHE_NAMESPACE = "user-"


class IdentityError(RuntimeError):
    pass


class IdentityResponse(msgspec.Struct, forbid_unknown_fields=False):
    gid_uuid: str
    name: str
    display_name: str | None = None
    profile_photo: str | None = None
    created_at: str | None = None
    public_key: str | None = None
    country_code: str | None = None
    type: str | None = None

    def meta(self) -> CallerMeta:
        return CallerMeta(name=self.name, gid_uuid=self.gid_uuid)


class IdentityClient:
    """Directory lookups for chat senders, cached in the key-value store."""

    def __init__(
        self,
        api_url: str,
        *,
        cache: KeyValueStore,
        timeout_s: float = 15,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base = f"{api_url.rstrip('/')}/v1"
        self._cache = cache
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _cached(self, cache_key: str) -> IdentityResponse | None:
        raw = await self._cache.read(cache_key)
        if raw is None:
            return None
        try:
            return msgspec.json.decode(raw, type=IdentityResponse)
        except msgspec.DecodeError:
            logger.warning("identity.cache_invalid", key=cache_key)
            return None

    async def lookup(self, user: str) -> IdentityResponse:
        cache_key = f"{CACHE_NAMESPACE}{user}"
        cached = await self._cached(cache_key)
        if cached is not None:
            return cached
        try:
            resp = await self._client.get(f"{self._base}/directory/{user}")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "identity.lookup_failed",
                user=user,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            raise IdentityError(f"identity lookup failed for {user}: {exc}") from exc
        try:
            identity = msgspec.json.decode(resp.content, type=IdentityResponse)
        except msgspec.DecodeError as exc:
            logger.error("identity.bad_response", user=user, body=resp.text)
            raise IdentityError(f"invalid identity payload for {user}") from exc
        await self._cache.write(cache_key, msgspec.json.encode(identity).decode("utf-8"))
        return identity
