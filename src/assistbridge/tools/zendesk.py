from __future__ import annotations

import base64
from typing import Any

import httpx
import msgspec

from ..config import ZendeskSettings
from ..logging import get_logger
from ..model import CallerMeta
from . import ZendeskTicketArgs, encode_result

logger = get_logger(__name__)

__all__ = [
    "COMMENT_MAX_CHARS",
    "ZendeskClient",
    "ZendeskError",
    "append_reporter_footer",
    "reporter_footer",
]

COMMENT_MAX_CHARS = 8000


class ZendeskError(RuntimeError):
    pass


def reporter_footer(meta: CallerMeta) -> str:
    return f"\n\n---\nReported by:\nName: {meta.name}\nGID UUID: {meta.gid_uuid}"


def append_reporter_footer(
    comment: str, meta: CallerMeta, *, limit: int = COMMENT_MAX_CHARS
) -> str:
    footer = reporter_footer(meta)
    room = max(0, limit - len(footer))
    return comment[:room] + footer


def _present(**fields: Any) -> dict[str, Any]:
    """Drop unset fields so they are omitted from the request body."""
    return {name: value for name, value in fields.items() if value is not None}


class ZendeskClient:
    def __init__(
        self,
        settings: ZendeskSettings,
        *,
        timeout_s: float = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"https://{settings.subdomain}.zendesk.com/api/v2/tickets.json"
        credentials = f"{settings.email}/token:{settings.api_token}".encode()
        self._auth = f"Basic {base64.b64encode(credentials).decode('ascii')}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_ticket(self, args: ZendeskTicketArgs) -> dict[str, Any]:
        payload = _present(
            subject=args.subject,
            priority=args.priority,
            type=args.type,
            requester=_present(name=args.name, email=args.email),
            comment={"body": args.comment},
        )
        body = {"ticket": payload}
        resp = await self._client.post(
            self._url,
            json=body,
            headers={"Authorization": self._auth},
        )
        if resp.is_error:
            logger.error(
                "zendesk.ticket.failed", status=resp.status_code, body=resp.text
            )
            raise ZendeskError(
                f"Zendesk create ticket failed: {resp.status_code} {resp.text}"
            )
        ticket = resp.json().get("ticket") or {}
        logger.info("zendesk.ticket.created", ticket_id=ticket.get("id"))
        return {
            "ticketId": ticket.get("id"),
            "status": ticket.get("status"),
            "url": ticket.get("url"),
        }

    async def __call__(self, arguments: str) -> str:
        args = msgspec.json.decode(arguments or "{}", type=ZendeskTicketArgs)
        return encode_result(await self.create_ticket(args))
