"""Zendesk Support API v2 client (email/token Basic auth)."""

from __future__ import annotations

import base64
import logging
import re
from urllib.parse import quote

import httpx

from helpportal.clients.http import json_body, send
from helpportal.config import settings
from helpportal.errors import ValidationError

logger = logging.getLogger(__name__)

_SUBDOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def normalize_zendesk_subdomain(value: str) -> str:
    """Reduce whatever the admin pasted to the bare subdomain.

    ``"https://Acme.zendesk.com/agent"`` -> ``"acme"``.
    """
    subdomain = value.strip().lower()
    subdomain = re.sub(r"^https?://", "", subdomain)
    subdomain = subdomain.split("/", 1)[0]
    return subdomain.removesuffix(".zendesk.com")


class ZendeskClient:
    def __init__(
        self,
        subdomain: str,
        email: str,
        api_token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        subdomain = normalize_zendesk_subdomain(subdomain)
        if not _SUBDOMAIN_RE.match(subdomain):
            raise ValidationError("Invalid Zendesk subdomain", field="subdomain")
        self.subdomain = subdomain
        self._base_url = f"https://{subdomain}.zendesk.com/api/v2"
        credentials = base64.b64encode(f"{email}/token:{api_token}".encode()).decode()
        self._headers = {
            "Authorization": f"Basic {credentials}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        async with httpx.AsyncClient(
            timeout=settings.provider_timeout_seconds, transport=self._transport
        ) as client:
            resp = await send(
                client,
                method,
                f"{self._base_url}{path}",
                provider="zendesk",
                headers=self._headers,
                **kwargs,
            )
            data = json_body(resp, provider="zendesk")
            return data if isinstance(data, dict) else {}

    async def me(self) -> dict:
        data = await self._request("GET", "/users/me.json")
        return data.get("user") or {}

    async def find_user_by_external_id(self, external_id: str) -> dict | None:
        data = await self._request("GET", f"/users/search.json?external_id={quote(external_id)}")
        users = data.get("users") or []
        return users[0] if users else None

    async def create_or_update_user(self, name: str, external_id: str, email: str | None = None) -> dict:
        user: dict = {"name": name, "external_id": external_id, "role": "end-user"}
        if email:
            user["email"] = email
            user["verified"] = True
        data = await self._request("POST", "/users/create_or_update.json", json={"user": user})
        return data.get("user") or {}

    async def list_requested_tickets(self, user_id: int | str) -> list[dict]:
        data = await self._request(
            "GET", f"/users/{user_id}/tickets/requested.json?sort_by=updated_at&sort_order=desc"
        )
        return data.get("tickets") or []

    async def get_ticket(self, ticket_id: str) -> dict:
        data = await self._request("GET", f"/tickets/{quote(ticket_id)}.json")
        return data.get("ticket") or {}

    async def get_comments(self, ticket_id: str) -> list[dict]:
        data = await self._request("GET", f"/tickets/{quote(ticket_id)}/comments.json")
        return data.get("comments") or []

    async def create_ticket(self, ticket: dict) -> dict:
        data = await self._request("POST", "/tickets.json", json={"ticket": ticket})
        created = data.get("ticket") or {}
        logger.info("Zendesk ticket created: %s", created.get("id"))
        return created

    async def add_comment(self, ticket_id: str, body: str, author_id: int | None = None) -> None:
        comment: dict = {"body": body, "public": True}
        if author_id is not None:
            comment["author_id"] = author_id
        await self._request("PUT", f"/tickets/{quote(ticket_id)}.json", json={"ticket": {"comment": comment}})
        logger.info("Zendesk comment added to %s", ticket_id)
