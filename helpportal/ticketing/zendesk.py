"""Zendesk-backed ticket provider.

Each portal user maps to a Zendesk end-user whose ``external_id`` is their
Discord user id; ownership is the ticket's ``requester_id``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from helpportal.clients.zendesk_client import ZendeskClient
from helpportal.errors import NotFound, PortalError, ProviderError, ProviderUnavailable
from helpportal.schemas.tickets import (
    AddCommentInput,
    CreateTicketInput,
    CreateTicketResult,
    Ticket,
    TicketComment,
    TicketDetail,
)
from helpportal.templates.jira_templates import METADATA_SEPARATOR, PORTAL_SIGNATURE, strip_metadata
from helpportal.ticketing.base import ZENDESK_PRIORITIES, display_status, zendesk_status_category
from helpportal.utils.timestamps import parse_provider_timestamp

logger = logging.getLogger(__name__)


def build_description(data: CreateTicketInput) -> str:
    lines = [
        data.description,
        "",
        METADATA_SEPARATOR,
        f"Discord User ID: {data.user_id}",
        f"Discord Username: {data.username}",
    ]
    if data.server_id:
        lines.append(f"Discord Server ID: {data.server_id}")
    lines.append(PORTAL_SIGNATURE)
    return "\n".join(lines)


def _to_ticket(raw: dict) -> Ticket:
    return Ticket(
        id=str(raw.get("id", "")),
        subject=raw.get("subject") or "",
        status=display_status(raw.get("status")),
        status_category=zendesk_status_category(raw.get("status")),
        requester=str(raw["requester_id"]) if raw.get("requester_id") is not None else None,
        priority=display_status(raw["priority"]) if raw.get("priority") else None,
        created_at=parse_provider_timestamp(raw.get("created_at")),
        updated_at=parse_provider_timestamp(raw.get("updated_at")),
    )


class ZendeskTicketProvider:
    name = "zendesk"

    def __init__(self, client: ZendeskClient, group_id: str | None = None) -> None:
        self._client = client
        self._group_id = group_id

    async def _end_user(self, user_id: str, username: str, email: str | None = None) -> dict:
        user = await self._client.find_user_by_external_id(user_id)
        if user is None:
            user = await self._client.create_or_update_user(username or "Unknown", user_id, email)
        return user

    async def list_tickets(self, user_id: str, username: str) -> list[Ticket]:
        # Listing never creates a Zendesk user; no user simply means no tickets
        user = await self._client.find_user_by_external_id(user_id)
        if user is None:
            return []
        return [_to_ticket(raw) for raw in await self._client.list_requested_tickets(user["id"])]

    async def get_ticket(self, ticket_id: str, user_id: str) -> Optional[TicketDetail]:
        if not ticket_id.isdigit():
            return None
        try:
            raw = await self._client.get_ticket(ticket_id)
        except NotFound:
            return None
        user = await self._client.find_user_by_external_id(user_id)
        if user is None or raw.get("requester_id") != user.get("id"):
            return None

        comments = [
            TicketComment(
                id=str(c.get("id", "")),
                author="You" if c.get("author_id") == user["id"] else "Support Team",
                body=strip_metadata(c.get("body") or ""),
                created_at=parse_provider_timestamp(c.get("created_at")),
                is_staff=c.get("author_id") != user["id"],
            )
            # the first comment is the ticket description itself
            for c in (await self._client.get_comments(ticket_id))[1:]
            if c.get("public")
        ]
        return TicketDetail(
            **_to_ticket(raw).model_dump(),
            description=strip_metadata(raw.get("description") or ""),
            assignee=str(raw["assignee_id"]) if raw.get("assignee_id") is not None else None,
            comments=comments,
        )

    async def create_ticket(self, data: CreateTicketInput) -> CreateTicketResult:
        try:
            user = await self._end_user(data.user_id, data.username, data.requester_email)
            ticket = {
                "subject": data.summary,
                "comment": {"body": build_description(data)},
                "priority": ZENDESK_PRIORITIES.get(data.priority, "normal"),
                "tags": data.labels,
                "requester_id": user["id"],
                "external_id": f"discord:{data.user_id}",
            }
            if self._group_id:
                ticket["group_id"] = int(self._group_id) if self._group_id.isdigit() else self._group_id
            created = await self._client.create_ticket(ticket)
        except ProviderUnavailable:
            raise
        except ProviderError as exc:
            logger.warning("Zendesk rejected ticket creation on %s: %s", self._client.subdomain, exc.detail)
            return CreateTicketResult(success=False, error="Failed to create Zendesk ticket")
        return CreateTicketResult(success=True, ticket_id=str(created.get("id", "")))

    async def add_comment(self, data: AddCommentInput) -> bool:
        if not data.ticket_id.isdigit():
            return False
        try:
            raw = await self._client.get_ticket(data.ticket_id)
        except NotFound:
            return False
        user = await self._client.find_user_by_external_id(data.user_id)
        if user is None or raw.get("requester_id") != user.get("id"):
            return False
        await self._client.add_comment(data.ticket_id, data.message.strip(), author_id=user["id"])
        return True

    async def test_connection(self) -> bool:
        try:
            me = await self._client.me()
        except (PortalError, httpx.HTTPError) as exc:
            logger.info("Zendesk connection test failed for %s: %s", self._client.subdomain, exc)
            return False
        return bool(me.get("id"))
