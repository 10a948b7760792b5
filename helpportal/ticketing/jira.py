"""Jira-backed ticket provider.

Portal tickets are ordinary issues in the tenant's project. Ownership lives in
a metadata footer appended to the description, which is also what listing
searches on.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

from helpportal.clients.jira_client import JiraClient
from helpportal.errors import NotFound, PortalError, ProviderError, ProviderUnavailable
from helpportal.schemas.tickets import (
    AddCommentInput,
    CreateTicketInput,
    CreateTicketResult,
    Ticket,
    TicketComment,
    TicketDetail,
)
from helpportal.templates.jira_templates import (
    adf_to_text,
    build_comment_body,
    build_issue_fields,
    owner_id_from_description,
    strip_metadata,
)
from helpportal.ticketing.base import display_status, jira_status_category
from helpportal.utils.timestamps import parse_provider_timestamp

logger = logging.getLogger(__name__)


def _jql_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def owned_by(description: str, user_id: str) -> bool:
    """True if the description's footer names ``user_id``.

    Older tickets without a parseable footer fall back to a whole-word match
    on the id anywhere in the text.
    """
    if not user_id:
        return False
    owner = owner_id_from_description(description)
    if owner is not None:
        return owner == user_id
    return re.search(rf"\b{re.escape(user_id)}\b", description) is not None


def _issue_to_ticket(issue: dict) -> Ticket:
    fields = issue.get("fields") or {}
    status = fields.get("status") or {}
    return Ticket(
        id=issue.get("key", ""),
        subject=fields.get("summary") or "",
        status=display_status(status.get("name")),
        status_category=jira_status_category((status.get("statusCategory") or {}).get("key")),
        requester=(fields.get("reporter") or {}).get("displayName"),
        priority=(fields.get("priority") or {}).get("name"),
        created_at=parse_provider_timestamp(fields.get("created")),
        updated_at=parse_provider_timestamp(fields.get("updated")),
    )


class JiraTicketProvider:
    name = "jira"

    def __init__(self, client: JiraClient, project_key: str) -> None:
        self._client = client
        self._project_key = project_key

    async def list_tickets(self, user_id: str, username: str) -> list[Ticket]:
        clauses = [f'description ~ "{_jql_string(user_id)}"']
        if username:
            clauses.append(f'description ~ "{_jql_string(username)}"')
        jql = (
            f'project = "{_jql_string(self._project_key)}" AND ({" OR ".join(clauses)}) '
            "ORDER BY created DESC"
        )
        issues = await self._client.search_issues(jql)
        # Text search is fuzzy; only keep issues whose footer really is this user's
        return [
            _issue_to_ticket(issue)
            for issue in issues
            if owned_by(adf_to_text((issue.get("fields") or {}).get("description")), user_id)
        ]

    async def get_ticket(self, ticket_id: str, user_id: str) -> Optional[TicketDetail]:
        try:
            issue = await self._client.get_issue(ticket_id)
        except NotFound:
            return None
        description = adf_to_text((issue.get("fields") or {}).get("description"))
        if not owned_by(description, user_id):
            return None

        raw_comments = await self._client.get_comments(ticket_id)
        comments = []
        for raw in raw_comments:
            body = adf_to_text(raw.get("body"))
            mine = f"Discord User ID: {user_id}" in body
            author = (raw.get("author") or {}).get("displayName", "")
            if mine:
                label = "You"
            elif "system" in author.lower():
                label = "System"
            else:
                label = "Support Team"
            comments.append(
                TicketComment(
                    id=str(raw.get("id", "")),
                    author=label,
                    body=strip_metadata(body),
                    created_at=parse_provider_timestamp(raw.get("created")),
                    is_staff=not mine,
                )
            )

        ticket = _issue_to_ticket(issue)
        fields = issue.get("fields") or {}
        return TicketDetail(
            **ticket.model_dump(),
            description=strip_metadata(description),
            assignee=(fields.get("assignee") or {}).get("displayName"),
            comments=comments,
        )

    async def create_ticket(self, data: CreateTicketInput) -> CreateTicketResult:
        try:
            created = await self._client.create_issue(build_issue_fields(self._project_key, data))
        except ProviderUnavailable:
            raise
        except ProviderError as exc:
            logger.warning("Jira rejected ticket creation in %s: %s", self._project_key, exc.detail)
            return CreateTicketResult(success=False, error="Failed to create Jira ticket")
        return CreateTicketResult(success=True, ticket_id=created.get("key"))

    async def add_comment(self, data: AddCommentInput) -> bool:
        try:
            issue = await self._client.get_issue(data.ticket_id)
        except NotFound:
            return False
        description = adf_to_text((issue.get("fields") or {}).get("description"))
        if not owned_by(description, data.user_id):
            return False
        await self._client.add_comment(
            data.ticket_id, build_comment_body(data.message, data.user_id, data.username)
        )
        return True

    async def test_connection(self) -> bool:
        try:
            me = await self._client.myself()
        except (PortalError, httpx.HTTPError) as exc:
            logger.info("Jira connection test failed: %s", exc)
            return False
        return isinstance(me, dict) and bool(me.get("accountId"))
