"""Ticket provider contract and the normalization rules shared by providers."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from helpportal.schemas.tickets import (
    AddCommentInput,
    CreateTicketInput,
    CreateTicketResult,
    StatusCategory,
    Ticket,
    TicketDetail,
)

UNKNOWN_STATUS = "Unknown"

_JIRA_CATEGORIES = {"new", "indeterminate", "done"}

_ZENDESK_CATEGORIES = {
    "new": "new",
    "open": "indeterminate",
    "pending": "indeterminate",
    "hold": "indeterminate",
    "solved": "done",
    "closed": "done",
}

# Portal priorities -> Zendesk's four-level scale
ZENDESK_PRIORITIES = {
    "highest": "urgent",
    "high": "high",
    "medium": "normal",
    "low": "low",
    "lowest": "low",
}


def jira_status_category(key: str | None) -> StatusCategory:
    key = (key or "").lower()
    return key if key in _JIRA_CATEGORIES else "unknown"


def zendesk_status_category(status: str | None) -> StatusCategory:
    return _ZENDESK_CATEGORIES.get((status or "").lower(), "unknown")


def display_status(name: str | None) -> str:
    """Provider status label for display, capitalised; blank becomes "Unknown"."""
    name = (name or "").strip()
    if not name:
        return UNKNOWN_STATUS
    return name[0].upper() + name[1:]


@runtime_checkable
class TicketProvider(Protocol):
    """What the ticket routes need from a ticketing backend.

    ``get_ticket`` returns None both for missing tickets and for tickets the
    user does not own, so callers cannot discover other users' tickets.
    """

    name: str

    async def list_tickets(self, user_id: str, username: str) -> list[Ticket]: ...

    async def get_ticket(self, ticket_id: str, user_id: str) -> Optional[TicketDetail]: ...

    async def create_ticket(self, data: CreateTicketInput) -> CreateTicketResult: ...

    async def add_comment(self, data: AddCommentInput) -> bool: ...

    async def test_connection(self) -> bool: ...
