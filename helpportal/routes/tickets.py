"""Ticket routes for portal end users. Every call is scoped to the session tenant."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.auth import SessionUser, get_tenant_user
from helpportal.database import get_db
from helpportal.errors import NotFound, ProviderError
from helpportal.schemas.tickets import (
    AddCommentInput,
    AddCommentRequest,
    CreateTicketInput,
    CreateTicketRequest,
    CreateTicketResult,
    TicketDetailResponse,
    TicketListResponse,
)
from helpportal.ticketing.factory import get_ticket_provider

router = APIRouter(tags=["tickets"])


@router.get("/tickets", response_model=TicketListResponse)
async def list_tickets(
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> TicketListResponse:
    provider = await get_ticket_provider(db, user.tenant_id)
    tickets = await provider.list_tickets(user.user_id, user.username)
    return TicketListResponse(tickets=tickets)


@router.get("/tickets/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(
    ticket_id: str,
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> TicketDetailResponse:
    provider = await get_ticket_provider(db, user.tenant_id)
    ticket = await provider.get_ticket(ticket_id, user.user_id)
    if ticket is None:
        raise NotFound(f"ticket {ticket_id}", public_message="Ticket not found")
    return TicketDetailResponse(ticket=ticket)


@router.post("/tickets", response_model=CreateTicketResult)
async def create_ticket(
    body: CreateTicketRequest,
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> CreateTicketResult:
    provider = await get_ticket_provider(db, user.tenant_id)
    result = await provider.create_ticket(
        CreateTicketInput(**body.model_dump(), user_id=user.user_id, username=user.username)
    )
    if not result.success:
        raise ProviderError(result.error or "", public_message=result.error or "Failed to create ticket")
    return result


@router.post("/tickets/{ticket_id}/comments")
async def add_comment(
    ticket_id: str,
    body: AddCommentRequest,
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    provider = await get_ticket_provider(db, user.tenant_id)
    added = await provider.add_comment(
        AddCommentInput(
            ticket_id=ticket_id,
            message=body.message,
            user_id=user.user_id,
            username=user.username,
        )
    )
    if not added:
        raise NotFound(f"ticket {ticket_id}", public_message="Ticket not found")
    return {"success": True}
