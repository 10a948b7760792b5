"""Provider-agnostic ticket models returned by every ticket provider."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

StatusCategory = Literal["new", "indeterminate", "done", "unknown"]
Priority = Literal["lowest", "low", "medium", "high", "highest"]


class Ticket(BaseModel):
    """Normalized list view of a ticket. Built per request, never persisted."""

    id: str
    subject: str = ""
    status: str = "Unknown"
    status_category: StatusCategory = "unknown"
    requester: Optional[str] = None
    priority: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TicketComment(BaseModel):
    id: str
    author: str
    body: str
    created_at: Optional[datetime] = None
    is_staff: bool = True


class TicketDetail(Ticket):
    description: str = ""
    assignee: Optional[str] = None
    comments: list[TicketComment] = Field(default_factory=list)


class CreateTicketInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    priority: Priority = "medium"
    labels: list[str] = Field(default_factory=list)
    user_id: str = ""
    username: str = ""
    server_id: Optional[str] = None
    requester_email: Optional[str] = None


class AddCommentInput(BaseModel):
    ticket_id: str
    message: str = Field(min_length=1)
    user_id: str = ""
    username: str = ""


class CreateTicketResult(BaseModel):
    success: bool
    ticket_id: Optional[str] = None
    error: Optional[str] = None


class CreateTicketRequest(BaseModel):
    """Body of POST /tickets; the submitter identity comes from the session."""

    model_config = ConfigDict(extra="ignore")

    summary: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    priority: Priority = "medium"
    labels: list[str] = Field(default_factory=list)
    server_id: Optional[str] = None
    requester_email: Optional[str] = None


class AddCommentRequest(BaseModel):
    message: str = Field(min_length=1)


class TicketListResponse(BaseModel):
    success: bool = True
    tickets: list[Ticket] = Field(default_factory=list)


class TicketDetailResponse(BaseModel):
    success: bool = True
    ticket: TicketDetail
