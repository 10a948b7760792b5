"""Models for Stripe webhook processing."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Outcome = Literal["applied", "noop", "stale", "skipped", "ignored", "duplicate"]


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: dict[str, Any] = Field(default_factory=dict)


class StripeEvent(BaseModel):
    """Canonical Stripe event envelope. Only parsed after the signature checks out."""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False
    data: StripeEventData = Field(default_factory=StripeEventData)


class EventResult(BaseModel):
    event_id: str
    event_type: str
    outcome: Outcome
    tenant_id: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
