"""Inbound webhook routes."""

import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.database import get_db
from helpportal.errors import InternalError, PortalError
from helpportal.handlers.billing_events import process_event, verify_and_parse
from helpportal.schemas.billing import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> WebhookAck:
    """Receive a Stripe event.

    Signature failures answer 400 and are final. Anything that goes wrong
    after verification answers 500 so Stripe redelivers; replays of events
    already processed are acknowledged without being applied again.
    """
    raw_body = await request.body()
    event = verify_and_parse(raw_body, stripe_signature)
    try:
        await process_event(db, event)
    except PortalError:
        raise
    except Exception as exc:
        logger.exception("Stripe event %s (%s) failed", event.id, event.type)
        raise InternalError(str(exc), public_message="Webhook handler failed") from exc
    return WebhookAck()
