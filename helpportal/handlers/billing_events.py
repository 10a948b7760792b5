"""Stripe webhook processing: verify, dedupe, order, then apply.

Stripe delivers at least once and in no particular order. Two guards make
replays harmless:

- every processed event id is recorded in ``processed_webhook_events``; a
  replayed id is acknowledged without running its handler
- each subscription remembers the ``created`` time of the newest event
  applied to it, and older events are acknowledged as stale
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import pydantic
import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.config import settings
from helpportal.errors import InternalError, InvalidSignature
from helpportal.models.subscription import ACTIVE, CANCELED, INCOMPLETE, PAST_DUE, Subscription
from helpportal.models.tenant import Tenant
from helpportal.models.webhook_event import ProcessedWebhookEvent
from helpportal.schemas.billing import EventResult, Outcome, StripeEvent
from helpportal.utils.timestamps import as_utc, from_epoch

logger = logging.getLogger(__name__)

# Stripe subscription.status -> local status. Unlisted values keep the current one.
STRIPE_STATUS_MAP = {
    "active": ACTIVE,
    "trialing": ACTIVE,
    "past_due": PAST_DUE,
    "unpaid": PAST_DUE,
    "canceled": CANCELED,
    "incomplete_expired": CANCELED,
    "incomplete": INCOMPLETE,
}

HandlerResult = tuple[Outcome, Optional[str]]
Handler = Callable[[AsyncSession, StripeEvent], Awaitable[HandlerResult]]


def verify_and_parse(raw_body: bytes, sig_header: str | None) -> StripeEvent:
    """Check the Stripe-Signature header over the exact raw body, then parse.

    Nothing in the body is looked at before the signature checks out.
    """
    secret = settings.stripe_webhook_secret
    if not secret:
        raise InternalError("PORTAL_STRIPE_WEBHOOK_SECRET is not set")
    if not sig_header:
        logger.warning("Stripe webhook rejected: missing Stripe-Signature header")
        raise InvalidSignature("missing Stripe-Signature header")
    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        logger.warning("Stripe webhook rejected: body is not UTF-8")
        raise InvalidSignature("body is not UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(
            payload, sig_header, secret, tolerance=settings.stripe_webhook_tolerance_seconds
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe webhook rejected: %s", exc)
        raise InvalidSignature(str(exc)) from exc

    try:
        return StripeEvent.model_validate_json(payload)
    except pydantic.ValidationError as exc:
        logger.error("Signed Stripe payload failed to parse: %s", exc)
        raise InternalError(f"malformed event payload: {exc}", public_message="Webhook handler failed") from exc


def _first_item(obj: dict) -> dict:
    items = (obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _same(current: Any, target: Any) -> bool:
    if isinstance(target, datetime):
        return as_utc(current) == target
    return current == target


def _apply(sub: Subscription, event_at: datetime | None, target: dict[str, Any]) -> Outcome:
    """Write only the fields that differ from ``target``; skip out-of-order events."""
    last = as_utc(sub.last_event_at)
    if event_at is not None and last is not None and event_at < last:
        return "stale"
    # Noop events still advance the watermark
    if event_at is not None and (last is None or event_at > last):
        sub.last_event_at = event_at
    changes = {field: value for field, value in target.items() if not _same(getattr(sub, field), value)}
    if not changes:
        return "noop"
    for field, value in changes.items():
        setattr(sub, field, value)
    return "applied"


async def _find_subscription(
    db: AsyncSession, stripe_subscription_id: str | None, tenant_id: str | None = None
) -> Subscription | None:
    if stripe_subscription_id:
        result = await db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        )
        sub = result.scalar_one_or_none()
        if sub is not None:
            return sub
    if tenant_id:
        result = await db.execute(select(Subscription).where(Subscription.tenant_id == tenant_id))
        return result.scalar_one_or_none()
    return None


def _invoice_subscription_id(invoice: dict) -> str | None:
    # Newer API versions moved the subscription under parent.subscription_details
    sub_id = invoice.get("subscription")
    if sub_id:
        return sub_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


async def handle_checkout_completed(db: AsyncSession, event: StripeEvent) -> HandlerResult:
    session = event.data.object
    tenant_id = (session.get("metadata") or {}).get("tenant_id")
    stripe_subscription_id = session.get("subscription")
    if not tenant_id or not stripe_subscription_id:
        logger.warning("checkout.session.completed %s: missing tenant_id or subscription; skipped", event.id)
        return "skipped", tenant_id
    if await db.get(Tenant, tenant_id) is None:
        logger.warning("checkout.session.completed %s: unknown tenant %s; skipped", event.id, tenant_id)
        return "skipped", tenant_id

    sub = await _find_subscription(db, stripe_subscription_id, tenant_id)
    if sub is None:
        sub = Subscription(tenant_id=tenant_id, status=INCOMPLETE, cancel_at_period_end=False)
        db.add(sub)

    target: dict[str, Any] = {
        "status": ACTIVE,
        "stripe_customer_id": session.get("customer"),
        "stripe_subscription_id": stripe_subscription_id,
    }
    plan = (session.get("metadata") or {}).get("plan")
    if plan:
        target["plan"] = plan
    return _apply(sub, from_epoch(event.created), target), tenant_id


async def handle_invoice_paid(db: AsyncSession, event: StripeEvent) -> HandlerResult:
    invoice = event.data.object
    sub = await _find_subscription(db, _invoice_subscription_id(invoice))
    if sub is None:
        logger.info("invoice.paid %s: no local subscription; skipped", event.id)
        return "skipped", None

    target: dict[str, Any] = {"status": ACTIVE}
    lines = (invoice.get("lines") or {}).get("data") or []
    period_end = from_epoch(((lines[0] if lines else {}).get("period") or {}).get("end"))
    if period_end is not None:
        target["current_period_end"] = period_end
    return _apply(sub, from_epoch(event.created), target), sub.tenant_id


async def handle_invoice_payment_failed(db: AsyncSession, event: StripeEvent) -> HandlerResult:
    sub = await _find_subscription(db, _invoice_subscription_id(event.data.object))
    if sub is None:
        logger.info("invoice.payment_failed %s: no local subscription; skipped", event.id)
        return "skipped", None
    # Payment failures leave a canceled subscription canceled
    target = {} if sub.status == CANCELED else {"status": PAST_DUE}
    return _apply(sub, from_epoch(event.created), target), sub.tenant_id


async def handle_subscription_updated(db: AsyncSession, event: StripeEvent) -> HandlerResult:
    obj = event.data.object
    tenant_id = (obj.get("metadata") or {}).get("tenant_id")
    sub = await _find_subscription(db, obj.get("id"), tenant_id)
    if sub is None:
        logger.info("customer.subscription.updated %s: no local subscription; skipped", event.id)
        return "skipped", tenant_id

    item = _first_item(obj)
    price_id = (item.get("price") or {}).get("id")
    target: dict[str, Any] = {
        "status": STRIPE_STATUS_MAP.get(obj.get("status"), sub.status),
        "cancel_at_period_end": bool(obj.get("cancel_at_period_end") or obj.get("cancel_at")),
    }
    if obj.get("id"):
        target["stripe_subscription_id"] = obj["id"]
    if price_id:
        target["stripe_price_id"] = price_id
        plan = settings.stripe_price_plans.get(price_id)
        if plan:
            target["plan"] = plan
    period_end = from_epoch(obj.get("current_period_end") or item.get("current_period_end"))
    if period_end is not None:
        target["current_period_end"] = period_end
    return _apply(sub, from_epoch(event.created), target), sub.tenant_id


async def handle_subscription_deleted(db: AsyncSession, event: StripeEvent) -> HandlerResult:
    obj = event.data.object
    sub = await _find_subscription(db, obj.get("id"), (obj.get("metadata") or {}).get("tenant_id"))
    if sub is None:
        logger.info("customer.subscription.deleted %s: no local subscription; skipped", event.id)
        return "skipped", None
    return _apply(sub, from_epoch(event.created), {"status": CANCELED, "cancel_at_period_end": False}), sub.tenant_id


EVENT_HANDLERS: dict[str, Handler] = {
    "checkout.session.completed": handle_checkout_completed,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}


async def _already_processed(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(
        select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
    )
    return result.scalar_one_or_none() is not None


async def process_event(db: AsyncSession, event: StripeEvent) -> EventResult:
    """Apply one verified event and record it, in a single transaction.

    Handler errors roll the transaction back and propagate so the route can
    answer 500 and Stripe retries the delivery.
    """
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info("Ignoring Stripe event %s of unhandled type %s", event.id, event.type)
        return EventResult(event_id=event.id, event_type=event.type, outcome="ignored")

    if await _already_processed(db, event.id):
        logger.info("Stripe event %s already processed; skipping", event.id)
        return EventResult(event_id=event.id, event_type=event.type, outcome="duplicate")

    try:
        outcome, tenant_id = await handler(db, event)
        db.add(
            ProcessedWebhookEvent(
                event_id=event.id,
                event_type=event.type,
                tenant_id=tenant_id,
                outcome=outcome,
            )
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # A concurrent delivery of the same event committed first
        if await _already_processed(db, event.id):
            logger.info("Stripe event %s processed concurrently; skipping", event.id)
            return EventResult(event_id=event.id, event_type=event.type, outcome="duplicate")
        raise
    except Exception:
        await db.rollback()
        raise

    logger.info("Stripe event %s (%s) -> %s for tenant %s", event.id, event.type, outcome, tenant_id)
    return EventResult(event_id=event.id, event_type=event.type, outcome=outcome, tenant_id=tenant_id)
