"""Tests for Stripe event processing against the subscription table."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from helpportal.database import async_session
from helpportal.handlers.billing_events import process_event
from helpportal.models.subscription import Subscription
from helpportal.models.tenant import Tenant
from helpportal.models.webhook_event import ProcessedWebhookEvent
from helpportal.schemas.billing import StripeEvent
from helpportal.utils.timestamps import as_utc

T0 = 1_772_000_000
PERIOD_END = 1_774_600_000


def _event(event_type: str, obj: dict, *, event_id: str = "evt_1", created: int = T0) -> StripeEvent:
    return StripeEvent(id=event_id, type=event_type, created=created, data={"object": obj})


def _checkout(**overrides) -> StripeEvent:
    obj = {
        "id": "cs_1",
        "mode": "subscription",
        "customer": "cus_1",
        "subscription": "sub_1",
        "metadata": {"tenant_id": "t1", "plan": "pro"},
    }
    obj.update(overrides)
    return _event("checkout.session.completed", obj, event_id="evt_checkout", created=T0 - 100)


def _invoice(event_type="invoice.paid", *, event_id="evt_inv", created=T0, period_end=PERIOD_END) -> StripeEvent:
    return _event(
        event_type,
        {
            "id": "in_1",
            "subscription": "sub_1",
            "lines": {"data": [{"period": {"start": period_end - 2_592_000, "end": period_end}}]},
        },
        event_id=event_id,
        created=created,
    )


async def _seed_tenant():
    async with async_session() as db:
        db.add(Tenant(id="t1", slug="acme", name="Acme", owner_user_id="u1"))
        await db.commit()


async def _process(event: StripeEvent):
    async with async_session() as db:
        return await process_event(db, event)


async def _subscription() -> Subscription:
    async with async_session() as db:
        return (await db.execute(select(Subscription).where(Subscription.tenant_id == "t1"))).scalar_one()


async def _ledger_count() -> int:
    async with async_session() as db:
        return (await db.execute(select(func.count()).select_from(ProcessedWebhookEvent))).scalar_one()


async def test_checkout_creates_active_subscription():
    await _seed_tenant()

    result = await _process(_checkout())

    assert result.outcome == "applied"
    assert result.tenant_id == "t1"
    sub = await _subscription()
    assert sub.status == "active"
    assert sub.stripe_customer_id == "cus_1"
    assert sub.stripe_subscription_id == "sub_1"
    assert sub.plan == "pro"


async def test_checkout_without_tenant_metadata_is_skipped():
    await _seed_tenant()

    result = await _process(_checkout(metadata={}))

    assert result.outcome == "skipped"
    async with async_session() as db:
        assert (await db.execute(select(Subscription))).scalars().all() == []


async def test_invoice_paid_twice_matches_once():
    await _seed_tenant()
    await _process(_checkout())

    first = await _process(_invoice())
    after_once = await _subscription()
    second = await _process(_invoice())
    after_twice = await _subscription()

    assert first.outcome == "applied"
    assert second.outcome == "duplicate"
    assert after_once.status == after_twice.status == "active"
    assert as_utc(after_twice.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)
    assert after_once.updated_at == after_twice.updated_at


async def test_same_state_from_new_event_id_is_noop():
    await _seed_tenant()
    await _process(_checkout())
    await _process(_invoice(event_id="evt_a"))

    result = await _process(_invoice(event_id="evt_b", created=T0 + 10))

    assert result.outcome == "noop"


async def test_payment_failed_marks_past_due():
    await _seed_tenant()
    await _process(_checkout())

    result = await _process(_invoice("invoice.payment_failed", event_id="evt_fail"))

    assert result.outcome == "applied"
    assert (await _subscription()).status == "past_due"


async def test_payment_failed_does_not_revive_canceled():
    await _seed_tenant()
    await _process(_checkout())
    await _process(_event("customer.subscription.deleted", {"id": "sub_1"}, event_id="evt_del", created=T0))

    result = await _process(_invoice("invoice.payment_failed", event_id="evt_fail", created=T0 + 5))

    assert result.outcome == "noop"
    assert (await _subscription()).status == "canceled"


async def test_noop_event_still_advances_ordering():
    await _seed_tenant()
    await _process(_checkout())
    await _process(_invoice(event_id="evt_paid", created=T0))
    retry = await _process(_invoice(event_id="evt_paid_retry", created=T0 + 120))

    # a failure older than the retried payment, delivered after it
    late = await _process(_invoice("invoice.payment_failed", event_id="evt_fail_late", created=T0 + 60))

    assert retry.outcome == "noop"
    assert late.outcome == "stale"
    sub = await _subscription()
    assert sub.status == "active"
    assert as_utc(sub.last_event_at) == datetime.fromtimestamp(T0 + 120, tz=timezone.utc)


async def test_payment_failed_on_canceled_advances_ordering():
    await _seed_tenant()
    await _process(_checkout())
    await _process(_event("customer.subscription.deleted", {"id": "sub_1"}, event_id="evt_del", created=T0))
    await _process(_invoice("invoice.payment_failed", event_id="evt_fail", created=T0 + 50))

    result = await _process(_invoice("invoice.paid", event_id="evt_paid_late", created=T0 + 20))

    assert result.outcome == "stale"
    assert (await _subscription()).status == "canceled"


async def test_out_of_order_event_is_stale():
    await _seed_tenant()
    await _process(_checkout())
    await _process(_event("customer.subscription.deleted", {"id": "sub_1"}, event_id="evt_del", created=T0 + 60))

    # an invoice older than the deletion, delivered late, must not reactivate
    result = await _process(_invoice("invoice.paid", event_id="evt_late", created=T0 + 30))

    assert result.outcome == "stale"
    assert (await _subscription()).status == "canceled"


async def test_subscription_updated_syncs_fields():
    await _seed_tenant()
    await _process(_checkout())
    obj = {
        "id": "sub_1",
        "status": "past_due",
        "cancel_at_period_end": True,
        "current_period_end": PERIOD_END,
        "items": {"data": [{"price": {"id": "price_team"}}]},
    }

    with patch.dict("helpportal.handlers.billing_events.settings.stripe_price_plans", {"price_team": "team"}):
        result = await _process(_event("customer.subscription.updated", obj, event_id="evt_upd"))

    assert result.outcome == "applied"
    sub = await _subscription()
    assert sub.status == "past_due"
    assert sub.cancel_at_period_end is True
    assert sub.stripe_price_id == "price_team"
    assert sub.plan == "team"
    assert as_utc(sub.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


async def test_subscription_updated_unknown_status_keeps_current():
    await _seed_tenant()
    await _process(_checkout())

    await _process(_event("customer.subscription.updated", {"id": "sub_1", "status": "paused"}, event_id="evt_p"))

    assert (await _subscription()).status == "active"


async def test_unknown_event_type_is_ignored_and_not_recorded():
    await _seed_tenant()
    await _process(_checkout())
    before = await _subscription()

    result = await _process(_event("customer.tax_id.created", {"id": "txi_1"}, event_id="evt_tax"))

    assert result.outcome == "ignored"
    after = await _subscription()
    assert (after.status, after.updated_at) == (before.status, before.updated_at)
    assert await _ledger_count() == 1


async def test_handler_failure_rolls_back_and_is_not_recorded():
    await _seed_tenant()
    await _process(_checkout())

    with patch.dict(
        "helpportal.handlers.billing_events.EVENT_HANDLERS",
        {"invoice.paid": AsyncMock(side_effect=RuntimeError("boom"))},
    ):
        with pytest.raises(RuntimeError):
            await _process(_invoice(event_id="evt_boom"))

    assert await _ledger_count() == 1
    # the retry after the failure goes through normally
    assert (await _process(_invoice(event_id="evt_boom"))).outcome == "applied"
