"""Tests for onboarding status."""

from datetime import datetime, timedelta, timezone

from httpx import ASGITransport, AsyncClient

from helpportal.database import async_session
from helpportal.main import app
from helpportal.models.subscription import Subscription
from helpportal.models.tenant import Tenant, TenantJiraConfig, TenantZendeskConfig


async def _seed(*, status: str | None = None, provider: str | None = None, automation: bool = False):
    async with async_session() as db:
        db.add(Tenant(id="t1", slug="acme", name="Acme", owner_user_id="u1", ticket_provider=provider))
        await db.flush()
        if status is not None:
            db.add(Subscription(tenant_id="t1", status=status))
        if provider == "jira":
            db.add(TenantJiraConfig(
                tenant_id="t1",
                connected=True,
                cloud_id="cloud-1",
                access_token="at",
                refresh_token="rt",
                token_expiry=datetime.now(timezone.utc) + timedelta(hours=1),
                project_key="SUP",
                automation_rule_created=automation,
            ))
        elif provider == "zendesk":
            db.add(TenantZendeskConfig(tenant_id="t1", connected=True, subdomain="acme"))
        await db.commit()


async def _status(headers=None):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/api/v1/onboarding/status", headers=headers or {"X-Portal-User-Id": "u1"})
    assert resp.status_code == 200
    return resp.json()


async def test_no_tenant_starts_onboarding():
    body = await _status()

    assert body["onboarded"] is False
    assert body["step"] == "onboarding"
    assert body["tenant"] is None


async def test_unpaid_tenant_must_subscribe():
    await _seed()

    body = await _status()

    assert body["step"] == "subscribe"
    assert body["steps"]["tenant_created"] is True
    assert body["tenant"]["slug"] == "acme"


async def test_canceled_tenant_must_resubscribe():
    await _seed(status="canceled", provider="zendesk")

    assert (await _status())["step"] == "resubscribe"


async def test_paid_tenant_without_provider_connects_one():
    await _seed(status="active")

    body = await _status()

    assert body["step"] == "connect_provider"
    assert body["steps"]["subscription_active"] is True


async def test_past_due_keeps_access():
    await _seed(status="past_due", provider="zendesk")

    body = await _status()

    assert body["step"] == "dashboard"
    assert body["onboarded"] is True


async def test_connected_jira_reaches_dashboard_and_reports_automation():
    await _seed(status="active", provider="jira", automation=True)

    body = await _status({"X-Portal-User-Id": "u1", "X-Portal-Tenant-Id": "t1"})

    assert body["step"] == "dashboard"
    assert body["steps"]["provider_connected"] is True
    assert body["steps"]["automation_configured"] is True
    assert body["tenant"]["ticket_provider"] == "jira"


async def test_other_users_tenant_is_invisible():
    await _seed(status="active", provider="zendesk")

    body = await _status({"X-Portal-User-Id": "u2", "X-Portal-Tenant-Id": "t1"})

    assert body["step"] == "onboarding"
    assert body["tenant"] is None
