"""Tenant setup progress, derived from tenant, subscription and integration rows."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.models.subscription import ACTIVE, CANCELED, PAST_DUE, Subscription
from helpportal.models.tenant import Tenant, TenantJiraConfig, TenantZendeskConfig
from helpportal.schemas.onboarding import OnboardingStatus, OnboardingSteps, Step, TenantSummary

logger = logging.getLogger(__name__)

# past_due keeps access while Stripe retries the payment
_ACCESS_STATUSES = (ACTIVE, PAST_DUE)


async def _resolve_tenant(db: AsyncSession, user_id: str, tenant_id: str | None) -> Tenant | None:
    if tenant_id:
        tenant = await db.get(Tenant, tenant_id)
        if tenant is not None and tenant.owner_user_id == user_id:
            return tenant
        return None
    result = await db.execute(
        select(Tenant).where(Tenant.owner_user_id == user_id).order_by(Tenant.created_at).limit(1)
    )
    return result.scalar_one_or_none()


async def provider_connected(db: AsyncSession, tenant: Tenant) -> tuple[bool, bool]:
    """Return ``(connected, automation_configured)`` for the tenant's chosen provider."""
    if tenant.ticket_provider == "jira":
        config = await db.get(TenantJiraConfig, tenant.id)
        if config is None or not config.connected:
            return False, False
        ready = config.basic_ready() if config.auth_mode == "basic" else config.oauth_ready()
        return ready and bool(config.project_key), bool(config.automation_rule_created)
    if tenant.ticket_provider == "zendesk":
        config = await db.get(TenantZendeskConfig, tenant.id)
        return bool(config is not None and config.connected), False
    return False, False


async def get_onboarding_status(db: AsyncSession, user_id: str, tenant_id: str | None = None) -> OnboardingStatus:
    tenant = await _resolve_tenant(db, user_id, tenant_id)
    if tenant is None:
        return OnboardingStatus(onboarded=False, step="onboarding", steps=OnboardingSteps())

    result = await db.execute(select(Subscription).where(Subscription.tenant_id == tenant.id))
    subscription = result.scalar_one_or_none()
    has_access = subscription is not None and subscription.status in _ACCESS_STATUSES
    connected, automation = await provider_connected(db, tenant)

    step: Step
    if subscription is not None and subscription.status == CANCELED:
        step = "resubscribe"
    elif not has_access:
        step = "subscribe"
    elif not connected:
        step = "connect_provider"
    else:
        step = "dashboard"

    logger.debug("Onboarding step for tenant %s: %s", tenant.id, step)
    return OnboardingStatus(
        onboarded=step == "dashboard",
        step=step,
        steps=OnboardingSteps(
            tenant_created=True,
            subscription_active=has_access,
            provider_connected=connected,
            automation_configured=automation,
        ),
        tenant=TenantSummary(
            id=tenant.id,
            slug=tenant.slug,
            name=tenant.name,
            ticket_provider=tenant.ticket_provider,
        ),
    )
