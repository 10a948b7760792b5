"""Jira connection lifecycle.

OAuth (3LO): consent URL, then code exchange on callback. Basic: site URL,
email and API token saved as given. Disconnect revokes the OAuth grant and
forgets the config.
"""

from __future__ import annotations

import contextlib
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.clients.atlassian_oauth import AtlassianOAuthClient, OAuthTokenError
from helpportal.config import settings
from helpportal.errors import PortalError, ProviderError, ValidationError
from helpportal.models.tenant import Tenant, TenantJiraConfig
from helpportal.schemas.integrations import JiraBasicConfigRequest, JiraConfigStatus, JiraDisconnectResponse
from helpportal.ticketing.factory import invalidate_provider

logger = logging.getLogger(__name__)


def oauth_callback_url() -> str:
    return f"{settings.app_url.rstrip('/')}{settings.api_prefix}/integrations/jira/oauth/callback"


def _sign(message: str) -> str:
    return hmac.new(settings.atlassian_client_secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def make_state(tenant_id: str) -> str:
    message = f"{tenant_id}.{secrets.token_urlsafe(16)}"
    return f"{message}.{_sign(message)}"


def tenant_from_state(state: str) -> str:
    message, _, signature = state.rpartition(".")
    tenant_id, _, nonce = message.rpartition(".")
    if not tenant_id or not nonce or not hmac.compare_digest(_sign(message), signature):
        raise ValidationError("Invalid OAuth state", field="state")
    return tenant_id


async def start_jira_oauth(tenant_id: str) -> str:
    client = AtlassianOAuthClient()
    try:
        return client.authorize_url(make_state(tenant_id), oauth_callback_url())
    finally:
        await client.close()


async def complete_jira_oauth(db: AsyncSession, tenant: Tenant, code: str, client: AtlassianOAuthClient | None = None) -> TenantJiraConfig:
    """Exchange ``code`` for tokens and store them as the tenant's Jira connection.

    The first accessible site becomes the tenant's Jira site.
    """
    if not code:
        raise ValidationError("code is required", field="code")
    own_client = client is None
    client = client or AtlassianOAuthClient()
    try:
        grant = await client.exchange_code(code, oauth_callback_url())
        resources = await client.accessible_resources(grant.access_token)
    except OAuthTokenError as exc:
        logger.error("Atlassian code exchange failed for tenant %s: %s", tenant.id, exc.detail)
        raise ProviderError(exc.detail, public_message="Could not connect to Jira") from exc
    finally:
        if own_client:
            with contextlib.suppress(Exception):
                await client.close()

    if not resources:
        raise ValidationError("This Atlassian account has no accessible Jira site", field="code")
    site = resources[0]

    config = await db.get(TenantJiraConfig, tenant.id)
    if config is None:
        config = TenantJiraConfig(tenant_id=tenant.id)
        db.add(config)
    config.auth_mode = "oauth"
    config.connected = True
    config.cloud_id = site.id
    config.cloud_url = site.url
    config.access_token = grant.access_token
    config.refresh_token = grant.refresh_token
    config.token_expiry = datetime.now(timezone.utc) + timedelta(seconds=grant.expires_in)
    config.basic_email = None
    config.basic_api_token = None
    if tenant.ticket_provider is None:
        tenant.ticket_provider = "jira"
    await db.commit()
    invalidate_provider(tenant.id)
    logger.info("Jira connected for tenant %s (%s)", tenant.id, site.url)
    return config


def normalize_jira_site_url(raw: str) -> str:
    """``acme.atlassian.net`` or any URL on it -> ``https://acme.atlassian.net``."""
    url = raw.strip()
    if not url:
        raise ValidationError("Jira URL is required", field="jira_url")
    if "://" not in url:
        url = f"https://{url}"
    host = (urlparse(url).hostname or "").lower()
    if not host.endswith(".atlassian.net") or host == ".atlassian.net":
        raise ValidationError("Invalid Jira URL. Expected format: yoursite.atlassian.net", field="jira_url")
    return f"https://{host}"


def jira_config_status(config: TenantJiraConfig | None) -> JiraConfigStatus:
    if config is None:
        return JiraConfigStatus(configured=False)
    return JiraConfigStatus(
        configured=bool(config.connected),
        auth_mode=config.auth_mode,
        cloud_url=config.cloud_url,
        project_key=config.project_key,
        project_id=config.project_id,
        service_desk_id=config.service_desk_id,
        automation_rule_created=bool(config.automation_rule_created),
    )


async def save_jira_basic_config(db: AsyncSession, tenant: Tenant, req: JiraBasicConfigRequest) -> JiraConfigStatus:
    """Connect with an API token. Replaces any OAuth grant the tenant held."""
    cloud_url = normalize_jira_site_url(req.jira_url)
    email = req.email.strip()
    if not email:
        raise ValidationError("Email is required", field="email")
    if "@" not in email:
        raise ValidationError("Invalid email format", field="email")
    api_token = req.api_token.strip()
    if not api_token:
        raise ValidationError("API token is required", field="api_token")

    config = await db.get(TenantJiraConfig, tenant.id)
    if config is None:
        config = TenantJiraConfig(tenant_id=tenant.id)
        db.add(config)
    config.auth_mode = "basic"
    config.connected = True
    config.cloud_url = cloud_url
    config.basic_email = email
    config.basic_api_token = api_token
    config.access_token = None
    config.refresh_token = None
    config.token_expiry = None
    if req.project_key:
        config.project_key = req.project_key.strip().upper()
    config.service_desk_id = req.service_desk_id or None
    if tenant.ticket_provider is None:
        tenant.ticket_provider = "jira"
    await db.commit()
    invalidate_provider(tenant.id)
    logger.info("Jira connected with API token for tenant %s (%s)", tenant.id, cloud_url)
    return jira_config_status(config)


async def _revoke(tenant_id: str, refresh_token: str, client: AtlassianOAuthClient | None) -> bool:
    own_client = client is None
    try:
        client = client or AtlassianOAuthClient()
        await client.revoke_token(refresh_token)
        return True
    except PortalError as exc:
        # Best effort; the config is removed either way
        logger.warning("Could not revoke Atlassian grant for tenant %s: %s", tenant_id, exc.detail)
        return False
    finally:
        if own_client and client is not None:
            with contextlib.suppress(Exception):
                await client.close()


async def disconnect_jira(db: AsyncSession, tenant: Tenant, client: AtlassianOAuthClient | None = None) -> JiraDisconnectResponse:
    config = await db.get(TenantJiraConfig, tenant.id)
    if config is None:
        return JiraDisconnectResponse(success=True)

    revoked = False
    if config.auth_mode == "oauth" and config.refresh_token:
        revoked = await _revoke(tenant.id, config.refresh_token, client)

    await db.delete(config)
    if tenant.ticket_provider == "jira":
        tenant.ticket_provider = None
    await db.commit()
    invalidate_provider(tenant.id)
    logger.info("Jira disconnected for tenant %s (grant revoked: %s)", tenant.id, revoked)
    return JiraDisconnectResponse(success=True, revoked=revoked)
