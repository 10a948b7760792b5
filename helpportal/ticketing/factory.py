"""Tenant-scoped ticket provider selection."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.cache import TTLCache
from helpportal.clients.jira_client import JiraClient, basic_auth_header, oauth_base_url, site_base_url
from helpportal.clients.zendesk_client import ZendeskClient
from helpportal.config import settings
from helpportal.errors import ReconnectRequired, ValidationError
from helpportal.models.tenant import Tenant, TenantJiraConfig, TenantZendeskConfig
from helpportal.services.token_manager import AccessTokenManager, token_manager
from helpportal.ticketing.base import TicketProvider
from helpportal.ticketing.jira import JiraTicketProvider
from helpportal.ticketing.zendesk import ZendeskTicketProvider

logger = logging.getLogger(__name__)

# Keyed by tenant id only; a provider never serves another tenant's requests
_providers: TTLCache[TicketProvider] = TTLCache(settings.provider_cache_ttl_seconds)


def _bearer_source(tenant_id: str, manager: AccessTokenManager):
    async def _auth() -> str:
        token = await manager.get_token_for_tenant(tenant_id)
        if token is None:
            raise ReconnectRequired(f"no usable Jira token for tenant {tenant_id}")
        return f"Bearer {token}"

    return _auth


def _static_source(header: str):
    async def _auth() -> str:
        return header

    return _auth


def build_jira_client(config: TenantJiraConfig, manager: AccessTokenManager = token_manager) -> JiraClient:
    """Client for the tenant's site, authenticated the way the tenant connected."""
    if config.auth_mode == "basic":
        if not config.basic_ready():
            raise ReconnectRequired(f"incomplete basic Jira config for tenant {config.tenant_id}")
        return JiraClient(
            site_base_url(config.cloud_url),
            _static_source(basic_auth_header(config.basic_email, config.basic_api_token)),
            unauthorized=ReconnectRequired,
        )
    if not config.oauth_ready():
        raise ReconnectRequired(f"incomplete OAuth Jira config for tenant {config.tenant_id}")
    return JiraClient(
        oauth_base_url(config.cloud_id),
        _bearer_source(config.tenant_id, manager),
        unauthorized=ReconnectRequired,
    )


def build_jira_provider(config: TenantJiraConfig, manager: AccessTokenManager = token_manager) -> JiraTicketProvider:
    if not config.project_key:
        raise ValidationError("Jira project is not selected", field="project_key")
    return JiraTicketProvider(build_jira_client(config, manager), config.project_key)


def build_zendesk_provider(config: TenantZendeskConfig) -> ZendeskTicketProvider:
    if not (config.subdomain and config.email and config.api_token):
        raise ValidationError("Zendesk is not fully configured", field="zendesk")
    client = ZendeskClient(config.subdomain, config.email, config.api_token)
    return ZendeskTicketProvider(client, group_id=config.group_id)


async def get_ticket_provider(db: AsyncSession, tenant_id: str) -> TicketProvider:
    """Return the tenant's configured provider, building it on a cache miss.

    Raises ValidationError when no tenant or no provider is configured and
    ReconnectRequired when the Jira grant is unusable.
    """
    if not tenant_id:
        raise ValidationError("tenant_id is required", field="tenant_id")

    cached = _providers.get(tenant_id)
    if cached is not None:
        return cached

    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise ValidationError("Unknown tenant", field="tenant_id")

    provider: TicketProvider
    if tenant.ticket_provider == "jira":
        config = await db.get(TenantJiraConfig, tenant_id)
        if config is None or not config.connected:
            raise ReconnectRequired(f"Jira not connected for tenant {tenant_id}")
        provider = build_jira_provider(config)
    elif tenant.ticket_provider == "zendesk":
        config = await db.get(TenantZendeskConfig, tenant_id)
        if config is None or not config.connected:
            raise ValidationError("Zendesk is not connected", field="ticket_provider")
        provider = build_zendesk_provider(config)
    else:
        raise ValidationError("No ticketing provider configured", field="ticket_provider")

    logger.debug("Built %s provider for tenant %s", provider.name, tenant_id)
    _providers.set(tenant_id, provider)
    return provider


def invalidate_provider(tenant_id: str) -> None:
    """Drop the cached provider after the tenant's integration settings change."""
    _providers.invalidate(tenant_id)
