"""Admin-side integration setup: Zendesk credentials, Jira project, Jira Automation."""

from __future__ import annotations

import contextlib
import logging
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.clients.automation_client import JiraAutomationClient
from helpportal.clients.zendesk_client import ZendeskClient, normalize_zendesk_subdomain
from helpportal.config import settings
from helpportal.errors import NotFound, PortalError, ValidationError
from helpportal.models.tenant import Tenant, TenantJiraConfig, TenantZendeskConfig
from helpportal.schemas.integrations import (
    AutomationRuleSummary,
    AutomationSetupRequest,
    AutomationSetupResponse,
    JiraConnectionResponse,
    JiraProjectResponse,
    ZendeskConfigRequest,
    ZendeskValidateRequest,
    ZendeskValidateResponse,
)
from helpportal.templates.automation_rules import RULE_BUILDERS, WebhookRuleOptions, build_project_ari
from helpportal.ticketing.factory import build_jira_client, build_jira_provider, invalidate_provider
from helpportal.ticketing.zendesk import ZendeskTicketProvider

logger = logging.getLogger(__name__)


async def validate_zendesk(req: ZendeskValidateRequest) -> ZendeskValidateResponse:
    """Try the credentials against /users/me.json. Never raises for bad credentials."""
    subdomain = normalize_zendesk_subdomain(req.subdomain)
    if not subdomain or not req.email.strip() or not req.api_token.strip():
        return ZendeskValidateResponse(valid=False, error="Subdomain, email and API token are required")
    try:
        client = ZendeskClient(subdomain, req.email.strip(), req.api_token.strip())
    except ValidationError as exc:
        return ZendeskValidateResponse(valid=False, error=exc.public_message)

    if not await ZendeskTicketProvider(client).test_connection():
        return ZendeskValidateResponse(valid=False, error="Could not authenticate with Zendesk")
    return ZendeskValidateResponse(valid=True)


async def save_zendesk_config(db: AsyncSession, tenant: Tenant, req: ZendeskConfigRequest) -> ZendeskValidateResponse:
    result = await validate_zendesk(req)
    if not result.valid:
        return result

    config = await db.get(TenantZendeskConfig, tenant.id)
    if config is None:
        config = TenantZendeskConfig(tenant_id=tenant.id)
        db.add(config)
    config.subdomain = normalize_zendesk_subdomain(req.subdomain)
    config.email = req.email.strip()
    config.api_token = req.api_token.strip()
    config.group_id = req.group_id or None
    config.connected = True
    if tenant.ticket_provider is None:
        tenant.ticket_provider = "zendesk"
    await db.commit()
    invalidate_provider(tenant.id)
    logger.info("Zendesk connected for tenant %s (%s)", tenant.id, config.subdomain)
    return result


async def _jira_config(db: AsyncSession, tenant_id: str) -> TenantJiraConfig:
    config = await db.get(TenantJiraConfig, tenant_id)
    if config is None or not config.connected:
        raise ValidationError("Jira is not connected", field="jira")
    return config


async def check_jira_connection(db: AsyncSession, tenant_id: str) -> JiraConnectionResponse:
    config = await db.get(TenantJiraConfig, tenant_id)
    if config is None or not config.connected:
        return JiraConnectionResponse(connected=False, error="Jira is not connected")
    try:
        provider = build_jira_provider(config)
    except PortalError as exc:
        return JiraConnectionResponse(connected=False, error=exc.public_message)
    connected = await provider.test_connection()
    return JiraConnectionResponse(connected=connected, error=None if connected else "Connection test failed")


async def select_jira_project(db: AsyncSession, tenant_id: str, project_key: str) -> JiraProjectResponse:
    config = await _jira_config(db, tenant_id)
    client = build_jira_client(config)
    key = project_key.strip().upper()
    try:
        project = await client.get_project(key)
    except NotFound as exc:
        raise ValidationError(f"Jira project {key} not found", field="project_key") from exc

    config.project_key = project.get("key", key)
    config.project_id = str(project.get("id", ""))
    # a rule scoped to the previous project no longer applies
    config.automation_rule_created = False
    await db.commit()
    invalidate_provider(tenant_id)
    logger.info("Tenant %s selected Jira project %s", tenant_id, config.project_key)
    return JiraProjectResponse(project_key=config.project_key, project_id=config.project_id)


def jira_webhook_url(tenant_id: str) -> str:
    return f"{settings.app_url.rstrip('/')}/api/webhooks/jira?{urlencode({'tenant': tenant_id})}"


def _automation_target(config: TenantJiraConfig) -> tuple[str, str]:
    if not config.cloud_id:
        raise ValidationError("Jira cloud id is missing; reconnect Jira", field="cloud_id")
    if not config.project_id:
        raise ValidationError("Select a Jira project first", field="project_id")
    return config.cloud_id, config.project_id


def _admin_credentials(email: str, api_token: str) -> tuple[str, str]:
    email, api_token = email.strip(), api_token.strip()
    if not email:
        raise ValidationError("email is required", field="email")
    if not api_token:
        raise ValidationError("api_token is required", field="api_token")
    return email, api_token


async def setup_automation(
    db: AsyncSession,
    tenant_id: str,
    req: AutomationSetupRequest,
    client_factory=None,
) -> AutomationSetupResponse:
    """Create the portal's webhook rule using a one-time admin API token.

    The token is used for this call only and never persisted.
    """
    config = await _jira_config(db, tenant_id)
    cloud_id, project_id = _automation_target(config)
    email, api_token = _admin_credentials(req.email, req.api_token)

    client = (client_factory or JiraAutomationClient)(cloud_id, email, api_token)
    try:
        admin = await client.validate_credentials()
        payload = RULE_BUILDERS[req.rule_kind](
            WebhookRuleOptions(
                cloud_id=cloud_id,
                project_id=project_id,
                owner_account_id=admin["account_id"],
                author_account_id=admin["account_id"],
                webhook_url=jira_webhook_url(tenant_id),
            )
        )
        rule_uuid = await client.create_rule(payload)
    finally:
        with contextlib.suppress(Exception):
            await client.close()

    config.automation_rule_created = True
    await db.commit()
    logger.info("Automation rule %s (%s) created for tenant %s", rule_uuid, req.rule_kind, tenant_id)
    return AutomationSetupResponse(success=True, rule_uuid=rule_uuid or None)


async def list_automation_rules(
    db: AsyncSession,
    tenant_id: str,
    email: str,
    api_token: str,
    client_factory=None,
) -> list[AutomationRuleSummary]:
    config = await _jira_config(db, tenant_id)
    cloud_id, project_id = _automation_target(config)
    email, api_token = _admin_credentials(email, api_token)

    client = (client_factory or JiraAutomationClient)(cloud_id, email, api_token)
    try:
        rules = await client.list_rules(build_project_ari(cloud_id, project_id))
    finally:
        with contextlib.suppress(Exception):
            await client.close()
    return [AutomationRuleSummary.model_validate(rule) for rule in rules]
