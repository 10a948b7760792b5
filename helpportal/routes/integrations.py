"""Integration setup routes for tenant admins."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.auth import SessionUser, get_tenant_user, load_owned_tenant
from helpportal.database import get_db
from helpportal.errors import ValidationError
from helpportal.handlers import integrations
from helpportal.handlers.jira_connection import (
    complete_jira_oauth,
    disconnect_jira,
    jira_config_status,
    save_jira_basic_config,
    start_jira_oauth,
    tenant_from_state,
)
from helpportal.models.tenant import TenantJiraConfig
from helpportal.schemas.integrations import (
    AutomationRuleListResponse,
    AutomationSetupRequest,
    AutomationSetupResponse,
    JiraBasicConfigRequest,
    JiraConfigStatus,
    JiraConnectionResponse,
    JiraDisconnectResponse,
    JiraOAuthCallbackResponse,
    JiraOAuthStartResponse,
    JiraProjectRequest,
    JiraProjectResponse,
    ZendeskConfigRequest,
    ZendeskValidateRequest,
    ZendeskValidateResponse,
)

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.post("/zendesk/validate", response_model=ZendeskValidateResponse)
async def validate_zendesk(
    body: ZendeskValidateRequest,
    user: SessionUser = Depends(get_tenant_user),
) -> ZendeskValidateResponse:
    return await integrations.validate_zendesk(body)


@router.put("/zendesk", response_model=ZendeskValidateResponse)
async def save_zendesk(
    body: ZendeskConfigRequest,
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> ZendeskValidateResponse:
    tenant = await load_owned_tenant(db, user)
    return await integrations.save_zendesk_config(db, tenant, body)


@router.get("/jira", response_model=JiraConfigStatus)
async def get_jira_config(
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> JiraConfigStatus:
    tenant = await load_owned_tenant(db, user)
    return jira_config_status(await db.get(TenantJiraConfig, tenant.id))


@router.put("/jira", response_model=JiraConfigStatus)
async def save_jira_basic(
    body: JiraBasicConfigRequest,
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> JiraConfigStatus:
    tenant = await load_owned_tenant(db, user)
    return await save_jira_basic_config(db, tenant, body)


@router.delete("/jira", response_model=JiraDisconnectResponse)
async def delete_jira(
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> JiraDisconnectResponse:
    tenant = await load_owned_tenant(db, user)
    return await disconnect_jira(db, tenant)


@router.get("/jira/oauth/start", response_model=JiraOAuthStartResponse)
async def jira_oauth_start(
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> JiraOAuthStartResponse:
    tenant = await load_owned_tenant(db, user)
    return JiraOAuthStartResponse(url=await start_jira_oauth(tenant.id))


@router.get("/jira/oauth/callback", response_model=JiraOAuthCallbackResponse)
async def jira_oauth_callback(
    code: str = Query(default=""),
    state: str = Query(default=""),
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> JiraOAuthCallbackResponse:
    if tenant_from_state(state) != user.tenant_id:
        raise ValidationError("OAuth state does not match this tenant", field="state")
    tenant = await load_owned_tenant(db, user)
    config = await complete_jira_oauth(db, tenant, code)
    return JiraOAuthCallbackResponse(connected=True, cloud_url=config.cloud_url)


@router.get("/jira/test", response_model=JiraConnectionResponse)
async def jira_connection_test(
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> JiraConnectionResponse:
    tenant = await load_owned_tenant(db, user)
    return await integrations.check_jira_connection(db, tenant.id)


@router.put("/jira/project", response_model=JiraProjectResponse)
async def select_jira_project(
    body: JiraProjectRequest,
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> JiraProjectResponse:
    tenant = await load_owned_tenant(db, user)
    return await integrations.select_jira_project(db, tenant.id, body.project_key)


@router.post("/jira/automation", response_model=AutomationSetupResponse)
async def setup_jira_automation(
    body: AutomationSetupRequest,
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> AutomationSetupResponse:
    tenant = await load_owned_tenant(db, user)
    return await integrations.setup_automation(db, tenant.id, body)


@router.get("/jira/automation/rules", response_model=AutomationRuleListResponse)
async def list_jira_automation_rules(
    x_jira_admin_email: Optional[str] = Header(default=None),
    x_jira_admin_token: Optional[str] = Header(default=None),
    user: SessionUser = Depends(get_tenant_user),
    db: AsyncSession = Depends(get_db),
) -> AutomationRuleListResponse:
    """Admin credentials travel in headers so they never land in access logs."""
    tenant = await load_owned_tenant(db, user)
    rules = await integrations.list_automation_rules(
        db, tenant.id, x_jira_admin_email or "", x_jira_admin_token or ""
    )
    return AutomationRuleListResponse(rules=rules)
