"""Tests for integration setup: Zendesk credentials, Jira OAuth and Jira Automation."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from helpportal.clients.atlassian_oauth import AtlassianResource, OAuthTokenError, TokenGrant
from helpportal.clients.automation_client import InvalidAdminCredentials, JiraAutomationClient
from helpportal.clients.zendesk_client import normalize_zendesk_subdomain
from helpportal.database import async_session
from helpportal.errors import ProviderError, ValidationError
from helpportal.handlers.jira_connection import complete_jira_oauth, make_state, tenant_from_state
from helpportal.main import app
from helpportal.models.tenant import Tenant, TenantJiraConfig, TenantZendeskConfig
from helpportal.utils.timestamps import as_utc

HEADERS = {"X-Portal-User-Id": "u1", "X-Portal-Username": "owner", "X-Portal-Tenant-Id": "t1"}


async def _seed_tenant(*, jira: bool = False, project_id: str | None = "10001"):
    async with async_session() as db:
        db.add(Tenant(id="t1", slug="acme", name="Acme", owner_user_id="u1"))
        if jira:
            db.add(TenantJiraConfig(
                tenant_id="t1",
                connected=True,
                auth_mode="oauth",
                cloud_id="cloud-1",
                cloud_url="https://acme.atlassian.net",
                access_token="at",
                refresh_token="rt",
                token_expiry=datetime.now(timezone.utc) + timedelta(hours=1),
                project_key="SUP",
                project_id=project_id,
            ))
        await db.commit()


async def _request(method: str, url: str, **kwargs):
    kwargs.setdefault("headers", HEADERS)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, f"/api/v1{url}", **kwargs)


def _sample_automation_client() -> AsyncMock:
    client = AsyncMock()
    client.validate_credentials.return_value = {"account_id": "acc-1", "display_name": "Site Admin"}
    client.create_rule.return_value = "rule-uuid-1"
    return client


# --- Zendesk -----------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://Acme.zendesk.com", "acme"),
        ("acme.zendesk.com/agent/tickets", "acme"),
        ("  ACME  ", "acme"),
        ("http://help-desk.zendesk.com/", "help-desk"),
    ],
)
def test_normalize_zendesk_subdomain(raw, expected):
    assert normalize_zendesk_subdomain(raw) == expected


async def test_zendesk_validate_accepts_working_credentials():
    await _seed_tenant()
    with patch(
        "helpportal.handlers.integrations.ZendeskTicketProvider.test_connection",
        AsyncMock(return_value=True),
    ):
        resp = await _request(
            "POST",
            "/integrations/zendesk/validate",
            json={"subdomain": "https://acme.zendesk.com", "email": "a@acme.test", "apiToken": "tok"},
        )

    assert resp.status_code == 200
    assert resp.json() == {"valid": True, "error": None}


async def test_zendesk_validate_reports_bad_credentials():
    await _seed_tenant()
    with patch(
        "helpportal.handlers.integrations.ZendeskTicketProvider.test_connection",
        AsyncMock(return_value=False),
    ):
        resp = await _request(
            "POST",
            "/integrations/zendesk/validate",
            json={"subdomain": "acme", "email": "a@acme.test", "apiToken": "wrong"},
        )

    assert resp.status_code == 200
    assert resp.json() == {"valid": False, "error": "Could not authenticate with Zendesk"}


async def test_zendesk_validate_requires_all_fields():
    await _seed_tenant()

    resp = await _request("POST", "/integrations/zendesk/validate", json={"subdomain": "acme", "email": ""})

    assert resp.json()["valid"] is False


async def test_zendesk_validate_rejects_malformed_subdomain():
    await _seed_tenant()

    resp = await _request(
        "POST",
        "/integrations/zendesk/validate",
        json={"subdomain": "acme corp!", "email": "a@acme.test", "apiToken": "tok"},
    )

    assert resp.json() == {"valid": False, "error": "Invalid Zendesk subdomain"}


async def test_save_zendesk_config_connects_tenant():
    await _seed_tenant()
    with patch(
        "helpportal.handlers.integrations.ZendeskTicketProvider.test_connection",
        AsyncMock(return_value=True),
    ):
        resp = await _request(
            "PUT",
            "/integrations/zendesk",
            json={"subdomain": "Acme.zendesk.com", "email": " a@acme.test ", "apiToken": "tok", "groupId": "360"},
        )

    assert resp.status_code == 200
    async with async_session() as db:
        config = await db.get(TenantZendeskConfig, "t1")
        tenant = await db.get(Tenant, "t1")
    assert (config.subdomain, config.email, config.group_id, config.connected) == ("acme", "a@acme.test", "360", True)
    assert tenant.ticket_provider == "zendesk"


async def test_save_zendesk_for_foreign_tenant_is_not_found():
    await _seed_tenant()

    resp = await _request(
        "PUT",
        "/integrations/zendesk",
        json={"subdomain": "acme", "email": "a@acme.test", "apiToken": "tok"},
        headers={**HEADERS, "X-Portal-User-Id": "intruder"},
    )

    assert resp.status_code == 404
    assert resp.json()["error"] == "Tenant not found"


# --- Jira OAuth ----------------------------------------------------------------


def test_oauth_state_round_trip():
    state = make_state("t1")

    assert tenant_from_state(state) == "t1"
    assert make_state("t1") != state


@pytest.mark.parametrize("mutate", [
    lambda s: s.replace("t1.", "t2.", 1),
    lambda s: s[:-1] + ("0" if s[-1] != "0" else "1"),
    lambda s: "garbage",
    lambda s: "",
])
def test_oauth_state_tampering_rejected(mutate):
    with pytest.raises(ValidationError):
        tenant_from_state(mutate(make_state("t1")))


async def test_oauth_start_returns_consent_url():
    await _seed_tenant()

    resp = await _request("GET", "/integrations/jira/oauth/start")

    assert resp.status_code == 200
    url = urlparse(resp.json()["url"])
    params = parse_qs(url.query)
    assert url.netloc == "auth.atlassian.com"
    assert params["client_id"] == ["test-client-id"]
    assert params["redirect_uri"] == ["https://portal.test/api/v1/integrations/jira/oauth/callback"]
    assert "offline_access" in params["scope"][0]
    assert tenant_from_state(params["state"][0]) == "t1"


async def test_oauth_callback_rejects_state_for_other_tenant():
    await _seed_tenant()

    resp = await _request("GET", "/integrations/jira/oauth/callback", params={"code": "c", "state": make_state("t2")})

    assert resp.status_code == 400
    assert resp.json()["field"] == "state"


async def test_complete_oauth_stores_grant_and_site():
    await _seed_tenant()
    client = AsyncMock()
    client.exchange_code.return_value = TokenGrant("at-1", "rt-1", 3600)
    client.accessible_resources.return_value = [
        AtlassianResource(id="cloud-9", url="https://acme.atlassian.net", name="acme"),
        AtlassianResource(id="cloud-10", url="https://other.atlassian.net", name="other"),
    ]

    async with async_session() as db:
        tenant = await db.get(Tenant, "t1")
        config = await complete_jira_oauth(db, tenant, "auth-code", client=client)

    assert config.cloud_id == "cloud-9"
    client.exchange_code.assert_awaited_once_with(
        "auth-code", "https://portal.test/api/v1/integrations/jira/oauth/callback"
    )
    client.close.assert_not_awaited()

    async with async_session() as db:
        stored = await db.get(TenantJiraConfig, "t1")
        tenant = await db.get(Tenant, "t1")
    assert stored.connected is True
    assert (stored.access_token, stored.refresh_token) == ("at-1", "rt-1")
    assert as_utc(stored.token_expiry) > datetime.now(timezone.utc) + timedelta(minutes=59)
    assert tenant.ticket_provider == "jira"


async def test_complete_oauth_rejected_code_is_provider_error():
    await _seed_tenant()
    client = AsyncMock()
    client.exchange_code.side_effect = OAuthTokenError("Token exchange failed (403)", status=403)

    async with async_session() as db:
        tenant = await db.get(Tenant, "t1")
        with pytest.raises(ProviderError) as exc_info:
            await complete_jira_oauth(db, tenant, "bad-code", client=client)

    assert exc_info.value.public_message == "Could not connect to Jira"
    async with async_session() as db:
        assert await db.get(TenantJiraConfig, "t1") is None


async def test_complete_oauth_without_sites_is_validation_error():
    await _seed_tenant()
    client = AsyncMock()
    client.exchange_code.return_value = TokenGrant("at-1", "rt-1", 3600)
    client.accessible_resources.return_value = []

    async with async_session() as db:
        tenant = await db.get(Tenant, "t1")
        with pytest.raises(ValidationError):
            await complete_jira_oauth(db, tenant, "code", client=client)


async def test_select_jira_project_resets_automation_flag():
    await _seed_tenant(jira=True)
    async with async_session() as db:
        config = await db.get(TenantJiraConfig, "t1")
        config.automation_rule_created = True
        await db.commit()
    jira = AsyncMock()
    jira.get_project.return_value = {"key": "OPS", "id": "20002"}

    with patch("helpportal.handlers.integrations.build_jira_client", MagicMock(return_value=jira)):
        resp = await _request("PUT", "/integrations/jira/project", json={"projectKey": "ops"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "project_key": "OPS", "project_id": "20002"}
    jira.get_project.assert_awaited_once_with("OPS")
    async with async_session() as db:
        config = await db.get(TenantJiraConfig, "t1")
    assert (config.project_key, config.project_id, config.automation_rule_created) == ("OPS", "20002", False)


# --- Jira Automation -------------------------------------------------------------


async def test_setup_automation_creates_rule_and_flags_tenant():
    await _seed_tenant(jira=True)
    client = _sample_automation_client()
    factory = MagicMock(return_value=client)

    with patch("helpportal.handlers.integrations.JiraAutomationClient", factory):
        resp = await _request(
            "POST", "/integrations/jira/automation", json={"email": "admin@acme.test", "apiToken": "adm-token"}
        )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "rule_uuid": "rule-uuid-1", "error": None}
    factory.assert_called_once_with("cloud-1", "admin@acme.test", "adm-token")
    rule = client.create_rule.await_args.args[0]["rule"]
    assert rule["ruleScopeARIs"] == ["ari:cloud:jira:cloud-1:project/10001"]
    assert rule["actor"] == {"type": "ACCOUNT_ID", "actor": "acc-1"}
    assert rule["components"][0]["value"]["url"] == "https://portal.test/api/webhooks/jira?tenant=t1"
    client.close.assert_awaited_once()

    async with async_session() as db:
        assert (await db.get(TenantJiraConfig, "t1")).automation_rule_created is True


async def test_setup_automation_invalid_admin_token():
    await _seed_tenant(jira=True)
    client = _sample_automation_client()
    client.validate_credentials.side_effect = InvalidAdminCredentials("jira returned 401")

    with patch("helpportal.handlers.integrations.JiraAutomationClient", MagicMock(return_value=client)):
        resp = await _request(
            "POST", "/integrations/jira/automation", json={"email": "admin@acme.test", "apiToken": "nope"}
        )

    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": "Invalid email or API token",
        "code": "validation_error",
        "field": "api_token",
    }
    client.create_rule.assert_not_awaited()
    async with async_session() as db:
        assert (await db.get(TenantJiraConfig, "t1")).automation_rule_created is False


async def test_setup_automation_rule_rejected_leaves_flag_unset():
    await _seed_tenant(jira=True)
    client = _sample_automation_client()
    client.create_rule.side_effect = ProviderError("jira-automation returned 400: bad component")

    with patch("helpportal.handlers.integrations.JiraAutomationClient", MagicMock(return_value=client)):
        resp = await _request(
            "POST", "/integrations/jira/automation", json={"email": "admin@acme.test", "apiToken": "adm-token"}
        )

    assert resp.status_code == 502
    assert resp.json()["code"] == "provider_error"
    assert "bad component" not in resp.text
    client.close.assert_awaited_once()
    async with async_session() as db:
        assert (await db.get(TenantJiraConfig, "t1")).automation_rule_created is False


async def test_setup_automation_requires_selected_project():
    await _seed_tenant(jira=True, project_id=None)
    factory = MagicMock()

    with patch("helpportal.handlers.integrations.JiraAutomationClient", factory):
        resp = await _request(
            "POST", "/integrations/jira/automation", json={"email": "admin@acme.test", "apiToken": "adm-token"}
        )

    assert resp.status_code == 400
    assert resp.json()["field"] == "project_id"
    factory.assert_not_called()


async def test_list_automation_rules_reads_admin_headers():
    await _seed_tenant(jira=True)
    client = _sample_automation_client()
    client.list_rules.return_value = [
        {"uuid": "r1", "name": "Webhook - Comment Created", "state": "ENABLED",
         "ruleScopeARIs": ["ari:cloud:jira:cloud-1:project/10001"]},
    ]

    with patch("helpportal.handlers.integrations.JiraAutomationClient", MagicMock(return_value=client)):
        resp = await _request(
            "GET",
            "/integrations/jira/automation/rules",
            headers={**HEADERS, "X-Jira-Admin-Email": "admin@acme.test", "X-Jira-Admin-Token": "adm-token"},
        )

    assert resp.status_code == 200
    assert resp.json()["rules"] == [{
        "uuid": "r1",
        "name": "Webhook - Comment Created",
        "state": "ENABLED",
        "ruleScopeARIs": ["ari:cloud:jira:cloud-1:project/10001"],
    }]
    client.list_rules.assert_awaited_once_with("ari:cloud:jira:cloud-1:project/10001")


async def test_automation_client_against_mocked_api():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.headers["Authorization"]))
        if request.url.path.endswith("/myself"):
            return httpx.Response(200, json={"accountId": "acc-1", "displayName": "Site Admin"})
        return httpx.Response(200, json={"ruleUuid": "rule-uuid-9"})

    client = JiraAutomationClient("cloud-1", "admin@acme.test", "adm-token", transport=httpx.MockTransport(handler))
    try:
        admin = await client.validate_credentials()
        rule_uuid = await client.create_rule({"rule": {}})
    finally:
        await client.close()

    assert admin == {"account_id": "acc-1", "display_name": "Site Admin"}
    assert rule_uuid == "rule-uuid-9"
    assert [(m, p) for m, p, _ in seen] == [
        ("GET", "/ex/jira/cloud-1/rest/api/3/myself"),
        ("POST", "/automation/public/jira/cloud-1/rest/v1/rule"),
    ]
    assert all(auth.startswith("Basic ") for _, _, auth in seen)


async def test_automation_client_401_is_invalid_credentials():
    client = JiraAutomationClient(
        "cloud-1", "admin@acme.test", "bad", transport=httpx.MockTransport(lambda r: httpx.Response(401))
    )
    try:
        with pytest.raises(InvalidAdminCredentials):
            await client.validate_credentials()
    finally:
        await client.close()
