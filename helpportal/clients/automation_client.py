"""Jira Automation REST API client.

Authenticates with a site admin's email + API token supplied per request.
Those credentials are only held for the lifetime of the client object.
"""

from __future__ import annotations

import logging

import httpx

from helpportal.clients.http import json_body, send
from helpportal.clients.jira_client import basic_auth_header
from helpportal.config import settings
from helpportal.errors import ValidationError

logger = logging.getLogger(__name__)


class InvalidAdminCredentials(ValidationError):
    def __init__(self, detail: str = "") -> None:
        super().__init__("Invalid email or API token", field="api_token")
        self.detail = detail


class JiraAutomationClient:
    def __init__(
        self,
        cloud_id: str,
        email: str,
        api_token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_base = settings.atlassian_api_base.rstrip("/")
        self._cloud_id = cloud_id
        self._base_url = f"{api_base}/automation/public/jira/{cloud_id}/rest/v1"
        self._myself_url = f"{api_base}/ex/jira/{cloud_id}/rest/api/3/myself"
        self._client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds, transport=transport)
        self._headers = {
            "Authorization": basic_auth_header(email, api_token),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def validate_credentials(self) -> dict:
        """Return ``{account_id, display_name}`` for the admin behind the token."""
        resp = await send(
            self._client,
            "GET",
            self._myself_url,
            provider="jira",
            unauthorized=InvalidAdminCredentials,
            headers=self._headers,
        )
        data = json_body(resp, provider="jira")
        if not data.get("accountId"):
            raise InvalidAdminCredentials("myself returned no accountId")
        return {"account_id": data["accountId"], "display_name": data.get("displayName", "")}

    async def list_rules(self, project_ari: str | None = None) -> list[dict]:
        """Rule summaries, optionally only those scoped to ``project_ari``."""
        resp = await send(
            self._client,
            "GET",
            f"{self._base_url}/rule/summary",
            provider="jira-automation",
            unauthorized=InvalidAdminCredentials,
            headers=self._headers,
        )
        rules = json_body(resp, provider="jira-automation").get("data") or []
        if project_ari:
            rules = [r for r in rules if project_ari in (r.get("ruleScopeARIs") or [])]
        return rules

    async def create_rule(self, payload: dict) -> str:
        """POST a ``{"rule": {...}}`` payload and return the new rule's UUID.

        Any non-2xx raises; the rule is then assumed not to exist.
        """
        resp = await send(
            self._client,
            "POST",
            f"{self._base_url}/rule",
            provider="jira-automation",
            unauthorized=InvalidAdminCredentials,
            headers=self._headers,
            json=payload,
        )
        data = json_body(resp, provider="jira-automation")
        rule_uuid = data.get("ruleUuid") or data.get("uuid") or ""
        logger.info("Automation rule created on cloud %s: %s", self._cloud_id, rule_uuid)
        return rule_uuid

    async def close(self) -> None:
        await self._client.aclose()
