"""Jira Cloud REST API v3 client (OAuth bearer or Basic auth)."""

from __future__ import annotations

import base64
import logging
from typing import Awaitable, Callable
from urllib.parse import quote

import httpx

from helpportal.clients.http import json_body, send
from helpportal.config import settings
from helpportal.errors import PortalError, ProviderError

logger = logging.getLogger(__name__)

AuthHeaderSource = Callable[[], Awaitable[str]]

ISSUE_FIELDS = ["summary", "description", "status", "priority", "created", "updated", "reporter", "assignee"]


def oauth_base_url(cloud_id: str) -> str:
    """OAuth calls are routed through the api.atlassian.com proxy by cloudId."""
    return f"{settings.atlassian_api_base.rstrip('/')}/ex/jira/{cloud_id}/rest/api/3"


def site_base_url(cloud_url: str) -> str:
    domain = cloud_url.strip().removeprefix("https://").removeprefix("http://").rstrip("/")
    return f"https://{domain}/rest/api/3"


def basic_auth_header(email: str, api_token: str) -> str:
    credentials = base64.b64encode(f"{email}:{api_token}".encode()).decode()
    return f"Basic {credentials}"


class JiraClient:
    """Thin async wrapper over the Jira REST endpoints the ticket provider needs.

    ``auth`` is awaited before every request so OAuth callers can hand in a
    fresh (possibly just refreshed) bearer token each time.
    """

    def __init__(
        self,
        base_url: str,
        auth: AuthHeaderSource,
        *,
        unauthorized: type[PortalError] = ProviderError,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._unauthorized = unauthorized
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> dict | list:
        headers = {
            "Authorization": await self._auth(),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(
            timeout=settings.provider_timeout_seconds, transport=self._transport
        ) as client:
            resp = await send(
                client,
                method,
                f"{self._base_url}{path}",
                provider="jira",
                unauthorized=self._unauthorized,
                headers=headers,
                **kwargs,
            )
            return json_body(resp, provider="jira")

    async def myself(self) -> dict:
        return await self._request("GET", "/myself")

    async def search_issues(self, jql: str, max_results: int = 50) -> list[dict]:
        """Search issues by JQL via the POST /search/jql endpoint (/search is deprecated)."""
        data = await self._request(
            "POST",
            "/search/jql",
            json={"jql": jql, "maxResults": max_results, "fields": ISSUE_FIELDS},
        )
        return data.get("issues", []) if isinstance(data, dict) else []

    async def get_issue(self, issue_key: str) -> dict:
        fields = ",".join(ISSUE_FIELDS)
        return await self._request("GET", f"/issue/{quote(issue_key)}?fields={fields}")

    async def get_comments(self, issue_key: str) -> list[dict]:
        data = await self._request("GET", f"/issue/{quote(issue_key)}/comment?orderBy=created")
        return data.get("comments", []) if isinstance(data, dict) else []

    async def create_issue(self, fields: dict) -> dict:
        """Create a Jira issue and return the response JSON.

        Returns dict with at least 'key' and 'id' on success.
        """
        data = await self._request("POST", "/issue", json={"fields": fields})
        logger.info("Jira issue created: %s", data.get("key"))
        return data

    async def add_comment(self, issue_key: str, body_doc: dict) -> dict:
        """Add an ADF comment to an existing Jira issue."""
        data = await self._request("POST", f"/issue/{quote(issue_key)}/comment", json={"body": body_doc})
        logger.info("Jira comment added to %s", issue_key)
        return data

    async def get_project(self, project_key: str) -> dict:
        return await self._request("GET", f"/project/{quote(project_key)}")
