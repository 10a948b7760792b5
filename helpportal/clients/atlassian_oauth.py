"""Atlassian OAuth 2.0 (3LO) token endpoint client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from helpportal.config import settings
from helpportal.errors import InternalError, PortalError

logger = logging.getLogger(__name__)

# Classic scopes only; mixing classic and granular scopes breaks the token exchange.
SCOPES = " ".join([
    "offline_access",
    "read:jira-work",
    "write:jira-work",
    "read:jira-user",
    "manage:jira-configuration",
    "read:servicedesk-request",
    "write:servicedesk-request",
])


class OAuthTokenError(PortalError):
    """The token endpoint refused or failed a grant."""

    code = "oauth_token_error"

    def __init__(self, detail: str, status: int | None = None) -> None:
        super().__init__(detail)
        self.status = status

    @property
    def revoked(self) -> bool:
        """400/401 means the refresh token itself is dead, not a transient failure."""
        return self.status in (400, 401)


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class AtlassianResource:
    id: str
    url: str
    name: str


class AtlassianOAuthClient:
    """Authorization URL, code exchange, refresh and site discovery for Jira Cloud."""

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not settings.atlassian_oauth_configured:
            raise InternalError(
                "Atlassian OAuth not configured; set PORTAL_ATLASSIAN_CLIENT_ID and PORTAL_ATLASSIAN_CLIENT_SECRET"
            )
        self._client_id = settings.atlassian_client_id
        self._client_secret = settings.atlassian_client_secret
        self._auth_base = settings.atlassian_auth_base.rstrip("/")
        self._api_base = settings.atlassian_api_base.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.provider_timeout_seconds, transport=transport
        )

    def authorize_url(self, state: str, callback_url: str) -> str:
        params = {
            "audience": "api.atlassian.com",
            "client_id": self._client_id,
            "scope": SCOPES,
            "redirect_uri": callback_url,
            "state": state,
            "response_type": "code",
            "prompt": "consent",
        }
        return f"{self._auth_base}/authorize?{urlencode(params)}"

    async def _post_token(self, body: dict) -> httpx.Response:
        """JSON first (Atlassian's documented format); some environments insist on
        RFC 6749 form encoding and answer the JSON attempt with 401.
        """
        url = f"{self._auth_base}/oauth/token"
        resp = await self._client.post(url, json=body)
        if resp.status_code == 401:
            logger.info("Token endpoint rejected JSON body, retrying form-encoded")
            resp = await self._client.post(url, data=body)
        return resp

    async def _grant(self, body: dict, label: str) -> TokenGrant:
        try:
            resp = await self._post_token(body)
        except httpx.HTTPError as exc:
            raise OAuthTokenError(f"{label} failed: {exc.__class__.__name__}") from exc
        if resp.status_code >= 400:
            raise OAuthTokenError(f"{label} failed ({resp.status_code})", status=resp.status_code)
        try:
            data = resp.json()
            return TokenGrant(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_in=int(data["expires_in"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise OAuthTokenError(f"{label} returned an unusable body") from exc

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        logger.info("Exchanging Atlassian authorization code for tokens")
        return await self._grant(
            {
                "grant_type": "authorization_code",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            "Token exchange",
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Atlassian rotates the refresh token on every use; persist both."""
        return await self._grant(
            {
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
            },
            "Token refresh",
        )

    async def accessible_resources(self, access_token: str) -> list[AtlassianResource]:
        """Sites the grant covers. ``id`` is the cloudId used in every API URL."""
        try:
            resp = await self._client.get(
                f"{self._api_base}/oauth/token/accessible-resources",
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise OAuthTokenError(f"Resource discovery failed: {exc.__class__.__name__}") from exc
        if resp.status_code >= 400:
            raise OAuthTokenError(f"Resource discovery failed ({resp.status_code})", status=resp.status_code)
        try:
            return [
                AtlassianResource(id=item["id"], url=item.get("url", ""), name=item.get("name", ""))
                for item in resp.json()
            ]
        except (ValueError, KeyError, TypeError) as exc:
            raise OAuthTokenError("Resource discovery returned an unusable body") from exc

    async def revoke_token(self, refresh_token: str) -> None:
        try:
            resp = await self._client.post(
                f"{self._auth_base}/oauth/revoke",
                json={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "token": refresh_token,
                },
            )
        except httpx.HTTPError as exc:
            raise OAuthTokenError(f"Token revocation failed: {exc.__class__.__name__}") from exc
        if resp.status_code >= 400:
            raise OAuthTokenError(f"Token revocation failed ({resp.status_code})", status=resp.status_code)

    async def close(self) -> None:
        await self._client.aclose()
