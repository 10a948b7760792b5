"""Atlassian OAuth access token lifecycle.

Access tokens live one hour and refresh tokens rotate on every use, so two
concurrent refreshes with the same refresh token would burn it. Within a
process, refreshes are single-flight per tenant. Across processes, the store
refuses to replace tokens with ones that expire earlier than what it holds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.clients.atlassian_oauth import AtlassianOAuthClient, OAuthTokenError, TokenGrant
from helpportal.config import settings
from helpportal.database import async_session
from helpportal.errors import ValidationError
from helpportal.models.tenant import TenantJiraConfig
from helpportal.utils.timestamps import as_utc

logger = logging.getLogger(__name__)

Refresher = Callable[[str], Awaitable[TokenGrant]]
Clock = Callable[[], datetime]


@dataclass(frozen=True)
class StoredTokens:
    access_token: str
    refresh_token: str
    token_expiry: datetime


class TokenStore(Protocol):
    async def load(self, tenant_id: str) -> Optional[StoredTokens]: ...

    async def save(self, tenant_id: str, tokens: StoredTokens) -> bool: ...


class SqlTokenStore:
    """Reads and writes the token columns of ``tenant_jira_configs``."""

    def __init__(self, session_factory=async_session) -> None:
        self._session_factory = session_factory

    async def load(self, tenant_id: str) -> Optional[StoredTokens]:
        async with self._session_factory() as session:
            config = await session.get(TenantJiraConfig, tenant_id)
            if config is None or not config.connected or not config.oauth_ready():
                return None
            return StoredTokens(
                access_token=config.access_token,
                refresh_token=config.refresh_token,
                token_expiry=as_utc(config.token_expiry),
            )

    async def save(self, tenant_id: str, tokens: StoredTokens) -> bool:
        """Persist a refreshed token set. Returns False if the row already
        holds tokens that outlive these (another process refreshed first).
        """
        async with self._session_factory() as session:
            config = await session.get(TenantJiraConfig, tenant_id)
            if config is None:
                logger.warning("No Jira config for tenant %s; refreshed tokens dropped", tenant_id)
                return False
            stored_expiry = as_utc(config.token_expiry)
            if stored_expiry is not None and stored_expiry > tokens.token_expiry:
                logger.info("Tenant %s already holds newer tokens; keeping them", tenant_id)
                return False
            config.access_token = tokens.access_token
            config.refresh_token = tokens.refresh_token
            config.token_expiry = tokens.token_expiry
            await session.commit()
            return True


async def refresh_with_atlassian(refresh_token: str) -> TokenGrant:
    if not settings.atlassian_oauth_configured:
        raise OAuthTokenError("Atlassian OAuth is not configured")
    client = AtlassianOAuthClient()
    try:
        return await client.refresh_access_token(refresh_token)
    finally:
        await client.close()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessTokenManager:
    def __init__(
        self,
        refresher: Refresher = refresh_with_atlassian,
        store: TokenStore | None = None,
        clock: Clock = _utcnow,
        margin_seconds: int | None = None,
    ) -> None:
        self._refresher = refresher
        self._store = store or SqlTokenStore()
        self._clock = clock
        margin = settings.token_refresh_margin_seconds if margin_seconds is None else margin_seconds
        self._margin = timedelta(seconds=margin)
        self._inflight: dict[str, asyncio.Task] = {}

    async def get_valid_access_token(
        self,
        tenant_id: str,
        access_token: str | None,
        refresh_token: str | None,
        token_expiry: datetime | None,
    ) -> str | None:
        """Return a usable access token, refreshing it if it is inside the margin.

        ``None`` means the grant is unusable and the tenant has to reconnect.
        Stored tokens are never touched on failure.
        """
        if not tenant_id:
            raise ValidationError("tenant_id is required", field="tenant_id")

        expiry = as_utc(token_expiry)
        if access_token and expiry is not None and expiry - self._clock() > self._margin:
            return access_token

        if not refresh_token:
            logger.warning("Tenant %s has no refresh token; reconnect required", tenant_id)
            return None

        try:
            return await self._shared_refresh(tenant_id, refresh_token)
        except OAuthTokenError as exc:
            logger.warning("Token refresh failed for tenant %s: %s", tenant_id, exc.detail)
            return None

    async def get_token_for_tenant(self, tenant_id: str) -> str | None:
        """Load the tenant's stored grant and return a valid access token for it."""
        stored = await self._store.load(tenant_id)
        if stored is None:
            return None
        return await self.get_valid_access_token(
            tenant_id, stored.access_token, stored.refresh_token, stored.token_expiry
        )

    async def _shared_refresh(self, tenant_id: str, refresh_token: str) -> str:
        task = self._inflight.get(tenant_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh(tenant_id, refresh_token))
            self._inflight[tenant_id] = task

            def _forget(done: asyncio.Task) -> None:
                if self._inflight.get(tenant_id) is done:
                    del self._inflight[tenant_id]

            task.add_done_callback(_forget)
        # shield: a cancelled caller must not cancel the refresh other callers wait on
        return await asyncio.shield(task)

    async def _refresh(self, tenant_id: str, refresh_token: str) -> str:
        grant = await self._refresher(refresh_token)
        tokens = StoredTokens(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_expiry=self._clock() + timedelta(seconds=grant.expires_in),
        )
        if await self._store.save(tenant_id, tokens):
            logger.info("Refreshed Jira access token for tenant %s", tenant_id)
            return tokens.access_token
        current = await self._store.load(tenant_id)
        return current.access_token if current else tokens.access_token

    async def refresh_stale_tokens(self, session: AsyncSession) -> dict[str, int]:
        """Rotate refresh tokens for OAuth tenants idle longer than the skip window.

        Atlassian expires refresh tokens after 90 days of disuse; tenants that
        never list tickets would otherwise silently lose their connection.
        A 400/401 from the token endpoint marks the tenant disconnected.
        """
        cutoff = self._clock() - timedelta(days=settings.token_sweep_skip_days)
        result = await session.execute(
            select(TenantJiraConfig).where(
                TenantJiraConfig.connected.is_(True),
                TenantJiraConfig.auth_mode == "oauth",
                TenantJiraConfig.refresh_token.is_not(None),
            )
        )
        counts = {"refreshed": 0, "skipped": 0, "failed": 0, "disconnected": 0}
        for config in result.scalars().all():
            updated = as_utc(config.updated_at)
            if updated is not None and updated > cutoff:
                counts["skipped"] += 1
                continue
            if not config.refresh_token:
                # stored under a previous encryption key
                logger.error("Refresh token for tenant %s is unreadable; reconnect required", config.tenant_id)
                counts["failed"] += 1
                continue
            try:
                await self._shared_refresh(config.tenant_id, config.refresh_token)
                counts["refreshed"] += 1
            except OAuthTokenError as exc:
                if exc.revoked:
                    logger.warning("Refresh token revoked for tenant %s; marking disconnected", config.tenant_id)
                    config.connected = False
                    await session.commit()
                    counts["disconnected"] += 1
                else:
                    logger.error("Token sweep failed for tenant %s: %s", config.tenant_id, exc.detail)
                    counts["failed"] += 1
        logger.info(
            "Token sweep done: %d refreshed, %d skipped, %d failed, %d disconnected",
            counts["refreshed"], counts["skipped"], counts["failed"], counts["disconnected"],
        )
        return counts


async def run_token_sweep(manager: AccessTokenManager, interval_seconds: float) -> None:
    """Background loop started from the app lifespan."""
    while True:
        try:
            async with async_session() as session:
                await manager.refresh_stale_tokens(session)
        except Exception:
            logger.exception("Token sweep crashed; retrying next interval")
        await asyncio.sleep(interval_seconds)


token_manager = AccessTokenManager()
