"""Session consumption.

Sessions are issued upstream; by the time a request reaches this service the
auth layer has set ``X-Portal-User-Id``, ``X-Portal-Username`` and, for
tenant-scoped requests, ``X-Portal-Tenant-Id``.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.errors import AuthRequired, NotFound, ValidationError
from helpportal.models.tenant import Tenant


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    username: str
    tenant_id: Optional[str] = None


async def get_session_user(
    x_portal_user_id: Optional[str] = Header(default=None),
    x_portal_username: Optional[str] = Header(default=None),
    x_portal_tenant_id: Optional[str] = Header(default=None),
) -> SessionUser:
    user_id = (x_portal_user_id or "").strip()
    if not user_id:
        raise AuthRequired("missing X-Portal-User-Id")
    return SessionUser(
        user_id=user_id,
        username=(x_portal_username or "").strip(),
        tenant_id=(x_portal_tenant_id or "").strip() or None,
    )


async def get_tenant_user(user: SessionUser = Depends(get_session_user)) -> SessionUser:
    """Session user that is guaranteed to carry a tenant id."""
    if not user.tenant_id:
        raise ValidationError("tenant_id is required", field="tenant_id")
    return user


async def load_owned_tenant(db: AsyncSession, user: SessionUser) -> Tenant:
    """Admin endpoints only act on tenants the session user owns."""
    tenant = await db.get(Tenant, user.tenant_id)
    if tenant is None or tenant.owner_user_id != user.user_id:
        raise NotFound(f"tenant {user.tenant_id} not owned by {user.user_id}", public_message="Tenant not found")
    return tenant
