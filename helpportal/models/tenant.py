"""Tenants and their per-provider integration settings."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from helpportal.database import Base
from helpportal.utils.crypto import EncryptedText


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    owner_user_id = Column(String, nullable=False, index=True)
    # "jira" | "zendesk" | None (not chosen yet)
    ticket_provider = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class TenantJiraConfig(Base):
    """Jira connection for one tenant.

    ``auth_mode`` is ``"oauth"`` (3LO tokens routed through api.atlassian.com)
    or ``"basic"`` (site URL + email + API token). Token columns are encrypted
    at rest. OAuth tokens are only written by the OAuth connection flow and by
    the access token manager.
    """

    __tablename__ = "tenant_jira_configs"

    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True)
    connected = Column(Boolean, default=False, nullable=False)
    auth_mode = Column(String, default="oauth", nullable=False)

    cloud_id = Column(String, nullable=True)
    cloud_url = Column(String, nullable=True)
    access_token = Column(EncryptedText, nullable=True)
    refresh_token = Column(EncryptedText, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)

    basic_email = Column(String, nullable=True)
    basic_api_token = Column(EncryptedText, nullable=True)

    project_key = Column(String, nullable=True)
    project_id = Column(String, nullable=True)
    service_desk_id = Column(String, nullable=True)
    request_type_id = Column(String, nullable=True)
    automation_rule_created = Column(Boolean, default=False, nullable=False)

    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def oauth_ready(self) -> bool:
        """All four OAuth fields are present, as a connected OAuth config requires."""
        return bool(self.cloud_id and self.access_token and self.refresh_token and self.token_expiry)

    def basic_ready(self) -> bool:
        return bool(self.cloud_url and self.basic_email and self.basic_api_token)


class TenantZendeskConfig(Base):
    __tablename__ = "tenant_zendesk_configs"

    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True)
    connected = Column(Boolean, default=False, nullable=False)
    subdomain = Column(String, nullable=True)
    email = Column(String, nullable=True)
    api_token = Column(EncryptedText, nullable=True)
    group_id = Column(String, nullable=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
