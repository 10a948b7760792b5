"""Idempotency tracking for Stripe webhook deliveries."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from helpportal.database import Base


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String, unique=True, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    tenant_id = Column(String, nullable=True)
    # applied | noop | stale | skipped
    outcome = Column(String, nullable=False)
    received_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
