"""Tenant subscription state mirrored from Stripe."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from helpportal.database import Base

ACTIVE = "active"
PAST_DUE = "past_due"
CANCELED = "canceled"
INCOMPLETE = "incomplete"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False)
    status = Column(String, default=INCOMPLETE, nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True, index=True)
    stripe_price_id = Column(String, nullable=True)
    plan = Column(String, nullable=True)
    # ``created`` timestamp of the newest Stripe event applied to this row
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
