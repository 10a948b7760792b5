"""Onboarding status response."""

from typing import Literal, Optional

from pydantic import BaseModel

Step = Literal["subscribe", "onboarding", "connect_provider", "dashboard", "resubscribe"]


class OnboardingSteps(BaseModel):
    tenant_created: bool = False
    subscription_active: bool = False
    provider_connected: bool = False
    automation_configured: bool = False


class TenantSummary(BaseModel):
    id: str
    slug: str
    name: str
    ticket_provider: Optional[str] = None


class OnboardingStatus(BaseModel):
    success: bool = True
    onboarded: bool
    step: Step
    steps: OnboardingSteps
    tenant: Optional[TenantSummary] = None
