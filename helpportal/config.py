"""Configuration for helpportal."""

import json

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./helpportal.db"
    api_prefix: str = "/api/v1"
    debug: bool = False

    # Public base URL, used to build OAuth and Jira Automation callback URLs
    app_url: str = "https://helpportal.app"

    # Atlassian OAuth 2.0 (3LO)
    atlassian_client_id: str = ""
    atlassian_client_secret: str = ""
    atlassian_auth_base: str = "https://auth.atlassian.com"
    atlassian_api_base: str = "https://api.atlassian.com"
    token_refresh_margin_seconds: int = 60

    # Background sweep that rotates refresh tokens before their 90-day expiry
    token_sweep_enabled: bool = False
    token_sweep_interval_seconds: int = 12 * 60 * 60
    token_sweep_skip_days: int = 7

    # Outbound provider calls
    provider_timeout_seconds: float = 15.0
    provider_cache_ttl_seconds: int = 300

    # Stripe
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300
    stripe_price_plans: dict[str, str] = {}

    # Key material for provider credentials encrypted at rest
    encryption_key: str = ""

    model_config = {"env_prefix": "PORTAL_"}

    @field_validator("stripe_price_plans", mode="before")
    @classmethod
    def _parse_stripe_price_plans(cls, value: object) -> object:
        if value in (None, ""):
            return {}
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            return json.loads(value)
        raise TypeError("stripe_price_plans must be a dict or JSON object string")

    @property
    def atlassian_oauth_configured(self) -> bool:
        return bool(self.atlassian_client_id and self.atlassian_client_secret)


settings = Settings()
