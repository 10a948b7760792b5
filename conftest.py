"""Shared test configuration, loaded before any helpportal module."""

import os

# Override settings before any helpportal modules are imported.
os.environ["PORTAL_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["PORTAL_STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PORTAL_ATLASSIAN_CLIENT_ID"] = "test-client-id"
os.environ["PORTAL_ATLASSIAN_CLIENT_SECRET"] = "test-client-secret"
os.environ["PORTAL_APP_URL"] = "https://portal.test"
os.environ["PORTAL_ENCRYPTION_KEY"] = "test-encryption-key"

import pytest
from helpportal.database import engine, Base, init_db
from helpportal.ticketing import factory


@pytest.fixture(autouse=True)
async def _reset_db():
    """Create all tables before each test, drop after."""
    await init_db()
    factory._providers.clear()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
