"""Async engine, session factory and schema lifecycle."""

import logging
from pathlib import Path
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from helpportal.config import settings

logger = logging.getLogger(__name__)

_url = make_url(settings.database_url)
_is_sqlite = _url.get_backend_name() == "sqlite"
# Every connection to ":memory:" is a new empty database, so they must share one
_in_memory = _is_sqlite and _url.database in (None, "", ":memory:")


def _engine_options() -> dict[str, Any]:
    if _in_memory:
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    if _is_sqlite:
        db_file = Path(_url.database)
        if str(db_file.parent) != ".":
            db_file.parent.mkdir(parents=True, exist_ok=True)
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True}


engine = create_async_engine(settings.database_url, echo=settings.debug, **_engine_options())

if _is_sqlite:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        # tenant rows cascade to their integration configs and subscription
        cursor.execute("PRAGMA foreign_keys=ON;")
        if not _in_memory:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA busy_timeout=30000;")
        cursor.close()

# Webhook and token handlers read attributes after commit
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    # Model modules register their tables on Base.metadata when imported
    import helpportal.models.subscription  # noqa: F401
    import helpportal.models.tenant  # noqa: F401
    import helpportal.models.webhook_event  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready (%s)", _url.render_as_string(hide_password=True))


async def close_db() -> None:
    await engine.dispose()
