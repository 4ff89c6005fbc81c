"""Async SQLAlchemy engine and session factory."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()


def _engine_options(database_url: str) -> dict:
    options = {"echo": _settings.db_echo, "pool_pre_ping": True}
    # SQLite has no connection pool to size
    if not database_url.startswith("sqlite"):
        options.update(pool_size=_settings.db_pool_size, max_overflow=_settings.db_max_overflow)
    return options


engine: AsyncEngine = create_async_engine(_settings.database_url, **_engine_options(_settings.database_url))

# Objects stay readable after commit; order units reload what they lock
SessionFactory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def get_session() -> AsyncIterator[AsyncSession]:  # pragma: no cover
    """FastAPI dependency to get an async DB session."""
    async with SessionFactory() as session:
        yield session


async def dispose_engine() -> None:  # pragma: no cover
    await engine.dispose()
    logger.info("Database engine disposed")
