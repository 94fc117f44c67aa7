"""
Async SQLAlchemy database engine and session management.
Uses asyncpg for PostgreSQL in production, aiosqlite for local runs and tests.
CRITICAL: expire_on_commit=False prevents lazy-loading issues in async contexts.
"""
import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from schedsync.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create the async engine. Pool sizing only applies to server databases."""
    kwargs: dict = {"echo": settings.app_env == "development" and settings.log_level == "DEBUG"}
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create tables directly (local runs and tests; production uses alembic)."""
    import schedsync.models  # noqa: F401 - registers tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")
