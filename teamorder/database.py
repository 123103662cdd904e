"""
Database Connection Module
Handles the session store connection using the SQLAlchemy async engine.
"""

import logging
from datetime import datetime
from typing import Any, AsyncIterator

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from teamorder.core.clock import ensure_utc
from teamorder.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def engine_options(url: str) -> dict[str, Any]:
    """Connection options for ``url``; SQLite (tests) uses the default pool."""
    options: dict[str, Any] = {"echo": settings.database_echo}
    if url.startswith("sqlite"):
        return options
    options.update(
        pool_size=5,  # Connection pool size
        max_overflow=10,  # Extra connections when pool is full
        pool_timeout=settings.store_timeout_seconds,  # Fail fast on a stuck pool
        pool_pre_ping=True,
    )
    return options


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, **engine_options(url))


# Create async engine
engine = build_engine(settings.database_url)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always loads as UTC.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``;
    normalising here keeps comparisons with the clock valid on every backend.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register models on the metadata
    import teamorder.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables created successfully!")
