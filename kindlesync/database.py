"""Database engine, sessions and shared column types.

The engine is created on first use from ``DATABASE_URL``, so tests and the
janitor CLI can configure the environment before anything connects.
"""

from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import DateTime, TypeDecorator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from kindlesync.config import get_settings


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC, reading naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamp that always round-trips as an aware UTC datetime.

    SQLite keeps no zone and hands back naive values; PostgreSQL returns
    them in the connection's zone. Both come back as UTC here.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return as_utc(value)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Engine for the configured database, created on first call."""
    global _engine
    if _engine is None:
        url = get_settings().database_url
        # aiosqlite has no server connection to go stale
        options = {} if url.startswith("sqlite") else {"pool_pre_ping": True}
        _engine = create_async_engine(url, **options)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with get_session_maker()() as session:
        yield session


async def init_db() -> None:
    """Create any missing tables."""
    # Mapped classes must be imported before create_all sees them
    import kindlesync.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine; the next get_engine() builds a fresh one."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
