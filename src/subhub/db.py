"""
SQLAlchemy 2.0 Database Configuration

Async engine, session factory and declarative base shared by all models.
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote_plus
from uuid import uuid4

import structlog
from fastapi import Request
from sqlalchemy import DateTime, String, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from subhub.settings import settings

logger = structlog.get_logger(__name__)

# ==========================================
# Database URLs from settings
# ==========================================


def get_database_url() -> str:
    """Get the async database URL from settings."""
    if settings.database.url:
        url = settings.database.url
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    # Local development falls back to SQLite when PostgreSQL is not configured
    if not settings.is_production and not settings.database.password:
        return "sqlite+aiosqlite:///./subhub_dev.sqlite"

    username = quote_plus(settings.database.username)
    password = quote_plus(settings.database.password)
    host = settings.database.host
    port = settings.database.port
    database = settings.database.database

    return f"postgresql+asyncpg://{username}:{password}@{host}:{port}/{database}"


# ==========================================
# SQLAlchemy 2.0 Declarative Base
# ==========================================


class Base(DeclarativeBase):
    """Base class for all database models using SQLAlchemy 2.0 declarative mapping."""

    pass


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops the offset on storage, so values are normalised to UTC on
    the way in and re-tagged with UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def generate_id() -> str:
    return str(uuid4())


# ==========================================
# Common Mixins
# ==========================================


class IdMixin:
    """String UUID primary key."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)


class TimestampMixin:
    """Adds created_at and updated_at timestamps to models."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


# ==========================================
# Engine and Session Management
# ==========================================

_async_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def create_engine_for_url(url: str, **overrides: Any) -> AsyncEngine:
    """Build an async engine, applying pool settings only where the driver supports them."""
    options: dict[str, Any] = {"echo": settings.database.echo}
    if make_url(url).get_backend_name().startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_timeout=settings.database.pool_timeout,
            pool_recycle=settings.database.pool_recycle,
            pool_pre_ping=settings.database.pool_pre_ping,
        )
    options.update(overrides)
    return create_async_engine(url, **options)


def get_async_engine() -> AsyncEngine:
    """Get or create the asynchronous engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_engine_for_url(get_database_url())
    return _async_engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the process-wide session factory."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = create_session_factory(get_async_engine())
    return _async_session_maker


# ==========================================
# Request Sessions
# ==========================================


async def get_async_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session.

    Uses the session factory the application was built with so tests can
    point the whole app at an isolated database.
    """
    factory = getattr(request.app.state, "session_factory", None) or get_session_factory()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# ==========================================
# Database Initialization
# ==========================================


async def create_all_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables in the database."""
    # Import models so they are registered on Base.metadata
    from subhub.audit import models as _audit_models  # noqa: F401
    from subhub.auth import models as _auth_models  # noqa: F401
    from subhub.plans import models as _plan_models  # noqa: F401
    from subhub.subscriptions import models as _subscription_models  # noqa: F401

    async with (engine or get_async_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_database_health(session: AsyncSession) -> bool:
    """Check if the database is accessible."""
    try:
        await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("database.health_check_failed", error=str(e))
        return False


async def dispose_engine() -> None:
    global _async_engine, _async_session_maker
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_maker = None


__all__ = [
    "Base",
    "UTCDateTime",
    "IdMixin",
    "TimestampMixin",
    "utcnow",
    "generate_id",
    "get_database_url",
    "create_engine_for_url",
    "get_async_engine",
    "create_session_factory",
    "get_session_factory",
    "get_async_session",
    "create_all_tables",
    "check_database_health",
    "dispose_engine",
]
