"""Async SQLAlchemy engine, declarative base, and session factories.

Provides:
- Base: Declarative base shared by all models
- get_engine(): Lazily created async engine singleton
- get_session_factory(): async_sessionmaker bound to the engine
- get_session(): Request-scoped AsyncSession generator for FastAPI dependencies
- init_db() / close_db(): Lifespan hooks

Tenant isolation is enforced at the query level: every tenant-owned table
carries an organization_id column and every query filters on it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.vetor_core.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def utcnow() -> datetime:
    """Timezone-aware current UTC time, used as the Python-side column default."""
    return datetime.now(timezone.utc)


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.DATABASE_URL.startswith("sqlite"):
            _engine = create_async_engine(settings.DATABASE_URL, echo=False)
        else:
            _engine = create_async_engine(
                settings.DATABASE_URL,
                pool_size=10,
                max_overflow=10,
                pool_pre_ping=True,
                echo=False,
            )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory bound to the engine singleton."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# ── Sessions ────────────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession that is closed when the request finishes."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create all tables if they don't exist."""
    # Import models so they register with Base.metadata
    import src.vetor_core.deals.models  # noqa: F401
    import src.vetor_core.models.tenant  # noqa: F401
    import src.vetor_core.sync.models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
