"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production, aiosqlite
for local runs and tests).

Provides:
    • Lazily created async engine and session factory
    • Base model for ORM entities
    • Table creation / disposal hooks for the application lifespan

Usage:
    from rapidsafe.core.database import Base, get_session_factory

    async with get_session_factory()() as session:
        ...
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from rapidsafe.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite URLs share a single connection (StaticPool) so an in-memory
    database survives across sessions; server databases get a sized pool.
    """
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=echo,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


# ── Lifecycle ──
async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables."""
    # Import registers the ORM models on Base.metadata
    from rapidsafe.alerts import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db() -> None:
    """Dispose engine connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None
    _session_factory = None
