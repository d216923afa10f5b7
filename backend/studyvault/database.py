"""
StudyVault Backend — Database Session Management
==================================================

What:  Async SQLAlchemy engine, session factory, declarative base and a
       create_tables() helper for the test suite.
How:   build_engine() applies connection pooling for server databases and
       skips pool sizing for sqlite (used by the test suite).
Who:   AIStore opens one session per operation from `async_session_factory`;
       the health route runs SELECT 1 on the engine stored in app.state.
When:  Engine is created at module import; sessions are created per call.

Connection Pooling Strategy (server databases):
    pool_size=20, max_overflow=10, pool_pre_ping, pool_recycle=3600
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from studyvault.config import settings


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    sqlite drivers do not accept QueuePool sizing arguments, so those are
    only passed for server databases.
    """
    kwargs: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(database_url, **kwargs)


# ── Engine & Session Factory ──────────────────────────────────────────────
engine = build_engine(settings.database_url)

# expire_on_commit=False: rows stay readable after the owning session commits,
# which the store relies on when converting rows into schemas
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models (shared metadata for Alembic)."""
    pass


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def create_tables(target: AsyncEngine = engine) -> None:
    """Create all tables directly (tests and local sqlite; production uses Alembic)."""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
