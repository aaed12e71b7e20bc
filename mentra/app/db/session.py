# mentra/app/db/session.py
"""
Async database session management for SQLAlchemy.

Production considerations:
- Uses asyncpg for PostgreSQL
- Uses aiosqlite for SQLite (local development and tests)
- Connection pooling configured for production workloads
- Pool settings differ for SQLite (no pooling) vs PostgreSQL

Every journal mutation runs inside ``async with session.begin()`` on a
session from ``AsyncSessionLocal``: the context manager rolls back on error
and the session returns its connection to the pool on exit.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from mentra.app.core.config import settings


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create and configure an async SQLAlchemy engine.

    SQLite:
    - NullPool (a fresh connection per session, so concurrent readers
      never share one connection)
    - check_same_thread=False for async compatibility

    PostgreSQL:
    - AsyncAdaptedQueuePool with pool_size=5 / max_overflow=10
    - pool_pre_ping=True to drop stale connections
    - pool_recycle=300
    """
    url = database_url or settings.DATABASE_URL
    echo = settings.DATABASE_ECHO if echo is None else echo

    if "sqlite" in url.lower():
        return create_async_engine(
            url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        echo=echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to ``engine``.

    expire_on_commit=False: entry rows stay readable after commit
    autoflush=False: explicit flush control, prevents unexpected queries
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Process-wide engine used by the API; services receive the factory explicitly
# ─────────────────────────────────────────────────────────────────────────────
engine: AsyncEngine = build_engine()

AsyncSessionLocal: async_sessionmaker[AsyncSession] = build_session_factory(engine)
