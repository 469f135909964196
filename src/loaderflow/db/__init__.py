"""loaderflow database module.

Database models and migrations:
- SQLAlchemy 2.x ORM models
- Alembic migration configuration
- Async engines for PostgreSQL (psycopg) and SQLite (aiosqlite)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from loaderflow.core.config import DatabaseSettings

logger = logging.getLogger(__name__)

# Module-level session factory (initialized on first use)
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def to_async_url(url: str) -> str:
    """Rewrite a plain database URL to use the async driver.

    Returns:
        URL using psycopg (PostgreSQL) or aiosqlite (SQLite).
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Make SQLite transactions take the write lock up front.

    pysqlite defers BEGIN until the first write, so two transactions can both
    read a PENDING_APPROVAL row before either writes it. Emitting
    ``BEGIN IMMEDIATE`` ourselves serializes writers the way
    ``SELECT ... FOR UPDATE`` does on PostgreSQL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn: Any, _: Any) -> None:
        # Let SQLAlchemy emit BEGIN instead of the driver
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for_url(
    url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine, dispatching on the URL scheme.

    Args:
        url: PostgreSQL or SQLite URL, with or without the async driver.
        pool_size: Persistent connections (ignored for SQLite).
        max_overflow: Overflow connections (ignored for SQLite).
        pool_timeout: Seconds to wait for a pooled connection (ignored for SQLite).
        echo: Log SQL statements.

    Returns:
        Configured AsyncEngine.
    """
    url = to_async_url(url)

    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        _configure_sqlite(engine)
        logger.info("Created SQLite engine: url=%s", url)
        return engine

    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
        echo=echo,
    )
    logger.info(
        "Created PostgreSQL engine: pool_size=%d, max_overflow=%d",
        pool_size,
        max_overflow,
    )
    return engine


def create_engine_from_settings(settings: DatabaseSettings) -> AsyncEngine:
    """Create an async engine from database settings."""
    return create_engine_for_url(
        settings.url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        echo=settings.echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose rows stay readable after commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables, indexes, and triggers.

    Idempotent. Intended for tests and local SQLite use; PostgreSQL
    deployments run the Alembic migrations instead.
    """
    from loaderflow.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Schema created/verified: dialect=%s", engine.dialect.name)


def _init_engine() -> None:
    """Initialize the database engine and session factory."""
    global _engine, _async_session_factory

    if _engine is not None:
        return

    from loaderflow.core.settings import get_settings

    settings = get_settings()
    _engine = create_engine_from_settings(settings.database)
    _async_session_factory = create_session_factory(_engine)


def get_engine() -> AsyncEngine:
    """Get the process-wide engine built from settings."""
    _init_engine()

    if _engine is None:
        msg = "Database engine not initialized"
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the process-wide session factory built from settings."""
    _init_engine()

    if _async_session_factory is None:
        msg = "Database session factory not initialized"
        raise RuntimeError(msg)
    return _async_session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    This is a context manager that yields a session and handles
    cleanup (rollback on error, close) automatically.

    Usage:
        async with get_async_session() as session:
            async with session.begin():
                await ApprovalService(session).approve(draft_id, "reviewer")

    Yields:
        AsyncSession for database operations.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_engine() -> None:
    """Close the database engine.

    Call this during application shutdown to clean up connections.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
