"""Pytest configuration and shared fixtures.

Tests run against SQLite through aiosqlite: an in-memory database per test,
or a file-backed one where several connections must race each other.
The schema (partial unique indexes, CHECK constraints, deletion trigger) is
the same one PostgreSQL gets.

Environment variables:
    TEST_DATABASE_URL: Run against another database (e.g. PostgreSQL) instead
        of in-memory SQLite. The schema is created and dropped per test.
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from loaderflow.core.config import WorkflowSettings
from loaderflow.core.settings import clear_settings_cache
from loaderflow.db import create_engine_for_url, create_schema, create_session_factory
from loaderflow.db.models import Base
from loaderflow.services.engine import VersioningEngine


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def database_url() -> str:
    """Get test database URL from environment or use in-memory SQLite."""
    return os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")


@pytest_asyncio.fixture
async def db_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Engine with a freshly created schema."""
    engine = create_engine_for_url(database_url)
    await create_schema(engine)
    yield engine
    if not database_url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine: each session gets its own connection."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'loaderflow.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def workflow_settings() -> WorkflowSettings:
    return WorkflowSettings(allow_self_approval=True, max_reason_length=500)


@pytest.fixture
def engine(
    session_factory: async_sessionmaker[AsyncSession],
    workflow_settings: WorkflowSettings,
) -> VersioningEngine:
    """Versioning engine over the per-test database."""
    return VersioningEngine(session_factory, workflow=workflow_settings)
