"""Tests for engine construction and the process-wide database lifecycle."""

import pytest
from sqlalchemy import select

import loaderflow.db as db
from loaderflow.db import (
    close_engine,
    create_schema,
    get_async_session,
    get_engine,
    get_session_factory,
    to_async_url,
)
from loaderflow.db.models import Loader, VersionStatus
from loaderflow.services.engine import VersioningEngine
from tests.factories import create_active


class TestToAsyncUrl:
    """Tests for driver rewriting."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://u:p@db/loaders", "postgresql+psycopg://u:p@db/loaders"),
            ("postgres://u:p@db/loaders", "postgresql+psycopg://u:p@db/loaders"),
            ("sqlite:///./loaderflow.db", "sqlite+aiosqlite:///./loaderflow.db"),
            ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
        ],
    )
    def test_rewrite(self, url, expected):
        assert to_async_url(url) == expected


class TestProcessEngine:
    """Tests for the settings-driven engine, session helper and shutdown."""

    @pytest.mark.asyncio
    async def test_settings_to_shutdown(self, monkeypatch, tmp_path):
        monkeypatch.setenv(
            "LOADERFLOW_DATABASE__URL", f"sqlite+aiosqlite:///{tmp_path / 'process.db'}"
        )
        monkeypatch.setenv("LOADERFLOW_WORKFLOW__ALLOW_SELF_APPROVAL", "false")

        try:
            await create_schema(get_engine())
            engine = VersioningEngine.from_settings()
            assert engine.session_factory is get_session_factory()
            assert engine.workflow.allow_self_approval is False

            active = await create_active(engine, "SALES_DAILY")

            async with get_async_session() as session:
                row = (
                    await session.execute(select(Loader).where(Loader.id == active.id))
                ).scalar_one()
                assert row.version_status is VersionStatus.ACTIVE
        finally:
            await close_engine()

        assert db._engine is None
        assert db._async_session_factory is None

    @pytest.mark.asyncio
    async def test_session_rolls_back_on_error(self, monkeypatch, tmp_path):
        monkeypatch.setenv(
            "LOADERFLOW_DATABASE__URL", f"sqlite+aiosqlite:///{tmp_path / 'process.db'}"
        )

        try:
            await create_schema(get_engine())
            with pytest.raises(RuntimeError):
                async with get_async_session() as session:
                    session.add(
                        Loader(
                            entity_code="SALES_DAILY",
                            version_number=1,
                            version_status=VersionStatus.DRAFT,
                            enabled=False,
                            created_by="alice",
                            loader_sql="SELECT 1",
                            source_database_id=1,
                        )
                    )
                    await session.flush()
                    raise RuntimeError("boom")

            async with get_async_session() as session:
                rows = (await session.execute(select(Loader))).scalars().all()
                assert rows == []
        finally:
            await close_engine()

    @pytest.mark.asyncio
    async def test_close_without_engine(self):
        await close_engine()
        assert db._engine is None
