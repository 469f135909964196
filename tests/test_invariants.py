"""Tests for storage-level invariants.

These bypass the services and write to the tables directly, checking that
the database refuses what the workflow must never produce:
- Two ACTIVE, or two DRAFT/PENDING_APPROVAL rows for one code
- enabled on a non-ACTIVE row, ACTIVE without approval metadata
- Non-positive or duplicate version numbers
- Deleting an ACTIVE row that has not been archived
- Modifying an archived row
"""

from datetime import UTC, datetime

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from loaderflow.db.models import Loader, LoaderArchive, PurgeStrategy, VersionStatus
from loaderflow.errors import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    ProtectedDeletionError,
)
from loaderflow.services.engine import translate_storage_error
from tests.factories import create_active, create_loader_payload, create_pending


def make_loader(entity_code: str = "SALES_DAILY", version_number: int = 1, **overrides) -> Loader:
    """Build a live row with every required column set."""
    values = {
        "entity_code": entity_code,
        "version_number": version_number,
        "version_status": VersionStatus.DRAFT,
        "enabled": False,
        "created_by": "alice",
        "created_at": datetime.now(UTC),
        "loader_sql": "SELECT 1",
        "source_database_id": 1,
        "min_interval_seconds": 10,
        "max_interval_seconds": 60,
        "max_query_period_seconds": 432000,
        "max_parallel_executions": 1,
        "purge_strategy": PurgeStrategy.FAIL_ON_DUPLICATE,
        "source_timezone_offset_hours": 0,
        **overrides,
    }
    return Loader(**values)


def approved(**overrides) -> dict:
    return {
        "version_status": VersionStatus.ACTIVE,
        "approved_by": "bob",
        "approved_at": datetime.now(UTC),
        **overrides,
    }


class TestUniqueSlots:
    """At most one ACTIVE and one DRAFT/PENDING_APPROVAL row per code."""

    @pytest.mark.asyncio
    async def test_two_active_rows_refused(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(IntegrityError) as exc_info:
                async with session.begin():
                    session.add(make_loader(version_number=1, **approved()))
                    session.add(make_loader(version_number=2, **approved()))
                    await session.flush()

        translated = translate_storage_error(exc_info.value, "SALES_DAILY")
        assert isinstance(translated, ConcurrencyConflictError)
        assert translated.constraint is not None

    @pytest.mark.asyncio
    async def test_draft_and_pending_share_one_slot(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                async with session.begin():
                    session.add(make_loader(version_number=1))
                    session.add(
                        make_loader(version_number=2, version_status=VersionStatus.PENDING_APPROVAL)
                    )
                    await session.flush()

    @pytest.mark.asyncio
    async def test_active_and_draft_coexist(self, session_factory):
        async with session_factory() as session:
            async with session.begin():
                session.add(make_loader(version_number=1, **approved()))
                session.add(make_loader(version_number=2))
            result = await session.execute(select(Loader))
            assert len(result.scalars().all()) == 2

    @pytest.mark.asyncio
    async def test_other_codes_are_independent(self, session_factory):
        async with session_factory() as session:
            async with session.begin():
                session.add(make_loader("SALES_DAILY", **approved()))
                session.add(make_loader("FX_RATES", **approved()))


class TestRowChecks:
    """CHECK constraints on live rows."""

    @pytest.mark.asyncio
    async def test_enabled_requires_active(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                async with session.begin():
                    session.add(make_loader(enabled=True))

    @pytest.mark.asyncio
    async def test_active_requires_approval_metadata(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                async with session.begin():
                    session.add(make_loader(version_status=VersionStatus.ACTIVE))

    @pytest.mark.asyncio
    async def test_rejection_metadata_all_or_nothing(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                async with session.begin():
                    session.add(
                        make_loader(
                            version_status=VersionStatus.PENDING_APPROVAL,
                            rejected_by="bob",
                        )
                    )

    @pytest.mark.asyncio
    async def test_version_number_positive(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                async with session.begin():
                    session.add(make_loader(version_number=0))

    @pytest.mark.asyncio
    async def test_version_number_unique_per_code(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                async with session.begin():
                    session.add(make_loader(version_number=1, **approved()))
                    session.add(make_loader(version_number=1))
                    await session.flush()


class TestProtectedDeletion:
    """ACTIVE rows only leave the live table through archival."""

    @pytest.mark.asyncio
    async def test_orm_delete_refused(self, engine, session_factory):
        active = await create_active(engine, "SALES_DAILY")

        async with session_factory() as session:
            with pytest.raises(ProtectedDeletionError):
                async with session.begin():
                    row = await session.get(Loader, active.id)
                    await session.delete(row)
                    await session.flush()

        assert (await engine.get_active("SALES_DAILY")).id == active.id

    @pytest.mark.asyncio
    async def test_sql_delete_refused_by_trigger(self, engine, session_factory):
        """A raw DELETE is stopped by the database trigger."""
        active = await create_active(engine, "SALES_DAILY")

        async with session_factory() as session:
            with pytest.raises(IntegrityError, match="protected_deletion") as exc_info:
                async with session.begin():
                    await session.execute(
                        text("DELETE FROM loaders WHERE id = :id"), {"id": active.id}
                    )

        assert isinstance(translate_storage_error(exc_info.value), ProtectedDeletionError)
        assert (await engine.get_active("SALES_DAILY")).id == active.id

    @pytest.mark.asyncio
    async def test_sql_delete_of_draft_allowed(self, engine, session_factory):
        """The trigger only guards ACTIVE rows."""
        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")

        async with session_factory() as session, session.begin():
            await session.execute(text("DELETE FROM loaders WHERE id = :id"), {"id": draft.id})

        assert await engine.get_draft("SALES_DAILY") is None


class TestArchiveImmutability:
    """Archived snapshots are never modified."""

    @pytest.mark.asyncio
    async def test_update_refused(self, engine, session_factory):
        pending = await create_pending(engine, "SALES_DAILY")
        snapshot = await engine.reject(pending.id, "bob", "No")

        async with session_factory() as session:
            with pytest.raises(InvalidStateTransitionError, match="immutable"):
                async with session.begin():
                    row = await session.get(LoaderArchive, snapshot.id)
                    row.archive_reason = "Rewritten"
                    await session.flush()

        stored = await engine.get_archived_version("SALES_DAILY", snapshot.version_number)
        assert stored.archive_reason == "Rejected by bob: No"

    @pytest.mark.asyncio
    async def test_duplicate_snapshot_refused(self, engine, session_factory):
        """One snapshot per (entity_code, version_number)."""
        pending = await create_pending(engine, "SALES_DAILY")
        snapshot = await engine.reject(pending.id, "bob", "No")

        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                async with session.begin():
                    session.add(
                        LoaderArchive(
                            original_id=snapshot.original_id,
                            archive_status=snapshot.archive_status,
                            archived_at=datetime.now(UTC),
                            archived_by="mallory",
                            entity_code="SALES_DAILY",
                            version_number=snapshot.version_number,
                            enabled=False,
                            created_by="alice",
                            created_at=datetime.now(UTC),
                            loader_sql="SELECT 1",
                            source_database_id=1,
                            min_interval_seconds=10,
                            max_interval_seconds=60,
                            max_query_period_seconds=432000,
                            max_parallel_executions=1,
                            purge_strategy=PurgeStrategy.FAIL_ON_DUPLICATE,
                            source_timezone_offset_hours=0,
                        )
                    )


class TestWorkflowInvariants:
    """Properties that must hold after any sequence of operations."""

    @pytest.mark.asyncio
    async def test_version_numbers_strictly_increase(self, engine):
        """Numbers grow with every new draft and are never reused."""
        issued = []

        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")
        issued.append(draft.version_number)
        await engine.delete_draft(draft.id, "alice")

        active = await create_active(engine, "SALES_DAILY")
        issued.append(active.version_number)

        pending = await create_pending(engine, "SALES_DAILY")
        issued.append(pending.version_number)
        await engine.reject(pending.id, "bob", "No")

        await engine.revoke("SALES_DAILY", "admin", "Pause")
        rolled = await engine.rollback("SALES_DAILY", active.version_number, "carol")
        issued.append(rolled.version_number)

        assert issued == sorted(set(issued))
        assert issued == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_at_most_one_active_and_one_draft(self, engine, session_factory):
        await create_active(engine, "SALES_DAILY")
        await create_active(engine, "SALES_DAILY")
        await create_pending(engine, "SALES_DAILY")

        async with session_factory() as session:
            rows = (
                (await session.execute(select(Loader).where(Loader.entity_code == "SALES_DAILY")))
                .scalars()
                .all()
            )

        statuses = [row.version_status for row in rows]
        assert statuses.count(VersionStatus.ACTIVE) == 1
        assert sum(status.is_draft for status in statuses) == 1
        assert all(row.enabled is False or row.version_status is VersionStatus.ACTIVE for row in rows)
