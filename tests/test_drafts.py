"""Tests for the draft manager.

Tests cover:
- Creating drafts for new and existing entities
- Cumulative drafts (create while a DRAFT exists)
- Editing, submitting and deleting drafts
- Status and input validation
"""

import pytest

from loaderflow.db.models import ChangeType, VersionStatus
from loaderflow.errors import (
    EntityNotFoundError,
    InvalidStateTransitionError,
    ProtectedDeletionError,
    ValidationError,
)
from tests.factories import create_active, create_loader_payload, create_pending


class TestCreateDraft:
    """Tests for create_draft."""

    @pytest.mark.asyncio
    async def test_new_entity(self, engine):
        """The first draft of a code gets version 1 and no parent."""
        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")

        assert draft.version_status is VersionStatus.DRAFT
        assert draft.version_number == 1
        assert draft.parent_version_id is None
        assert draft.enabled is False
        assert draft.created_by == "alice"
        assert draft.change_type is ChangeType.MANUAL_EDIT
        assert draft.change_summary == "New entity"
        assert draft.loader_sql.startswith("SELECT")

    @pytest.mark.asyncio
    async def test_existing_entity_links_parent(self, engine):
        """A draft over an ACTIVE version references it and takes the next number."""
        active = await create_active(engine, "SALES_DAILY")

        draft = await engine.create_draft(
            "SALES_DAILY", create_loader_payload(max_parallel_executions=2), "carol"
        )

        assert draft.version_number == active.version_number + 1
        assert draft.parent_version_id == active.id
        assert draft.change_summary == "Updated entity"
        # The ACTIVE version is untouched
        still_active = await engine.get_active("SALES_DAILY")
        assert still_active.id == active.id
        assert still_active.max_parallel_executions == 1

    @pytest.mark.asyncio
    async def test_existing_draft_is_overwritten(self, engine):
        """Creating again while a DRAFT exists edits it in place."""
        first = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")

        second = await engine.create_draft(
            "SALES_DAILY",
            create_loader_payload(sql="SELECT 2"),
            "dave",
            change_type=ChangeType.IMPORT_UPDATE,
            import_label="batch-7",
            change_summary="Reimported",
        )

        assert second.id == first.id
        assert second.version_number == first.version_number
        assert second.loader_sql == "SELECT 2"
        assert second.modified_by == "dave"
        assert second.modified_at is not None
        assert second.change_type is ChangeType.IMPORT_UPDATE
        assert second.import_label == "batch-7"
        assert second.change_summary == "Reimported"
        assert len(await engine.list_pending()) == 1

    @pytest.mark.asyncio
    async def test_pending_draft_overwritten_in_place(self, engine):
        """Creating over a submitted draft edits it and keeps it PENDING_APPROVAL."""
        pending = await create_pending(engine, "SALES_DAILY")

        replaced = await engine.create_draft(
            "SALES_DAILY", create_loader_payload(sql="SELECT 9"), "dave"
        )

        assert replaced.id == pending.id
        assert replaced.version_number == pending.version_number
        assert replaced.version_status is VersionStatus.PENDING_APPROVAL
        assert replaced.loader_sql == "SELECT 9"
        assert replaced.modified_by == "dave"
        assert replaced.modified_at is not None
        assert await engine.has_pending_approval("SALES_DAILY")

        active = await engine.approve(pending.id, "bob")
        assert active.loader_sql == "SELECT 9"

    @pytest.mark.asyncio
    async def test_import_metadata(self, engine):
        draft = await engine.create_draft(
            "SALES_DAILY",
            create_loader_payload(),
            "importer",
            change_type=ChangeType.IMPORT_CREATE,
            import_label="2026-10 migration",
        )
        assert draft.change_type is ChangeType.IMPORT_CREATE
        assert draft.import_label == "2026-10 migration"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, engine):
        """Payload errors surface as ValidationError and nothing is stored."""
        with pytest.raises(ValidationError) as exc_info:
            await engine.create_draft(
                "SALES_DAILY", create_loader_payload(source_database_id=0), "alice"
            )
        assert exc_info.value.field == "source_database_id"
        assert await engine.get_draft("SALES_DAILY") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("code", "author"), [("", "alice"), ("SALES_DAILY", "  ")])
    async def test_blank_identity(self, engine, code, author):
        with pytest.raises(ValidationError):
            await engine.create_draft(code, create_loader_payload(), author)

    @pytest.mark.asyncio
    async def test_code_too_long(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.create_draft("X" * 65, create_loader_payload(), "alice")
        assert exc_info.value.field == "entity_code"


class TestUpdateDraft:
    """Tests for update_draft."""

    @pytest.mark.asyncio
    async def test_update(self, engine):
        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")

        updated = await engine.update_draft(
            draft.id,
            create_loader_payload(min_interval_seconds=30),
            "bob",
            change_summary="Slower polling",
        )

        assert updated.min_interval_seconds == 30
        assert updated.modified_by == "bob"
        assert updated.change_summary == "Slower polling"
        assert updated.version_status is VersionStatus.DRAFT

    @pytest.mark.asyncio
    async def test_update_keeps_summary_when_omitted(self, engine):
        draft = await engine.create_draft(
            "SALES_DAILY", create_loader_payload(), "alice", change_summary="Initial"
        )
        updated = await engine.update_draft(draft.id, create_loader_payload(), "alice")
        assert updated.change_summary == "Initial"

    @pytest.mark.asyncio
    async def test_update_pending_rejected(self, engine):
        pending = await create_pending(engine, "SALES_DAILY")
        with pytest.raises(InvalidStateTransitionError):
            await engine.update_draft(pending.id, create_loader_payload(), "alice")

    @pytest.mark.asyncio
    async def test_update_active_rejected(self, engine):
        active = await create_active(engine, "SALES_DAILY")
        with pytest.raises(InvalidStateTransitionError):
            await engine.update_draft(active.id, create_loader_payload(), "alice")

    @pytest.mark.asyncio
    async def test_update_unknown_id(self, engine):
        with pytest.raises(EntityNotFoundError):
            await engine.update_draft(9999, create_loader_payload(), "alice")


class TestSubmitForApproval:
    """Tests for submit_for_approval."""

    @pytest.mark.asyncio
    async def test_submit(self, engine):
        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")

        pending = await engine.submit_for_approval(draft.id, "alice")

        assert pending.version_status is VersionStatus.PENDING_APPROVAL
        assert pending.modified_by == "alice"
        assert await engine.has_pending_approval("SALES_DAILY")

    @pytest.mark.asyncio
    async def test_submit_twice(self, engine):
        pending = await create_pending(engine, "SALES_DAILY")
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await engine.submit_for_approval(pending.id, "alice")
        assert exc_info.value.operation == "submit"

    @pytest.mark.asyncio
    async def test_submit_active(self, engine):
        active = await create_active(engine, "SALES_DAILY")
        with pytest.raises(InvalidStateTransitionError):
            await engine.submit_for_approval(active.id, "alice")

    @pytest.mark.asyncio
    async def test_submit_unknown(self, engine):
        with pytest.raises(EntityNotFoundError):
            await engine.submit_for_approval(424242, "alice")


class TestDeleteDraft:
    """Tests for delete_draft."""

    @pytest.mark.asyncio
    async def test_delete(self, engine):
        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")

        await engine.delete_draft(draft.id, "alice")

        assert await engine.get_draft("SALES_DAILY") is None
        assert await engine.history("SALES_DAILY") == []

    @pytest.mark.asyncio
    async def test_delete_twice_not_found(self, engine):
        """A second delete of the same id reports the row as missing."""
        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")
        await engine.delete_draft(draft.id, "alice")

        with pytest.raises(EntityNotFoundError):
            await engine.delete_draft(draft.id, "alice")

    @pytest.mark.asyncio
    async def test_delete_pending(self, engine):
        pending = await create_pending(engine, "SALES_DAILY")
        with pytest.raises(InvalidStateTransitionError):
            await engine.delete_draft(pending.id, "alice")
        assert await engine.has_pending_approval("SALES_DAILY")

    @pytest.mark.asyncio
    async def test_delete_active_is_protected(self, engine):
        active = await create_active(engine, "SALES_DAILY")
        with pytest.raises(ProtectedDeletionError):
            await engine.delete_draft(active.id, "alice")
        assert (await engine.get_active("SALES_DAILY")).id == active.id

    @pytest.mark.asyncio
    async def test_deleted_number_not_reissued(self, engine):
        """The next draft after a deletion gets a fresh version number."""
        draft = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")
        await engine.delete_draft(draft.id, "alice")

        again = await engine.create_draft("SALES_DAILY", create_loader_payload(), "alice")

        assert again.version_number == draft.version_number + 1
