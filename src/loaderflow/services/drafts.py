"""Draft manager: creating, editing, submitting, and discarding drafts.

Each entity code has at most one draft slot (DRAFT or PENDING_APPROVAL).
Creating a draft while the slot is taken edits that row in place (a
cumulative edit) and leaves its status alone. Only unsubmitted drafts can
be updated by id, submitted or discarded. Drafts never touch the
archive: an unsubmitted draft that is discarded is simply deleted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from loaderflow.db.models.base import ChangeType, VersionStatus, utcnow
from loaderflow.errors import (
    EntityNotFoundError,
    InvalidStateTransitionError,
    ProtectedDeletionError,
)
from loaderflow.services.kinds import LOADER_KIND, EntityKind
from loaderflow.services.stores import ArchiveStore, LiveStore, VersionAllocator
from loaderflow.services.workflow import LifecycleState, VersionWorkflow, require_text

if TYPE_CHECKING:
    from collections.abc import Mapping

    from pydantic import BaseModel
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Matches the entity_code column width
MAX_ENTITY_CODE_LENGTH = 64

DEFAULT_SUMMARY_NEW = "New entity"
DEFAULT_SUMMARY_UPDATED = "Updated entity"


class DraftService:
    """Service for the author side of the workflow.

    Example:
        service = DraftService(session)
        draft = await service.create_draft(
            "SALES_DAILY",
            {"loader_sql": "SELECT ...", "source_database_id": 3},
            author="alice",
        )
        await service.submit_for_approval(draft.id, "alice")
    """

    def __init__(self, session: AsyncSession, kind: EntityKind = LOADER_KIND) -> None:
        self.session = session
        self.kind = kind
        self.live = LiveStore(session, kind)
        self.archive = ArchiveStore(session, kind)
        self.allocator = VersionAllocator(session, kind, live=self.live, archive=self.archive)

    async def _get_live(self, draft_id: int) -> Any:
        row = await self.live.get(draft_id, for_update=True)
        if row is None:
            raise EntityNotFoundError(
                f"No live version with id {draft_id}",
                draft_id=draft_id,
            )
        return row

    async def create_draft(
        self,
        entity_code: str,
        payload: Mapping[str, Any] | BaseModel,
        author: str,
        *,
        change_type: ChangeType = ChangeType.MANUAL_EDIT,
        import_label: str | None = None,
        change_summary: str | None = None,
    ) -> Any:
        """Create the draft of an entity, or overwrite its existing draft row.

        Args:
            entity_code: Business key of the entity.
            payload: Definition fields, validated against the kind's schema.
            author: Identity of the editor.
            change_type: Provenance of the change.
            import_label: Batch label for imported changes.
            change_summary: Free text; defaults to "New entity" or "Updated entity".

        Returns:
            The new DRAFT row, or the overwritten DRAFT or PENDING_APPROVAL row.

        Raises:
            ValidationError: Blank code or author, or invalid payload.
        """
        entity_code = require_text(
            entity_code, "entity_code", max_length=MAX_ENTITY_CODE_LENGTH
        )
        author = require_text(author, "author", entity_code=entity_code)
        validated = self.kind.validate_payload(payload, entity_code=entity_code)

        active = await self.live.get_active(entity_code)
        summary = change_summary or (
            DEFAULT_SUMMARY_NEW if active is None else DEFAULT_SUMMARY_UPDATED
        )

        # A DRAFT or PENDING_APPROVAL row is edited in place and keeps its status
        existing = await self.live.get_draft(entity_code, for_update=True)
        if existing is not None:
            self.kind.apply_payload(existing, validated)
            existing.change_type = change_type
            existing.import_label = import_label
            existing.change_summary = summary
            existing.modified_by = author
            existing.modified_at = utcnow()
            await self.session.flush()

            logger.info(
                "Draft replaced: entity_code=%s, version=%d, by=%s, change_type=%s",
                entity_code,
                existing.version_number,
                author,
                change_type.value,
            )
            return existing

        version_number = await self.allocator.next_version(entity_code)
        draft = self.kind.live_model(
            entity_code=entity_code,
            version_number=version_number,
            version_status=VersionStatus.DRAFT,
            parent_version_id=active.id if active is not None else None,
            enabled=False,
            created_by=author,
            created_at=utcnow(),
            change_type=change_type,
            import_label=import_label,
            change_summary=summary,
        )
        self.kind.apply_payload(draft, validated)
        await self.live.add(draft)

        logger.info(
            "Draft created: entity_code=%s, version=%d, by=%s, change_type=%s",
            entity_code,
            version_number,
            author,
            change_type.value,
        )
        return draft

    async def update_draft(
        self,
        draft_id: int,
        payload: Mapping[str, Any] | BaseModel,
        author: str,
        *,
        change_summary: str | None = None,
    ) -> Any:
        """Edit a DRAFT in place.

        Raises:
            EntityNotFoundError: Unknown id.
            InvalidStateTransitionError: The row is not a DRAFT.
            ValidationError: Blank author or invalid payload.
        """
        draft = await self._get_live(draft_id)
        if draft.version_status is not VersionStatus.DRAFT:
            raise InvalidStateTransitionError(
                "update",
                draft.version_status,
                entity_code=draft.entity_code,
            )
        author = require_text(author, "author", entity_code=draft.entity_code)
        validated = self.kind.validate_payload(payload, entity_code=draft.entity_code)

        self.kind.apply_payload(draft, validated)
        if change_summary is not None:
            draft.change_summary = change_summary
        draft.modified_by = author
        draft.modified_at = utcnow()
        await self.session.flush()

        logger.info(
            "Draft updated: entity_code=%s, version=%d, by=%s",
            draft.entity_code,
            draft.version_number,
            author,
        )
        return draft

    async def submit_for_approval(self, draft_id: int, author: str) -> Any:
        """Move a DRAFT to PENDING_APPROVAL.

        Raises:
            EntityNotFoundError: Unknown id.
            InvalidStateTransitionError: The row is not a DRAFT.
        """
        draft = await self._get_live(draft_id)
        author = require_text(author, "author", entity_code=draft.entity_code)
        VersionWorkflow.require(
            draft.version_status,
            LifecycleState.PENDING_APPROVAL,
            operation="submit",
            entity_code=draft.entity_code,
        )

        draft.version_status = VersionStatus.PENDING_APPROVAL
        draft.modified_by = author
        draft.modified_at = utcnow()
        await self.session.flush()

        logger.info(
            "Draft submitted for approval: entity_code=%s, version=%d, by=%s",
            draft.entity_code,
            draft.version_number,
            author,
        )
        return draft

    async def delete_draft(self, draft_id: int, author: str) -> None:
        """Physically delete an unsubmitted DRAFT.

        The version number it held is not reissued.

        Raises:
            EntityNotFoundError: Unknown or already deleted id.
            ProtectedDeletionError: The row is the ACTIVE version.
            InvalidStateTransitionError: The row is awaiting approval.
        """
        draft = await self._get_live(draft_id)
        if draft.version_status is VersionStatus.ACTIVE:
            raise ProtectedDeletionError(
                f"Version {draft.version_number} of {draft.entity_code} is ACTIVE; "
                "revoke it instead of deleting it",
                entity_code=draft.entity_code,
                version_number=draft.version_number,
            )
        VersionWorkflow.require(
            draft.version_status,
            LifecycleState.DELETED,
            operation="delete",
            entity_code=draft.entity_code,
        )

        await self.live.delete(draft)

        logger.info(
            "Draft deleted: entity_code=%s, version=%d, by=%s",
            draft.entity_code,
            draft.version_number,
            author,
        )

    async def get_draft(self, entity_code: str) -> Any | None:
        return await self.live.get_draft(entity_code)
