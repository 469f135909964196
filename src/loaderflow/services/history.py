"""Version history and rollback.

History merges the live and archive stores into one timeline per entity.
Rollback never revives an archived row: it copies the archived payload into
a fresh draft that goes through review like any other change.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime  # noqa: TC003 - dataclass field type
from typing import TYPE_CHECKING, Any

from loaderflow.db.models.base import ChangeType
from loaderflow.errors import EntityNotFoundError
from loaderflow.services.drafts import DraftService
from loaderflow.services.kinds import LOADER_KIND, EntityKind
from loaderflow.services.stores import ArchiveStore, LiveStore
from loaderflow.services.workflow import LifecycleState, require_text

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class RecordLocation(enum.Enum):
    """Which store a history record was read from."""

    LIVE = "LIVE"
    ARCHIVE = "ARCHIVE"


@dataclass(frozen=True, slots=True)
class VersionRecord:
    """One version of an entity, as seen in its history.

    Attributes:
        entity_code: Business key.
        version_number: Version number.
        location: LIVE or ARCHIVE.
        state: DRAFT, PENDING_APPROVAL, ACTIVE, ARCHIVED or REJECTED.
        row_id: Primary key in the store it was read from.
        payload: Definition fields of the version.
        enabled: Execution flag at read (live) or archival time.
        created_by: Author of the version.
        created_at: Creation time.
        approved_by: Reviewer who activated it, if it was ever ACTIVE.
        approved_at: Activation time.
        change_type: Provenance of the version.
        change_summary: Author summary, with reviewer comments appended.
        archived_by: Actor who retired it (archive only).
        archived_at: Retirement time (archive only).
        archive_reason: Cause of retirement (archive only).
    """

    entity_code: str
    version_number: int
    location: RecordLocation
    state: LifecycleState
    row_id: int
    payload: dict[str, Any]
    enabled: bool
    created_by: str
    created_at: datetime
    approved_by: str | None
    approved_at: datetime | None
    change_type: ChangeType | None
    change_summary: str | None
    archived_by: str | None = None
    archived_at: datetime | None = None
    archive_reason: str | None = None

    @property
    def is_live(self) -> bool:
        return self.location is RecordLocation.LIVE


class VersionHistoryService:
    """Reads across both stores and creates rollback drafts.

    Example:
        service = VersionHistoryService(session)
        for record in await service.history("SALES_DAILY"):
            print(record.version_number, record.state.value)
        await service.rollback("SALES_DAILY", 3, admin="carol", reason="v4 broke totals")
    """

    def __init__(self, session: AsyncSession, kind: EntityKind = LOADER_KIND) -> None:
        self.session = session
        self.kind = kind
        self.live = LiveStore(session, kind)
        self.archive = ArchiveStore(session, kind)
        self.drafts = DraftService(session, kind)

    def _live_record(self, row: Any) -> VersionRecord:
        return VersionRecord(
            entity_code=row.entity_code,
            version_number=row.version_number,
            location=RecordLocation.LIVE,
            state=LifecycleState.of(row.version_status),
            row_id=row.id,
            payload=self.kind.payload_of(row),
            enabled=row.enabled,
            created_by=row.created_by,
            created_at=row.created_at,
            approved_by=row.approved_by,
            approved_at=row.approved_at,
            change_type=row.change_type,
            change_summary=row.change_summary,
        )

    def _archive_record(self, row: Any) -> VersionRecord:
        return VersionRecord(
            entity_code=row.entity_code,
            version_number=row.version_number,
            location=RecordLocation.ARCHIVE,
            state=LifecycleState.of(row.archive_status),
            row_id=row.id,
            payload=self.kind.payload_of(row),
            enabled=row.enabled,
            created_by=row.created_by,
            created_at=row.created_at,
            approved_by=row.approved_by,
            approved_at=row.approved_at,
            change_type=row.change_type,
            change_summary=row.change_summary,
            archived_by=row.archived_by,
            archived_at=row.archived_at,
            archive_reason=row.archive_reason,
        )

    async def history(self, entity_code: str) -> list[VersionRecord]:
        """Every version of an entity in both stores, newest version first.

        An unknown code yields an empty list.
        """
        records = [self._live_record(row) for row in await self.live.list_for_code(entity_code)]
        records.extend(
            self._archive_record(row) for row in await self.archive.list_for_code(entity_code)
        )
        records.sort(key=lambda record: record.version_number, reverse=True)
        logger.debug("History read: entity_code=%s, versions=%d", entity_code, len(records))
        return records

    async def get_active(self, entity_code: str) -> Any | None:
        return await self.live.get_active(entity_code)

    async def get_draft(self, entity_code: str) -> Any | None:
        return await self.live.get_draft(entity_code)

    async def get_by_id(self, row_id: int) -> Any:
        """A live row by primary key.

        Raises:
            EntityNotFoundError: The id is not in the live store.
        """
        row = await self.live.get(row_id)
        if row is None:
            raise EntityNotFoundError(f"No live version with id {row_id}", row_id=row_id)
        return row

    async def list_active(self) -> list[Any]:
        """Every ACTIVE row, ordered by entity code."""
        return await self.live.list_active()

    async def rollback(
        self,
        entity_code: str,
        target_version: int,
        admin: str,
        reason: str | None = None,
    ) -> Any:
        """Create a draft carrying the payload of an archived version.

        The draft follows the usual draft rules: an existing DRAFT or
        PENDING_APPROVAL row is overwritten in place and keeps its status.

        Returns:
            The new or overwritten draft row.

        Raises:
            EntityNotFoundError: The version is not in the archive.
            ValidationError: Blank admin.
        """
        admin = require_text(admin, "admin", entity_code=entity_code)
        snapshot = await self.archive.get_version(entity_code, target_version)
        if snapshot is None:
            raise EntityNotFoundError(
                f"Version {target_version} of {entity_code} is not archived",
                entity_code=entity_code,
                version_number=target_version,
            )

        summary = f"Rollback to version {target_version}"
        if reason is not None and reason.strip():
            summary = f"{summary}: {reason.strip()}"

        draft = await self.drafts.create_draft(
            entity_code,
            self.kind.payload_of(snapshot),
            admin,
            change_type=ChangeType.ROLLBACK,
            change_summary=summary,
        )

        logger.info(
            "Rollback draft created: entity_code=%s, target_version=%d, draft_version=%d, by=%s",
            entity_code,
            target_version,
            draft.version_number,
            admin,
        )
        return draft
