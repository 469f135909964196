"""Archive manager: moves a version out of the live store into the archive.

Archival is the only way an ACTIVE or PENDING_APPROVAL row leaves the live
table. The snapshot is inserted and flushed before the live row is deleted,
so the deletion guard sees the snapshot and lets the delete through. Both
statements run in the caller's transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from loaderflow.db.models.base import ArchiveStatus, utcnow
from loaderflow.errors import EntityNotFoundError
from loaderflow.services.kinds import LOADER_KIND, EntityKind
from loaderflow.services.stores import ArchiveStore, LiveStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ArchiveService:
    """Snapshots live rows into the archive and serves archive reads.

    Example:
        service = ArchiveService(session)
        snapshot = await service.archive(
            active_row,
            archived_by="admin",
            reason="Superseded by version 4",
            archive_status=ArchiveStatus.ARCHIVED,
        )
    """

    def __init__(self, session: AsyncSession, kind: EntityKind = LOADER_KIND) -> None:
        self.session = session
        self.kind = kind
        self.live = LiveStore(session, kind)
        self.store = ArchiveStore(session, kind)

    async def archive(
        self,
        row: Any,
        archived_by: str,
        reason: str | None,
        archive_status: ArchiveStatus,
    ) -> Any:
        """Move a live row into the archive.

        Args:
            row: Live row to retire.
            archived_by: Identity of the actor retiring it.
            reason: Human-readable cause, stored as ``archive_reason``.
            archive_status: ARCHIVED (superseded/revoked) or REJECTED.

        Returns:
            The inserted archive snapshot.

        Raises:
            EntityNotFoundError: If the row is no longer in the live table.
        """
        current = await self.live.get(row.id, for_update=True)
        if current is None:
            raise EntityNotFoundError(
                f"Version {row.version_number} of {row.entity_code} is no longer live",
                entity_code=row.entity_code,
                version_number=row.version_number,
            )

        snapshot = self.kind.archive_model(
            original_id=current.id,
            archive_status=archive_status,
            archived_at=utcnow(),
            archived_by=archived_by,
            archive_reason=reason,
            **self.kind.snapshot(current),
        )
        await self.store.add(snapshot)
        await self.live.delete(current)

        logger.info(
            "Version archived: entity_code=%s, version=%d, status=%s, by=%s",
            snapshot.entity_code,
            snapshot.version_number,
            archive_status.value,
            archived_by,
        )
        return snapshot

    async def get_archived_version(self, entity_code: str, version_number: int) -> Any | None:
        return await self.store.get_version(entity_code, version_number)

    async def list_archived(self, entity_code: str) -> list[Any]:
        """All snapshots of an entity, newest version first."""
        return await self.store.list_for_code(entity_code)

    async def count_archived(self, entity_code: str) -> int:
        return await self.store.count(entity_code)

    async def is_version_archived(self, entity_code: str, version_number: int) -> bool:
        return await self.store.exists(entity_code, version_number)

    async def get_latest_archived(self, entity_code: str) -> Any | None:
        return await self.store.latest(entity_code)

    async def list_rejected(self, entity_code: str) -> list[Any]:
        return await self.store.list_for_code(entity_code, status=ArchiveStatus.REJECTED)

    async def count_rejected(self, entity_code: str) -> int:
        return await self.store.count(entity_code, status=ArchiveStatus.REJECTED)
