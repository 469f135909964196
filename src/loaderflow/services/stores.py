"""Live store, archive store, and version number allocation.

Thin query layers over one entity kind's tables. They run in the caller's
session and transaction, never commit, and return ORM rows.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, insert, select, update

from loaderflow.db.models.base import ArchiveStatus, VersionStatus, utcnow
from loaderflow.db.models.counters import VersionCounter
from loaderflow.errors import ConcurrencyConflictError
from loaderflow.services.kinds import LOADER_KIND, EntityKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DRAFT_STATUSES = (VersionStatus.DRAFT, VersionStatus.PENDING_APPROVAL)


class LiveStore:
    """Reads and writes of the live table (ACTIVE, DRAFT, PENDING_APPROVAL rows).

    Pass ``for_update=True`` when the row is about to be mutated: PostgreSQL
    takes a row lock, SQLite already holds the database write lock.
    """

    def __init__(self, session: AsyncSession, kind: EntityKind = LOADER_KIND) -> None:
        self.session = session
        self.kind = kind
        self.model = kind.live_model

    async def get(self, row_id: int, *, for_update: bool = False) -> Any | None:
        query = select(self.model).where(self.model.id == row_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_active(self, entity_code: str, *, for_update: bool = False) -> Any | None:
        """The ACTIVE row of an entity, or None."""
        query = select(self.model).where(
            self.model.entity_code == entity_code,
            self.model.version_status == VersionStatus.ACTIVE,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_draft(self, entity_code: str, *, for_update: bool = False) -> Any | None:
        """The DRAFT or PENDING_APPROVAL row of an entity, or None."""
        query = select(self.model).where(
            self.model.entity_code == entity_code,
            self.model.version_status.in_(DRAFT_STATUSES),
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_by_status(self, statuses: Iterable[VersionStatus]) -> list[Any]:
        """Rows in any of the given statuses, newest change first."""
        query = (
            select(self.model)
            .where(self.model.version_status.in_(list(statuses)))
            .order_by(
                func.coalesce(self.model.modified_at, self.model.created_at).desc(),
                self.model.id.desc(),
            )
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_active(self) -> list[Any]:
        query = (
            select(self.model)
            .where(self.model.version_status == VersionStatus.ACTIVE)
            .order_by(self.model.entity_code)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_code(self, entity_code: str) -> list[Any]:
        query = (
            select(self.model)
            .where(self.model.entity_code == entity_code)
            .order_by(self.model.version_number.desc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def max_version(self, entity_code: str) -> int:
        result = await self.session.execute(
            select(func.max(self.model.version_number)).where(
                self.model.entity_code == entity_code
            )
        )
        return result.scalar_one_or_none() or 0

    async def add(self, row: Any) -> Any:
        self.session.add(row)
        await self.session.flush()
        return row

    async def delete(self, row: Any) -> None:
        """Physically remove a row. ACTIVE rows must already be archived."""
        await self.session.delete(row)
        await self.session.flush()


class ArchiveStore:
    """Append-only access to the archive table."""

    def __init__(self, session: AsyncSession, kind: EntityKind = LOADER_KIND) -> None:
        self.session = session
        self.kind = kind
        self.model = kind.archive_model

    async def get_version(self, entity_code: str, version_number: int) -> Any | None:
        result = await self.session.execute(
            select(self.model).where(
                self.model.entity_code == entity_code,
                self.model.version_number == version_number,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_code(
        self,
        entity_code: str,
        *,
        status: ArchiveStatus | None = None,
    ) -> list[Any]:
        """Snapshots of an entity, newest version first."""
        query = select(self.model).where(self.model.entity_code == entity_code)
        if status is not None:
            query = query.where(self.model.archive_status == status)
        query = query.order_by(self.model.version_number.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, entity_code: str, *, status: ArchiveStatus | None = None) -> int:
        query = select(func.count(self.model.id)).where(self.model.entity_code == entity_code)
        if status is not None:
            query = query.where(self.model.archive_status == status)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def exists(self, entity_code: str, version_number: int) -> bool:
        result = await self.session.execute(
            select(self.model.id).where(
                self.model.entity_code == entity_code,
                self.model.version_number == version_number,
            )
        )
        return result.first() is not None

    async def latest(self, entity_code: str) -> Any | None:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.entity_code == entity_code)
            .order_by(self.model.version_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def max_version(self, entity_code: str) -> int:
        result = await self.session.execute(
            select(func.max(self.model.version_number)).where(
                self.model.entity_code == entity_code
            )
        )
        return result.scalar_one_or_none() or 0

    async def add(self, snapshot: Any) -> Any:
        self.session.add(snapshot)
        await self.session.flush()
        return snapshot


class VersionAllocator:
    """Issues version numbers that are never reused for an entity code.

    The next number is one above the highest of the live table, the archive
    table, and the recorded high-water mark. The mark is advanced with a
    compare-and-set; a racing allocator that advanced it first makes this
    one fail with ``ConcurrencyConflictError``.
    """

    def __init__(
        self,
        session: AsyncSession,
        kind: EntityKind = LOADER_KIND,
        *,
        live: LiveStore | None = None,
        archive: ArchiveStore | None = None,
    ) -> None:
        self.session = session
        self.kind = kind
        self.live = live or LiveStore(session, kind)
        self.archive = archive or ArchiveStore(session, kind)

    async def last_issued(self, entity_code: str) -> int | None:
        result = await self.session.execute(
            select(VersionCounter.last_issued).where(
                VersionCounter.kind == self.kind.name,
                VersionCounter.entity_code == entity_code,
            )
        )
        return result.scalar_one_or_none()

    async def next_version(self, entity_code: str) -> int:
        """Reserve the next version number for ``entity_code``."""
        recorded = await self.last_issued(entity_code)
        candidate = (
            max(
                await self.live.max_version(entity_code),
                await self.archive.max_version(entity_code),
                recorded or 0,
            )
            + 1
        )

        if recorded is None:
            # A concurrent first allocation fails on the primary key
            await self.session.execute(
                insert(VersionCounter).values(
                    kind=self.kind.name,
                    entity_code=entity_code,
                    last_issued=candidate,
                    updated_at=utcnow(),
                )
            )
        else:
            result = await self.session.execute(
                update(VersionCounter)
                .where(
                    VersionCounter.kind == self.kind.name,
                    VersionCounter.entity_code == entity_code,
                    VersionCounter.last_issued == recorded,
                )
                .values(last_issued=candidate, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(
                    "Version counter moved concurrently: kind=%s, entity_code=%s, expected=%d",
                    self.kind.name,
                    entity_code,
                    recorded,
                )
                raise ConcurrencyConflictError(
                    f"Version number allocation for {entity_code} raced another writer",
                    constraint="version_counters",
                    entity_code=entity_code,
                )

        logger.debug(
            "Allocated version: kind=%s, entity_code=%s, version=%d",
            self.kind.name,
            entity_code,
            candidate,
        )
        return candidate
