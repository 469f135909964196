"""Versioning engine: the transactional entry point of the workflow.

Every public method runs in its own session and transaction and either
commits completely or rolls back and raises one typed error. Storage
failures caused by racing writers (unique index violations, serialization
failures, a locked SQLite database) surface as ``ConcurrencyConflictError``;
the engine does not retry.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from loaderflow.core.config import WorkflowSettings
from loaderflow.db.models.base import ChangeType
from loaderflow.db.models.versioning import PROTECTED_DELETION_MARKER
from loaderflow.errors import ConcurrencyConflictError, ProtectedDeletionError
from loaderflow.services.approval import ApprovalService
from loaderflow.services.archive import ArchiveService
from loaderflow.services.drafts import DraftService
from loaderflow.services.history import VersionHistoryService, VersionRecord
from loaderflow.services.kinds import LOADER_KIND, EntityKind
from loaderflow.services.revocation import RevocationService

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from pydantic import BaseModel
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

_SQLITE_CONSTRAINT_RE = re.compile(r"constraint failed: (?P<name>[\w.,\s]+)", re.IGNORECASE)


def constraint_name(error: DBAPIError) -> str | None:
    """Best-effort name of the constraint a driver error reports."""
    diag = getattr(error.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name
    match = _SQLITE_CONSTRAINT_RE.search(str(error.orig))
    return match.group("name").strip() if match else None


def translate_storage_error(error: Exception, entity_code: str | None = None) -> Exception:
    """Map a storage exception to the workflow error taxonomy.

    Returns the original exception when it has no workflow meaning.
    """
    if isinstance(error, IntegrityError):
        if PROTECTED_DELETION_MARKER in str(error.orig):
            return ProtectedDeletionError(
                "ACTIVE versions can only leave the live store through archival",
                entity_code=entity_code,
            )
        name = constraint_name(error)
        return ConcurrencyConflictError(
            f"Concurrent change violated {name or 'a uniqueness constraint'}; retry the operation",
            constraint=name,
            entity_code=entity_code,
        )
    if isinstance(error, StaleDataError):
        return ConcurrencyConflictError(
            "Row changed or disappeared under a concurrent transaction; retry the operation",
            entity_code=entity_code,
        )
    if isinstance(error, DBAPIError):
        sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
        if sqlstate in RETRYABLE_SQLSTATES:
            return ConcurrencyConflictError(
                f"Transaction aborted by the database (SQLSTATE {sqlstate}); retry the operation",
                entity_code=entity_code,
            )
        if isinstance(error, OperationalError) and "database is locked" in str(error.orig):
            return ConcurrencyConflictError(
                "Database is locked by a concurrent writer; retry the operation",
                entity_code=entity_code,
            )
    return error


class VersioningEngine:
    """Facade over the draft, approval, revocation and history services.

    Rows returned stay readable after their session closes (the session
    factory must use ``expire_on_commit=False``).

    Example:
        engine = VersioningEngine(create_session_factory(db_engine))
        draft = await engine.create_draft("SALES_DAILY", payload, author="alice")
        await engine.submit_for_approval(draft.id, "alice")
        active = await engine.approve(draft.id, "bob")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        kind: EntityKind = LOADER_KIND,
        *,
        workflow: WorkflowSettings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.kind = kind
        self.workflow = workflow or WorkflowSettings()

    @classmethod
    def from_settings(cls, kind: EntityKind = LOADER_KIND) -> VersioningEngine:
        """Engine bound to the process-wide database configured in settings."""
        from loaderflow.core.settings import get_settings
        from loaderflow.db import get_session_factory

        return cls(get_session_factory(), kind, workflow=get_settings().workflow)

    async def _run(
        self,
        operation: str,
        entity_code: str | None,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    return await work(session)
            except (DBAPIError, StaleDataError) as e:
                translated = translate_storage_error(e, entity_code)
                if translated is e:
                    raise
                logger.warning(
                    "Operation failed on storage: operation=%s, entity_code=%s, error=%s",
                    operation,
                    entity_code,
                    type(translated).__name__,
                )
                raise translated from e

    # -- drafts ---------------------------------------------------------------

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
        return await self._run(
            "create_draft",
            entity_code,
            lambda s: DraftService(s, self.kind).create_draft(
                entity_code,
                payload,
                author,
                change_type=change_type,
                import_label=import_label,
                change_summary=change_summary,
            ),
        )

    async def update_draft(
        self,
        draft_id: int,
        payload: Mapping[str, Any] | BaseModel,
        author: str,
        *,
        change_summary: str | None = None,
    ) -> Any:
        return await self._run(
            "update_draft",
            None,
            lambda s: DraftService(s, self.kind).update_draft(
                draft_id, payload, author, change_summary=change_summary
            ),
        )

    async def submit_for_approval(self, draft_id: int, author: str) -> Any:
        return await self._run(
            "submit_for_approval",
            None,
            lambda s: DraftService(s, self.kind).submit_for_approval(draft_id, author),
        )

    async def delete_draft(self, draft_id: int, author: str) -> None:
        await self._run(
            "delete_draft",
            None,
            lambda s: DraftService(s, self.kind).delete_draft(draft_id, author),
        )

    # -- review ---------------------------------------------------------------

    def _approvals(self, session: AsyncSession) -> ApprovalService:
        return ApprovalService(session, self.kind, workflow=self.workflow)

    async def approve(self, draft_id: int, approver: str, comments: str | None = None) -> Any:
        return await self._run(
            "approve",
            None,
            lambda s: self._approvals(s).approve(draft_id, approver, comments),
        )

    async def reject(
        self,
        draft_id: int,
        approver: str,
        reason: str,
        comments: str | None = None,
    ) -> Any:
        return await self._run(
            "reject",
            None,
            lambda s: self._approvals(s).reject(draft_id, approver, reason, comments),
        )

    async def has_pending_approval(self, entity_code: str) -> bool:
        return await self._run(
            "has_pending_approval",
            entity_code,
            lambda s: self._approvals(s).has_pending_approval(entity_code),
        )

    async def get_pending_draft(self, entity_code: str) -> Any | None:
        return await self._run(
            "get_pending_draft",
            entity_code,
            lambda s: self._approvals(s).get_pending_draft(entity_code),
        )

    async def list_pending(self) -> list[Any]:
        return await self._run("list_pending", None, lambda s: self._approvals(s).list_pending())

    async def rejection_history(self, entity_code: str) -> list[Any]:
        return await self._run(
            "rejection_history",
            entity_code,
            lambda s: self._approvals(s).rejection_history(entity_code),
        )

    async def rejected_draft_count(self, entity_code: str) -> int:
        return await self._run(
            "rejected_draft_count",
            entity_code,
            lambda s: self._approvals(s).rejected_draft_count(entity_code),
        )

    # -- revocation -----------------------------------------------------------

    def _revocations(self, session: AsyncSession) -> RevocationService:
        return RevocationService(session, self.kind, workflow=self.workflow)

    async def revoke(self, entity_code: str, admin: str, reason: str) -> Any:
        return await self._run(
            "revoke",
            entity_code,
            lambda s: self._revocations(s).revoke(entity_code, admin, reason),
        )

    async def set_enabled(self, entity_code: str, enabled: bool, actor: str) -> Any:
        return await self._run(
            "set_enabled",
            entity_code,
            lambda s: self._revocations(s).set_enabled(entity_code, enabled, actor),
        )

    # -- history --------------------------------------------------------------

    async def history(self, entity_code: str) -> list[VersionRecord]:
        return await self._run(
            "history",
            entity_code,
            lambda s: VersionHistoryService(s, self.kind).history(entity_code),
        )

    async def get_active(self, entity_code: str) -> Any | None:
        return await self._run(
            "get_active",
            entity_code,
            lambda s: VersionHistoryService(s, self.kind).get_active(entity_code),
        )

    async def get_draft(self, entity_code: str) -> Any | None:
        return await self._run(
            "get_draft",
            entity_code,
            lambda s: VersionHistoryService(s, self.kind).get_draft(entity_code),
        )

    async def get_by_id(self, row_id: int) -> Any:
        return await self._run(
            "get_by_id",
            None,
            lambda s: VersionHistoryService(s, self.kind).get_by_id(row_id),
        )

    async def list_active(self) -> list[Any]:
        return await self._run(
            "list_active",
            None,
            lambda s: VersionHistoryService(s, self.kind).list_active(),
        )

    async def rollback(
        self,
        entity_code: str,
        target_version: int,
        admin: str,
        reason: str | None = None,
    ) -> Any:
        return await self._run(
            "rollback",
            entity_code,
            lambda s: VersionHistoryService(s, self.kind).rollback(
                entity_code, target_version, admin, reason
            ),
        )

    # -- archive --------------------------------------------------------------

    async def get_archived_version(self, entity_code: str, version_number: int) -> Any | None:
        return await self._run(
            "get_archived_version",
            entity_code,
            lambda s: ArchiveService(s, self.kind).get_archived_version(
                entity_code, version_number
            ),
        )

    async def list_archived(self, entity_code: str) -> list[Any]:
        return await self._run(
            "list_archived",
            entity_code,
            lambda s: ArchiveService(s, self.kind).list_archived(entity_code),
        )
