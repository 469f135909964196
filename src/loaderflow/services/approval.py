"""Approval coordinator: the reviewer side of the workflow.

Approving a pending draft retires the current ACTIVE version into the
archive and promotes the draft in the same transaction, so readers never
observe zero or two ACTIVE versions. Rejecting archives the draft with the
reviewer's reason.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from loaderflow.core.config import WorkflowSettings
from loaderflow.db.models.base import ArchiveStatus, VersionStatus, utcnow
from loaderflow.errors import EntityNotFoundError, InvalidStateTransitionError
from loaderflow.services.archive import ArchiveService
from loaderflow.services.kinds import LOADER_KIND, EntityKind
from loaderflow.services.stores import DRAFT_STATUSES, LiveStore
from loaderflow.services.workflow import LifecycleState, VersionWorkflow, require_text

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

APPROVAL_COMMENTS_MARKER = "[Approval Comments]"
REJECTION_COMMENTS_MARKER = "[Rejection Comments]"


def append_comments(summary: str | None, marker: str, comments: str | None) -> str | None:
    """Append reviewer comments to a change summary on a new line.

    Blank comments leave the summary unchanged.
    """
    if comments is None or not comments.strip():
        return summary
    block = f"{marker} {comments.strip()}"
    return f"{summary}\n{block}" if summary else block


class ApprovalService:
    """Approves or rejects pending drafts and answers pending-review queries.

    Example:
        service = ApprovalService(session)
        active = await service.approve(draft_id, approver="bob", comments="LGTM")
    """

    def __init__(
        self,
        session: AsyncSession,
        kind: EntityKind = LOADER_KIND,
        *,
        workflow: WorkflowSettings | None = None,
    ) -> None:
        self.session = session
        self.kind = kind
        self.workflow = workflow or WorkflowSettings()
        self.live = LiveStore(session, kind)
        self.archives = ArchiveService(session, kind)

    async def _get_pending(self, draft_id: int, operation: str) -> Any:
        draft = await self.live.get(draft_id, for_update=True)
        if draft is None:
            raise EntityNotFoundError(
                f"No live version with id {draft_id}",
                draft_id=draft_id,
            )
        target = LifecycleState.ACTIVE if operation == "approve" else LifecycleState.REJECTED
        VersionWorkflow.require(
            draft.version_status,
            target,
            operation=operation,
            entity_code=draft.entity_code,
        )
        return draft

    async def approve(self, draft_id: int, approver: str, comments: str | None = None) -> Any:
        """Promote a PENDING_APPROVAL draft to ACTIVE.

        The previous ACTIVE version, if any, is archived as superseded.
        The new version starts disabled.

        Returns:
            The promoted row.

        Raises:
            EntityNotFoundError: Unknown id.
            InvalidStateTransitionError: The row is not PENDING_APPROVAL, or
                self-approval is disabled and the approver authored the draft.
            ValidationError: Blank approver.
        """
        draft = await self._get_pending(draft_id, "approve")
        approver = require_text(approver, "approver", entity_code=draft.entity_code)

        if not self.workflow.allow_self_approval and approver in (
            draft.created_by,
            draft.modified_by,
        ):
            raise InvalidStateTransitionError(
                "approve",
                draft.version_status,
                entity_code=draft.entity_code,
                reason=f"{approver} authored version {draft.version_number} and cannot approve it",
            )

        previous = await self.live.get_active(draft.entity_code, for_update=True)
        if previous is not None:
            await self.archives.archive(
                previous,
                archived_by=approver,
                reason=f"Superseded by version {draft.version_number}",
                archive_status=ArchiveStatus.ARCHIVED,
            )

        now = utcnow()
        draft.version_status = VersionStatus.ACTIVE
        draft.enabled = False
        draft.approved_by = approver
        draft.approved_at = now
        draft.modified_by = approver
        draft.modified_at = now
        draft.change_summary = append_comments(
            draft.change_summary, APPROVAL_COMMENTS_MARKER, comments
        )
        await self.session.flush()

        logger.info(
            "Version approved: entity_code=%s, version=%d, by=%s, superseded=%s",
            draft.entity_code,
            draft.version_number,
            approver,
            previous.version_number if previous is not None else None,
        )
        return draft

    async def reject(
        self,
        draft_id: int,
        approver: str,
        reason: str,
        comments: str | None = None,
    ) -> Any:
        """Archive a PENDING_APPROVAL draft as REJECTED.

        Returns:
            The archive snapshot of the rejected draft.

        Raises:
            EntityNotFoundError: Unknown id.
            InvalidStateTransitionError: The row is not PENDING_APPROVAL.
            ValidationError: Blank approver or reason, or reason too long.
        """
        reason = require_text(reason, "reason", max_length=self.workflow.max_reason_length)
        draft = await self._get_pending(draft_id, "reject")
        approver = require_text(approver, "approver", entity_code=draft.entity_code)

        now = utcnow()
        draft.rejected_by = approver
        draft.rejected_at = now
        draft.rejection_reason = reason
        draft.modified_by = approver
        draft.modified_at = now
        draft.change_summary = append_comments(
            draft.change_summary, REJECTION_COMMENTS_MARKER, comments
        )
        await self.session.flush()

        snapshot = await self.archives.archive(
            draft,
            archived_by=approver,
            reason=f"Rejected by {approver}: {reason}",
            archive_status=ArchiveStatus.REJECTED,
        )

        logger.info(
            "Version rejected: entity_code=%s, version=%d, by=%s",
            snapshot.entity_code,
            snapshot.version_number,
            approver,
        )
        return snapshot

    async def has_pending_approval(self, entity_code: str) -> bool:
        draft = await self.live.get_draft(entity_code)
        return draft is not None and draft.version_status is VersionStatus.PENDING_APPROVAL

    async def get_pending_draft(self, entity_code: str) -> Any | None:
        """The PENDING_APPROVAL row of an entity, or None."""
        draft = await self.live.get_draft(entity_code)
        if draft is not None and draft.version_status is VersionStatus.PENDING_APPROVAL:
            return draft
        return None

    async def list_pending(self) -> list[Any]:
        """Every DRAFT and PENDING_APPROVAL row, most recently changed first."""
        return await self.live.list_by_status(DRAFT_STATUSES)

    async def rejection_history(self, entity_code: str) -> list[Any]:
        """Rejected snapshots of an entity, newest version first."""
        return await self.archives.list_rejected(entity_code)

    async def rejected_draft_count(self, entity_code: str) -> int:
        return await self.archives.count_rejected(entity_code)
