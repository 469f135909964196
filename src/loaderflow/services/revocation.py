"""Revocation manager: withdrawing an ACTIVE version from production.

Revoking disables the ACTIVE version and moves it to the archive. The entity
then has no ACTIVE version until a new draft is approved or an archived
version is rolled back to and approved.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from loaderflow.core.config import WorkflowSettings
from loaderflow.db.models.base import ArchiveStatus, utcnow
from loaderflow.errors import EntityNotFoundError
from loaderflow.services.archive import ArchiveService
from loaderflow.services.kinds import LOADER_KIND, EntityKind
from loaderflow.services.stores import LiveStore
from loaderflow.services.workflow import require_text

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class RevocationService:
    """Revokes ACTIVE versions and toggles their execution flag."""

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

    async def _get_active(self, entity_code: str) -> Any:
        active = await self.live.get_active(entity_code, for_update=True)
        if active is None:
            raise EntityNotFoundError(
                f"{entity_code} has no ACTIVE version",
                entity_code=entity_code,
            )
        return active

    async def revoke(self, entity_code: str, admin: str, reason: str) -> Any:
        """Disable the ACTIVE version and archive it.

        Returns:
            The archive snapshot of the revoked version.

        Raises:
            EntityNotFoundError: No ACTIVE version exists.
            ValidationError: Blank admin or reason, or reason too long.
        """
        admin = require_text(admin, "admin", entity_code=entity_code)
        reason = require_text(
            reason,
            "reason",
            entity_code=entity_code,
            max_length=self.workflow.max_reason_length,
        )
        active = await self._get_active(entity_code)

        active.enabled = False
        active.modified_by = admin
        active.modified_at = utcnow()
        await self.session.flush()

        snapshot = await self.archives.archive(
            active,
            archived_by=admin,
            reason=f"Revoked: {reason}",
            archive_status=ArchiveStatus.ARCHIVED,
        )

        logger.warning(
            "Version revoked: entity_code=%s, version=%d, by=%s, reason=%s",
            entity_code,
            snapshot.version_number,
            admin,
            reason,
        )
        return snapshot

    async def set_enabled(self, entity_code: str, enabled: bool, actor: str) -> Any:
        """Turn scheduled execution of the ACTIVE version on or off.

        Raises:
            EntityNotFoundError: No ACTIVE version exists.
            ValidationError: Blank actor.
        """
        actor = require_text(actor, "actor", entity_code=entity_code)
        active = await self._get_active(entity_code)

        if active.enabled != enabled:
            active.enabled = enabled
            active.modified_by = actor
            active.modified_at = utcnow()
            await self.session.flush()

            logger.info(
                "Execution %s: entity_code=%s, version=%d, by=%s",
                "enabled" if enabled else "disabled",
                entity_code,
                active.version_number,
                actor,
            )
        return active
