"""loaderflow service layer.

This package contains the versioning workflow:
- LiveStore / ArchiveStore / VersionAllocator: Table access and version numbering
- DraftService: Creating, editing, submitting and discarding drafts
- ArchiveService: Moving versions from the live store into the archive
- ApprovalService: Approving and rejecting pending drafts
- RevocationService: Withdrawing ACTIVE versions, execution toggle
- VersionHistoryService: Version timeline and rollback
- VersioningEngine: Transactional facade over all of the above
"""

from loaderflow.services.approval import ApprovalService
from loaderflow.services.archive import ArchiveService
from loaderflow.services.drafts import DraftService
from loaderflow.services.engine import VersioningEngine, translate_storage_error
from loaderflow.services.history import RecordLocation, VersionHistoryService, VersionRecord
from loaderflow.services.kinds import (
    LOADER_KIND,
    EntityKind,
    LoaderPayload,
    get_kind,
    register_kind,
)
from loaderflow.services.revocation import RevocationService
from loaderflow.services.stores import ArchiveStore, LiveStore, VersionAllocator
from loaderflow.services.workflow import LifecycleState, VersionWorkflow

__all__ = [
    "LOADER_KIND",
    "ApprovalService",
    "ArchiveService",
    "ArchiveStore",
    "DraftService",
    "EntityKind",
    "LifecycleState",
    "LiveStore",
    "LoaderPayload",
    "RecordLocation",
    "RevocationService",
    "VersionAllocator",
    "VersionHistoryService",
    "VersionRecord",
    "VersionWorkflow",
    "VersioningEngine",
    "get_kind",
    "register_kind",
    "translate_storage_error",
]
