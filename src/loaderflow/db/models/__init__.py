"""SQLAlchemy ORM models for loaderflow.

This package contains all database models:
- base: Common metadata, column types, and workflow enums
- versioning: Live/archive column mixins, constraints, and deletion guards
- loaders: Loader definitions (live versions and archive)
- counters: Version number high-water marks
"""

from loaderflow.db.models.base import (
    ArchiveStatus,
    Base,
    ChangeType,
    PurgeStrategy,
    VersionStatus,
    metadata,
)
from loaderflow.db.models.counters import VersionCounter
from loaderflow.db.models.loaders import Loader, LoaderArchive
from loaderflow.db.models.versioning import ArchivedColumns, VersionedColumns

__all__ = [
    "ArchiveStatus",
    "ArchivedColumns",
    "Base",
    "ChangeType",
    "Loader",
    "LoaderArchive",
    "PurgeStrategy",
    "VersionCounter",
    "VersionStatus",
    "VersionedColumns",
    "metadata",
]
