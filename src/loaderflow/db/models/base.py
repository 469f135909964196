"""Base model definitions, shared column types, and workflow enums.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Annotated column types shared by the live and archive tables
- Enum types used across the versioning workflow
"""

import enum
from datetime import UTC, datetime
from typing import Annotated

from sqlalchemy import BigInteger, DateTime, Integer, MetaData, String, func
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry
from sqlalchemy.types import TypeDecorator

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Shared metadata with naming convention
metadata = MetaData(naming_convention=NAMING_CONVENTION)

# Custom type registry for reusable type annotations
type_registry = registry()


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always hands back UTC-aware values.

    PostgreSQL stores ``timestamptz`` natively. SQLite has no timezone
    support and returns naive datetimes, which are re-tagged as UTC here.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# BIGINT on PostgreSQL; INTEGER on SQLite so the rowid alias autoincrements
BigIntId = BigInteger().with_variant(Integer(), "sqlite")

# Integer primary key with database-generated values
IntegerPrimaryKey = Annotated[
    int,
    mapped_column(BigIntId, primary_key=True, autoincrement=True),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(UTCDateTime(), nullable=True),
]

# Business key shared by every version of one configuration entity
EntityCode = Annotated[str, mapped_column(String(64), nullable=False)]

# Caller identity (username, service account, import job)
ActorName = Annotated[str, mapped_column(String(100), nullable=False)]
OptionalActorName = Annotated[str | None, mapped_column(String(100), nullable=True)]


class Base(DeclarativeBase):
    """Declarative base for all loaderflow models.

    All models inherit from this base, which provides:
    - Consistent metadata with naming conventions
    - Type annotation support via mapped_column
    """

    metadata = metadata
    registry = type_registry


# =============================================================================
# Common Enums
# =============================================================================


class VersionStatus(enum.Enum):
    """Status of a row in the live store.

    States:
        ACTIVE: Production version read by the scheduler (one per entity code)
        DRAFT: Proposed version, still editable by its author
        PENDING_APPROVAL: Submitted draft awaiting a reviewer decision

    At most one ACTIVE and at most one DRAFT/PENDING_APPROVAL row exist per
    entity code.
    """

    ACTIVE = "ACTIVE"
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"

    @property
    def is_draft(self) -> bool:
        """True for DRAFT and PENDING_APPROVAL (the not-yet-active slot)."""
        return self in (VersionStatus.DRAFT, VersionStatus.PENDING_APPROVAL)


class ArchiveStatus(enum.Enum):
    """Why a version left the live store.

    Values:
        ARCHIVED: Was ACTIVE, then superseded by a newer approval or revoked
        REJECTED: Was PENDING_APPROVAL and the reviewer rejected it
    """

    ARCHIVED = "ARCHIVED"
    REJECTED = "REJECTED"


class ChangeType(enum.Enum):
    """Provenance of a draft version.

    Values:
        IMPORT_CREATE: New entity created by a bulk import
        IMPORT_UPDATE: Existing entity updated by a bulk import
        MANUAL_EDIT: Entity edited by a user
        ROLLBACK: Draft re-created from an archived version
    """

    IMPORT_CREATE = "IMPORT_CREATE"
    IMPORT_UPDATE = "IMPORT_UPDATE"
    MANUAL_EDIT = "MANUAL_EDIT"
    ROLLBACK = "ROLLBACK"


class PurgeStrategy(enum.Enum):
    """How a loader treats rows that already exist in the target window.

    Values:
        FAIL_ON_DUPLICATE: Abort the load on the first duplicate
        PURGE_AND_RELOAD: Delete the window and load it again
        SKIP_DUPLICATES: Keep existing rows and skip the duplicates
    """

    FAIL_ON_DUPLICATE = "FAIL_ON_DUPLICATE"
    PURGE_AND_RELOAD = "PURGE_AND_RELOAD"
    SKIP_DUPLICATES = "SKIP_DUPLICATES"
