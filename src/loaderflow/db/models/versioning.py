"""Column mixins and storage guards shared by every versioned entity kind.

A versioned kind is a pair of tables:

- the live table holds at most one ACTIVE row and at most one DRAFT or
  PENDING_APPROVAL row per entity code (partial unique indexes);
- the archive table holds frozen snapshots of rows that left the live table
  (superseded, revoked or rejected), one per (entity_code, version_number).

``register_versioned_pair`` wires the guards that cannot be expressed as
column constraints: the ACTIVE-row deletion protection (ORM mapper event plus
a database trigger) and archive immutability.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DDL,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    select,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from loaderflow.db.models.base import (
    ActorName,
    ArchiveStatus,
    ChangeType,
    EntityCode,
    IntegerPrimaryKey,
    OptionalActorName,
    OptionalTimestampTZ,
    TimestampTZ,
    VersionStatus,
    metadata,
)
from loaderflow.errors import InvalidStateTransitionError, ProtectedDeletionError

ACTIVE_PREDICATE = "version_status = 'ACTIVE'"
DRAFT_PREDICATE = "version_status IN ('DRAFT', 'PENDING_APPROVAL')"

# Marker carried by the trigger error so it can be told apart from other
# integrity failures
PROTECTED_DELETION_MARKER = "protected_deletion"


class AuditColumns:
    """Provenance and review columns copied verbatim into archive snapshots."""

    parent_version_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_by: Mapped[ActorName]
    created_at: Mapped[TimestampTZ]
    modified_by: Mapped[OptionalActorName]
    modified_at: Mapped[OptionalTimestampTZ]

    # Set when PENDING_APPROVAL -> ACTIVE
    approved_by: Mapped[OptionalActorName]
    approved_at: Mapped[OptionalTimestampTZ]

    # Set on a pending draft in the same transaction that archives it
    rejected_by: Mapped[OptionalActorName]
    rejected_at: Mapped[OptionalTimestampTZ]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    change_type: Mapped[ChangeType | None] = mapped_column(
        Enum(ChangeType, name="change_type", native_enum=False, length=20, create_constraint=True),
        nullable=True,
    )
    change_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    import_label: Mapped[str | None] = mapped_column(String(255), nullable=True)


class VersionedColumns(AuditColumns):
    """Columns of a live-store row (ACTIVE, DRAFT or PENDING_APPROVAL)."""

    id: Mapped[IntegerPrimaryKey]
    entity_code: Mapped[EntityCode]
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    version_status: Mapped[VersionStatus] = mapped_column(
        Enum(
            VersionStatus,
            name="version_status",
            native_enum=False,
            length=20,
            create_constraint=True,
        ),
        nullable=False,
        default=VersionStatus.DRAFT,
    )


class ArchivedColumns(AuditColumns):
    """Columns of an archive snapshot. Rows are never updated after insert."""

    id: Mapped[IntegerPrimaryKey]

    # Live-store id at the moment of archival
    original_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    entity_code: Mapped[EntityCode]
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    archive_status: Mapped[ArchiveStatus] = mapped_column(
        Enum(
            ArchiveStatus,
            name="archive_status",
            native_enum=False,
            length=20,
            create_constraint=True,
        ),
        nullable=False,
    )

    archived_at: Mapped[TimestampTZ]
    archived_by: Mapped[ActorName]
    archive_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)


def live_table_args(tablename: str) -> tuple[Any, ...]:
    """Constraints and indexes for a live table.

    The two partial unique indexes are the storage-level guarantee behind
    "one ACTIVE" and "one DRAFT/PENDING" per entity code: a racing writer
    that passed an application-level check still fails here.
    """
    return (
        UniqueConstraint("entity_code", "version_number"),
        Index(
            f"uq_{tablename}_one_active",
            "entity_code",
            unique=True,
            postgresql_where=text(ACTIVE_PREDICATE),
            sqlite_where=text(ACTIVE_PREDICATE),
        ),
        Index(
            f"uq_{tablename}_one_draft",
            "entity_code",
            unique=True,
            postgresql_where=text(DRAFT_PREDICATE),
            sqlite_where=text(DRAFT_PREDICATE),
        ),
        CheckConstraint("version_number > 0", name="version_number_positive"),
        CheckConstraint(
            f"NOT enabled OR {ACTIVE_PREDICATE}",
            name="enabled_active_only",
        ),
        CheckConstraint(
            f"NOT ({ACTIVE_PREDICATE}) OR (approved_by IS NOT NULL AND approved_at IS NOT NULL)",
            name="approved_metadata",
        ),
        CheckConstraint(
            "(rejected_by IS NULL AND rejected_at IS NULL AND rejection_reason IS NULL) "
            "OR (rejected_by IS NOT NULL AND rejected_at IS NOT NULL "
            "AND rejection_reason IS NOT NULL AND version_status = 'PENDING_APPROVAL')",
            name="rejected_metadata",
        ),
        Index(f"ix_{tablename}_version_status", "version_status"),
    )


def archive_table_args(tablename: str) -> tuple[Any, ...]:
    """Constraints and indexes for an archive table."""
    return (
        UniqueConstraint("entity_code", "version_number"),
        CheckConstraint("version_number > 0", name="version_number_positive"),
        Index(f"ix_{tablename}_archived_at", "archived_at"),
        Index(f"ix_{tablename}_archive_status", "archive_status"),
        Index(f"ix_{tablename}_original_id", "original_id"),
    )


def protect_deletion_ddl(live_table: str, archive_table: str, dialect: str) -> list[str]:
    """SQL creating the trigger that blocks deletion of un-archived ACTIVE rows.

    An ACTIVE row may only leave the live table once its snapshot is in the
    archive table, which is what the archive manager does inside one
    transaction. Any other delete path (raw SQL, bulk delete) is refused.
    """
    trigger = f"trg_{live_table}_protect_active_deletion"
    not_archived = (
        f"NOT EXISTS (SELECT 1 FROM {archive_table} a "
        f"WHERE a.entity_code = OLD.entity_code AND a.version_number = OLD.version_number)"
    )
    if dialect == "postgresql":
        function = f"fn_{live_table}_protect_active_deletion"
        return [
            f"""
            CREATE OR REPLACE FUNCTION {function}() RETURNS TRIGGER AS $$
            BEGIN
                IF OLD.version_status = 'ACTIVE' AND {not_archived} THEN
                    RAISE EXCEPTION USING
                        MESSAGE = '{PROTECTED_DELETION_MARKER} - cannot delete ACTIVE version '
                            || OLD.version_number || ' of ' || OLD.entity_code,
                        HINT = 'Retire ACTIVE versions through archival (revoke or approve a replacement)',
                        ERRCODE = '23503';
                END IF;
                RETURN OLD;
            END;
            $$ LANGUAGE plpgsql
            """,
            f"DROP TRIGGER IF EXISTS {trigger} ON {live_table}",
            f"""
            CREATE TRIGGER {trigger}
                BEFORE DELETE ON {live_table}
                FOR EACH ROW
                EXECUTE FUNCTION {function}()
            """,
        ]
    if dialect == "sqlite":
        return [
            f"""
            CREATE TRIGGER IF NOT EXISTS {trigger}
                BEFORE DELETE ON {live_table}
                FOR EACH ROW
                WHEN OLD.version_status = 'ACTIVE' AND {not_archived}
            BEGIN
                SELECT RAISE(ABORT, '{PROTECTED_DELETION_MARKER} - cannot delete ACTIVE version');
            END
            """
        ]
    return []


def register_versioned_pair(live_model: type, archive_model: type) -> None:
    """Install deletion protection and archive immutability for one kind."""
    live_table = live_model.__table__  # type: ignore[attr-defined]
    archive_table = archive_model.__table__  # type: ignore[attr-defined]

    # Metadata-level so both tables exist when the trigger is created
    for dialect in ("postgresql", "sqlite"):
        for statement in protect_deletion_ddl(live_table.name, archive_table.name, dialect):
            event.listen(metadata, "after_create", DDL(statement).execute_if(dialect=dialect))

    @event.listens_for(live_model, "before_delete")
    def _protect_active_deletion(_mapper: Any, connection: Any, target: Any) -> None:
        if target.version_status is not VersionStatus.ACTIVE:
            return
        archived = connection.execute(
            select(archive_table.c.id).where(
                archive_table.c.entity_code == target.entity_code,
                archive_table.c.version_number == target.version_number,
            )
        ).first()
        if archived is None:
            raise ProtectedDeletionError(
                f"Cannot delete ACTIVE version {target.version_number} of "
                f"{target.entity_code}; retire it through archival",
                entity_code=target.entity_code,
                version_number=target.version_number,
            )

    @event.listens_for(archive_model, "before_update")
    def _archive_is_immutable(_mapper: Any, _connection: Any, target: Any) -> None:
        raise InvalidStateTransitionError(
            "modify",
            target.archive_status,
            entity_code=target.entity_code,
            reason=(
                f"Archived version {target.version_number} of {target.entity_code} is immutable"
            ),
        )
