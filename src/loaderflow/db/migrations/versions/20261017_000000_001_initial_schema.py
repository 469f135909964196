"""Initial schema: loader live and archive tables, version counters.

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00

Creates:
- loaders: ACTIVE, DRAFT and PENDING_APPROVAL versions, with partial unique
  indexes allowing one ACTIVE and one DRAFT/PENDING_APPROVAL row per code
- loader_archive: immutable snapshots of superseded, revoked and rejected versions
- version_counters: highest version number issued per entity code
- trigger refusing to delete an ACTIVE loader that has not been archived
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

VERSION_STATUSES = ("ACTIVE", "DRAFT", "PENDING_APPROVAL")
ARCHIVE_STATUSES = ("ARCHIVED", "REJECTED")
CHANGE_TYPES = ("IMPORT_CREATE", "IMPORT_UPDATE", "MANUAL_EDIT", "ROLLBACK")
PURGE_STRATEGIES = ("FAIL_ON_DUPLICATE", "PURGE_AND_RELOAD", "SKIP_DUPLICATES")

# INTEGER on SQLite so the rowid alias autoincrements
ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

ACTIVE_PREDICATE = "version_status = 'ACTIVE'"
DRAFT_PREDICATE = "version_status IN ('DRAFT', 'PENDING_APPROVAL')"


def _in_list(column: str, values: Sequence[str]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def _timestamp(name: str, *, nullable: bool) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def _shared_columns() -> list[sa.Column]:
    """Audit and loader payload columns present in both tables."""
    return [
        sa.Column("entity_code", sa.String(64), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("parent_version_id", sa.BigInteger(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(100), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.Column("modified_by", sa.String(100), nullable=True),
        _timestamp("modified_at", nullable=True),
        sa.Column("approved_by", sa.String(100), nullable=True),
        _timestamp("approved_at", nullable=True),
        sa.Column("rejected_by", sa.String(100), nullable=True),
        _timestamp("rejected_at", nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("change_type", sa.String(20), nullable=True),
        sa.Column("change_summary", sa.Text(), nullable=True),
        sa.Column("import_label", sa.String(255), nullable=True),
        # Loader definition
        sa.Column("loader_sql", sa.Text(), nullable=False),
        sa.Column("source_database_id", sa.BigInteger(), nullable=False),
        sa.Column("min_interval_seconds", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("max_interval_seconds", sa.Integer(), nullable=False, server_default="60"),
        sa.Column(
            "max_query_period_seconds",
            sa.Integer(),
            nullable=False,
            server_default="432000",
        ),
        sa.Column("max_parallel_executions", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "purge_strategy",
            sa.String(20),
            nullable=False,
            server_default="FAIL_ON_DUPLICATE",
        ),
        sa.Column("aggregation_period_seconds", sa.Integer(), nullable=True),
        sa.Column(
            "source_timezone_offset_hours",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
    ]


def _shared_checks(table: str) -> list[sa.CheckConstraint]:
    return [
        sa.CheckConstraint("version_number > 0", name=op.f(f"ck_{table}_version_number_positive")),
        sa.CheckConstraint(
            f"change_type IS NULL OR {_in_list('change_type', CHANGE_TYPES)}",
            name=op.f(f"ck_{table}_change_type"),
        ),
        sa.CheckConstraint(
            _in_list("purge_strategy", PURGE_STRATEGIES),
            name=op.f(f"ck_{table}_purge_strategy"),
        ),
    ]


def upgrade() -> None:
    """Apply migration: Create versioning tables."""
    op.create_table(
        "loaders",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("version_status", sa.String(20), nullable=False),
        *_shared_columns(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_loaders")),
        sa.UniqueConstraint(
            "entity_code",
            "version_number",
            name=op.f("uq_loaders_entity_code"),
        ),
        *_shared_checks("loaders"),
        sa.CheckConstraint(
            _in_list("version_status", VERSION_STATUSES),
            name=op.f("ck_loaders_version_status"),
        ),
        sa.CheckConstraint(
            f"NOT enabled OR {ACTIVE_PREDICATE}",
            name=op.f("ck_loaders_enabled_active_only"),
        ),
        sa.CheckConstraint(
            f"NOT ({ACTIVE_PREDICATE}) OR (approved_by IS NOT NULL AND approved_at IS NOT NULL)",
            name=op.f("ck_loaders_approved_metadata"),
        ),
        sa.CheckConstraint(
            "(rejected_by IS NULL AND rejected_at IS NULL AND rejection_reason IS NULL) "
            "OR (rejected_by IS NOT NULL AND rejected_at IS NOT NULL "
            "AND rejection_reason IS NOT NULL AND version_status = 'PENDING_APPROVAL')",
            name=op.f("ck_loaders_rejected_metadata"),
        ),
        sa.CheckConstraint(
            "min_interval_seconds >= 1 AND min_interval_seconds <= max_interval_seconds",
            name=op.f("ck_loaders_interval_range"),
        ),
        sa.CheckConstraint(
            "source_timezone_offset_hours BETWEEN -12 AND 14",
            name=op.f("ck_loaders_timezone_offset_range"),
        ),
    )
    op.create_index(
        "uq_loaders_one_active",
        "loaders",
        ["entity_code"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_PREDICATE),
        sqlite_where=sa.text(ACTIVE_PREDICATE),
    )
    op.create_index(
        "uq_loaders_one_draft",
        "loaders",
        ["entity_code"],
        unique=True,
        postgresql_where=sa.text(DRAFT_PREDICATE),
        sqlite_where=sa.text(DRAFT_PREDICATE),
    )
    op.create_index("ix_loaders_version_status", "loaders", ["version_status"], unique=False)

    op.create_table(
        "loader_archive",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("original_id", sa.BigInteger(), nullable=False),
        sa.Column("archive_status", sa.String(20), nullable=False),
        _timestamp("archived_at", nullable=False),
        sa.Column("archived_by", sa.String(100), nullable=False),
        sa.Column("archive_reason", sa.String(500), nullable=True),
        *_shared_columns(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_loader_archive")),
        sa.UniqueConstraint(
            "entity_code",
            "version_number",
            name=op.f("uq_loader_archive_entity_code"),
        ),
        *_shared_checks("loader_archive"),
        sa.CheckConstraint(
            _in_list("archive_status", ARCHIVE_STATUSES),
            name=op.f("ck_loader_archive_archive_status"),
        ),
    )
    op.create_index(
        "ix_loader_archive_archived_at", "loader_archive", ["archived_at"], unique=False
    )
    op.create_index(
        "ix_loader_archive_archive_status", "loader_archive", ["archive_status"], unique=False
    )
    op.create_index(
        "ix_loader_archive_original_id", "loader_archive", ["original_id"], unique=False
    )

    op.create_table(
        "version_counters",
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("entity_code", sa.String(64), nullable=False),
        sa.Column("last_issued", sa.Integer(), nullable=False),
        _timestamp("updated_at", nullable=False),
        sa.PrimaryKeyConstraint("kind", "entity_code", name=op.f("pk_version_counters")),
        sa.CheckConstraint(
            "last_issued > 0",
            name=op.f("ck_version_counters_last_issued_positive"),
        ),
    )

    if op.get_bind().dialect.name == "postgresql":
        op.execute(
            """
            CREATE OR REPLACE FUNCTION fn_loaders_protect_active_deletion() RETURNS TRIGGER AS $$
            BEGIN
                IF OLD.version_status = 'ACTIVE' AND NOT EXISTS (
                    SELECT 1 FROM loader_archive a
                    WHERE a.entity_code = OLD.entity_code
                      AND a.version_number = OLD.version_number
                ) THEN
                    RAISE EXCEPTION USING
                        MESSAGE = 'protected_deletion - cannot delete ACTIVE version '
                            || OLD.version_number || ' of ' || OLD.entity_code,
                        HINT = 'Retire ACTIVE versions through archival (revoke or approve a replacement)',
                        ERRCODE = '23503';
                END IF;
                RETURN OLD;
            END;
            $$ LANGUAGE plpgsql
            """
        )
        op.execute(
            """
            CREATE TRIGGER trg_loaders_protect_active_deletion
                BEFORE DELETE ON loaders
                FOR EACH ROW
                EXECUTE FUNCTION fn_loaders_protect_active_deletion()
            """
        )
    else:
        op.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_loaders_protect_active_deletion
                BEFORE DELETE ON loaders
                FOR EACH ROW
                WHEN OLD.version_status = 'ACTIVE' AND NOT EXISTS (
                    SELECT 1 FROM loader_archive a
                    WHERE a.entity_code = OLD.entity_code
                      AND a.version_number = OLD.version_number
                )
            BEGIN
                SELECT RAISE(ABORT, 'protected_deletion - cannot delete ACTIVE version');
            END
            """
        )


def downgrade() -> None:
    """Revert migration: Drop versioning tables."""
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_loaders_protect_active_deletion ON loaders")
        op.execute("DROP FUNCTION IF EXISTS fn_loaders_protect_active_deletion()")
    else:
        op.execute("DROP TRIGGER IF EXISTS trg_loaders_protect_active_deletion")

    op.drop_table("version_counters")
    op.drop_index("ix_loader_archive_original_id", table_name="loader_archive")
    op.drop_index("ix_loader_archive_archive_status", table_name="loader_archive")
    op.drop_index("ix_loader_archive_archived_at", table_name="loader_archive")
    op.drop_table("loader_archive")
    op.drop_index("ix_loaders_version_status", table_name="loaders")
    op.drop_index("uq_loaders_one_draft", table_name="loaders")
    op.drop_index("uq_loaders_one_active", table_name="loaders")
    op.drop_table("loaders")
