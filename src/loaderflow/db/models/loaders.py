"""Data loader definitions: live versions and their archive.

A loader is a scheduled SQL extraction against a source database. Its
definition is versioned: the scheduler only ever reads the ACTIVE and
enabled row of each loader code.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, CheckConstraint, Enum, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from loaderflow.db.models.base import Base, PurgeStrategy
from loaderflow.db.models.versioning import (
    ArchivedColumns,
    VersionedColumns,
    archive_table_args,
    live_table_args,
    register_versioned_pair,
)


class LoaderPayloadColumns:
    """Loader definition fields carried by every version."""

    loader_sql: Mapped[str] = mapped_column(Text, nullable=False)

    # Reference into the source database registry, owned by the query engine
    source_database_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    min_interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    max_query_period_seconds: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=432000,
    )
    max_parallel_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    purge_strategy: Mapped[PurgeStrategy] = mapped_column(
        Enum(
            PurgeStrategy,
            name="purge_strategy",
            native_enum=False,
            length=20,
            create_constraint=True,
        ),
        nullable=False,
        default=PurgeStrategy.FAIL_ON_DUPLICATE,
    )

    # Bucket size for aggregated loaders; NULL loads raw rows
    aggregation_period_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    source_timezone_offset_hours: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )


def _payload_checks() -> tuple[CheckConstraint, ...]:
    return (
        CheckConstraint(
            "min_interval_seconds >= 1 AND min_interval_seconds <= max_interval_seconds",
            name="interval_range",
        ),
        CheckConstraint(
            "source_timezone_offset_hours BETWEEN -12 AND 14",
            name="timezone_offset_range",
        ),
    )


class Loader(LoaderPayloadColumns, VersionedColumns, Base):
    """Live loader version: ACTIVE, DRAFT or PENDING_APPROVAL."""

    __tablename__ = "loaders"
    __table_args__ = (*live_table_args("loaders"), *_payload_checks())

    def __repr__(self) -> str:
        return (
            f"<Loader {self.entity_code} v{self.version_number} "
            f"{self.version_status.value if self.version_status else None}>"
        )


class LoaderArchive(LoaderPayloadColumns, ArchivedColumns, Base):
    """Superseded, revoked or rejected loader version. Never modified."""

    __tablename__ = "loader_archive"
    __table_args__ = archive_table_args("loader_archive")

    def __repr__(self) -> str:
        return (
            f"<LoaderArchive {self.entity_code} v{self.version_number} "
            f"{self.archive_status.value if self.archive_status else None}>"
        )


register_versioned_pair(Loader, LoaderArchive)
