"""Per-entity version number high-water marks."""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from loaderflow.db.models.base import Base, EntityCode, TimestampTZ


class VersionCounter(Base):
    """Highest version number ever issued for one entity code.

    Deleted drafts leave no row in either store, so the maximum over the live
    and archive tables alone could hand the same number out twice. The
    counter remembers it.
    """

    __tablename__ = "version_counters"
    __table_args__ = (CheckConstraint("last_issued > 0", name="last_issued_positive"),)

    # Entity kind name, e.g. "loader"
    kind: Mapped[str] = mapped_column(String(50), primary_key=True)
    entity_code: Mapped[EntityCode] = mapped_column(primary_key=True)

    last_issued: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[TimestampTZ]
