"""Entity kinds: what the versioning workflow needs to know about a model pair.

The workflow services never import a concrete model. They receive an
``EntityKind`` bundling the live model, the archive model, and the pydantic
schema that validates the kind's payload, and only touch the versioning
columns plus the payload fields the schema declares.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from loaderflow.db.models.base import PurgeStrategy
from loaderflow.db.models.loaders import Loader, LoaderArchive
from loaderflow.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

# Versioning columns copied from a live row into its archive snapshot,
# in addition to the payload fields
SNAPSHOT_COLUMNS: tuple[str, ...] = (
    "entity_code",
    "version_number",
    "parent_version_id",
    "enabled",
    "created_by",
    "created_at",
    "modified_by",
    "modified_at",
    "approved_by",
    "approved_at",
    "rejected_by",
    "rejected_at",
    "rejection_reason",
    "change_type",
    "change_summary",
    "import_label",
)


class LoaderPayload(BaseModel):
    """Validated loader definition.

    Mirrors the payload columns of ``loaders``; bounds match the table CHECK
    constraints so an invalid payload fails here rather than at flush.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    loader_sql: str = Field(min_length=1, description="Extraction query run against the source")
    source_database_id: int = Field(ge=1, description="Source database registry id")
    min_interval_seconds: int = Field(default=10, ge=1)
    max_interval_seconds: int = Field(default=60, ge=1)
    max_query_period_seconds: int = Field(default=432000, ge=1)
    max_parallel_executions: int = Field(default=1, ge=1)
    purge_strategy: PurgeStrategy = PurgeStrategy.FAIL_ON_DUPLICATE
    aggregation_period_seconds: int | None = Field(default=None, ge=1)
    source_timezone_offset_hours: int = Field(default=0, ge=-12, le=14)

    @field_validator("purge_strategy", mode="before")
    @classmethod
    def normalize_purge_strategy(cls, v: Any) -> Any:
        """Accept strategy names case-insensitively."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def check_interval_range(self) -> LoaderPayload:
        """The scheduler interval range must not be inverted."""
        if self.min_interval_seconds > self.max_interval_seconds:
            msg = (
                f"min_interval_seconds ({self.min_interval_seconds}) must not exceed "
                f"max_interval_seconds ({self.max_interval_seconds})"
            )
            raise ValueError(msg)
        return self


@dataclass(frozen=True, slots=True)
class EntityKind:
    """Capability binding between the workflow and one versioned model pair.

    Attributes:
        name: Registry key, also the ``version_counters.kind`` value.
        live_model: ORM class of the live table (``VersionedColumns``).
        archive_model: ORM class of the archive table (``ArchivedColumns``).
        payload_schema: Pydantic model validating the payload fields.
    """

    name: str
    live_model: type[Any]
    archive_model: type[Any]
    payload_schema: type[BaseModel]

    @property
    def payload_fields(self) -> tuple[str, ...]:
        return tuple(self.payload_schema.model_fields)

    def validate_payload(
        self,
        payload: Mapping[str, Any] | BaseModel,
        *,
        entity_code: str | None = None,
    ) -> BaseModel:
        """Validate caller data against the payload schema.

        Raises:
            ValidationError: With the individual field errors attached.
        """
        if isinstance(payload, self.payload_schema):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            return self.payload_schema.model_validate(payload)
        except PydanticValidationError as e:
            errors = [
                {
                    "field": ".".join(str(x) for x in error["loc"]),
                    "message": error["msg"],
                }
                for error in e.errors()
            ]
            first_field = errors[0]["field"] if errors else None
            raise ValidationError(
                f"Invalid {self.name} payload: "
                + "; ".join(f"{err['field'] or '<root>'}: {err['message']}" for err in errors),
                field=first_field or None,
                errors=errors,
                entity_code=entity_code,
            ) from e

    def apply_payload(self, row: Any, payload: BaseModel) -> None:
        """Copy validated payload values onto a live row."""
        for field_name in self.payload_fields:
            setattr(row, field_name, getattr(payload, field_name))

    def payload_of(self, row: Any) -> dict[str, Any]:
        """Extract the payload fields of a live or archived row."""
        return {field_name: getattr(row, field_name) for field_name in self.payload_fields}

    def snapshot(self, row: Any) -> dict[str, Any]:
        """All columns an archive snapshot copies from a live row."""
        values = {column: getattr(row, column) for column in SNAPSHOT_COLUMNS}
        values.update(self.payload_of(row))
        return values


LOADER_KIND = EntityKind(
    name="loader",
    live_model=Loader,
    archive_model=LoaderArchive,
    payload_schema=LoaderPayload,
)

_KINDS: dict[str, EntityKind] = {}


def register_kind(kind: EntityKind) -> EntityKind:
    """Make a kind resolvable by name. Re-registering the same name replaces it."""
    _KINDS[kind.name] = kind
    return kind


def get_kind(name: str) -> EntityKind:
    """Resolve a registered kind.

    Raises:
        KeyError: If no kind is registered under ``name``.
    """
    try:
        return _KINDS[name]
    except KeyError:
        msg = f"Unknown entity kind {name!r}; registered: {', '.join(sorted(_KINDS)) or 'none'}"
        raise KeyError(msg) from None


def registered_kinds() -> list[EntityKind]:
    return [_KINDS[name] for name in sorted(_KINDS)]


register_kind(LOADER_KIND)
