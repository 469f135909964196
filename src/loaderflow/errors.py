"""Typed failures raised by the versioning workflow.

Every operation either completes or raises exactly one of these. Each carries
enough context (entity code, current status, violated constraint) for the
caller to explain the failure and to decide whether a retry makes sense.
"""

from __future__ import annotations

from typing import Any


class VersioningError(Exception):
    """Base exception for versioning workflow failures."""

    def __init__(
        self,
        message: str,
        *,
        entity_code: str | None = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.entity_code = entity_code
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Structured view of the failure for logging and API translation."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "entity_code": self.entity_code,
            **{k: getattr(v, "value", v) for k, v in self.context.items()},
        }


class EntityNotFoundError(VersioningError):
    """Raised when a code, id or version does not exist in the expected store."""


class InvalidStateTransitionError(VersioningError):
    """Raised when a row's status does not permit the requested operation."""

    def __init__(
        self,
        operation: str,
        current_status: Any,
        *,
        entity_code: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.operation = operation
        self.current_status = current_status
        status_value = getattr(current_status, "value", current_status)
        message = reason or (
            f"Cannot {operation} a version in status {status_value}"
            + (f" (entity_code={entity_code})" if entity_code else "")
        )
        super().__init__(
            message,
            entity_code=entity_code,
            operation=operation,
            current_status=current_status,
        )


class ValidationError(VersioningError):
    """Raised when caller-supplied data fails a required-field or payload check."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        errors: list[dict[str, Any]] | None = None,
        entity_code: str | None = None,
    ) -> None:
        self.field = field
        self.errors = errors or []
        super().__init__(message, entity_code=entity_code, field=field)


class ConcurrencyConflictError(VersioningError):
    """Raised when a racing transaction violated a uniqueness invariant.

    The operation was rolled back; the caller may retry it as a whole.
    """

    def __init__(
        self,
        message: str,
        *,
        constraint: str | None = None,
        entity_code: str | None = None,
    ) -> None:
        self.constraint = constraint
        super().__init__(message, entity_code=entity_code, constraint=constraint)


class ProtectedDeletionError(VersioningError):
    """Raised on an attempt to physically delete an ACTIVE version."""
