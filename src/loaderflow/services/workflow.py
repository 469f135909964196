"""Version lifecycle state machine.

A version moves through the live store and ends either in the archive or,
for an unsubmitted draft, removed altogether:

    DRAFT -> PENDING_APPROVAL -> ACTIVE -> ARCHIVED (superseded or revoked)
                             \\-> REJECTED
    DRAFT -> DELETED

Transitions are monotonic: a submitted draft cannot go back to DRAFT, and
nothing leaves the archive (rollback copies an archived payload into a new
draft instead).
"""

from __future__ import annotations

import enum
from typing import ClassVar

from loaderflow.db.models.base import ArchiveStatus, VersionStatus
from loaderflow.errors import InvalidStateTransitionError, ValidationError


class LifecycleState(enum.Enum):
    """Where a version is in its life, across both stores."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    REJECTED = "REJECTED"
    DELETED = "DELETED"

    @classmethod
    def of(cls, status: VersionStatus | ArchiveStatus) -> LifecycleState:
        """Lifecycle state of a live or archive status value."""
        return cls(status.value)


class VersionWorkflow:
    """Transition table for versions, in the manner of a delivery lifecycle.

    Example:
        VersionWorkflow.require(draft.version_status, LifecycleState.ACTIVE,
                                operation="approve", entity_code=draft.entity_code)
    """

    VALID_TRANSITIONS: ClassVar[dict[LifecycleState, set[LifecycleState]]] = {
        LifecycleState.DRAFT: {
            LifecycleState.PENDING_APPROVAL,
            LifecycleState.DELETED,
        },
        LifecycleState.PENDING_APPROVAL: {
            LifecycleState.ACTIVE,
            LifecycleState.REJECTED,
        },
        # Superseded by a newer approval, or revoked
        LifecycleState.ACTIVE: {LifecycleState.ARCHIVED},
        # Terminal states - no transitions out
        LifecycleState.ARCHIVED: set(),
        LifecycleState.REJECTED: set(),
        LifecycleState.DELETED: set(),
    }

    @classmethod
    def is_valid_transition(
        cls,
        from_state: LifecycleState,
        to_state: LifecycleState,
    ) -> bool:
        """Check if a state transition is valid.

        Args:
            from_state: Current state.
            to_state: Target state.

        Returns:
            True if the transition is allowed.
        """
        return to_state in cls.VALID_TRANSITIONS.get(from_state, set())

    @classmethod
    def is_terminal_state(cls, state: LifecycleState) -> bool:
        """Check if a state is terminal (no further transitions possible)."""
        return len(cls.VALID_TRANSITIONS.get(state, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, state: LifecycleState) -> set[LifecycleState]:
        return cls.VALID_TRANSITIONS.get(state, set()).copy()

    @classmethod
    def require(
        cls,
        current: VersionStatus | ArchiveStatus | LifecycleState,
        target: LifecycleState,
        *,
        operation: str,
        entity_code: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Raise unless ``current -> target`` is allowed.

        Raises:
            InvalidStateTransitionError: Carrying the current status and operation.
        """
        state = current if isinstance(current, LifecycleState) else LifecycleState.of(current)
        if not cls.is_valid_transition(state, target):
            raise InvalidStateTransitionError(
                operation,
                current,
                entity_code=entity_code,
                reason=reason,
            )


def require_text(
    value: str | None,
    field: str,
    *,
    entity_code: str | None = None,
    max_length: int | None = None,
) -> str:
    """Return ``value`` stripped, or raise if it is blank or too long.

    Raises:
        ValidationError: Naming the offending field.
    """
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required", field=field, entity_code=entity_code)
    if max_length is not None and len(cleaned) > max_length:
        raise ValidationError(
            f"{field} exceeds {max_length} characters",
            field=field,
            entity_code=entity_code,
        )
    return cleaned
