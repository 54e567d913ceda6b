from __future__ import annotations

from enum import Enum
from typing import Optional, Union
from uuid import UUID


class WorkflowError(Exception):
    """Base class for recoverable workflow failures.

    None of these are fatal to the process; callers surface them to the user
    and allow a retry with corrected input.
    """

    kind = "workflow_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PermissionDeniedError(WorkflowError):
    kind = "permission_denied"

    def __init__(self, *, action: str, entity_kind: str, actor_id: Optional[str] = None) -> None:
        super().__init__(f"Actor {actor_id or 'unknown'} is not allowed to {action} {entity_kind}")
        self.action = action
        self.entity_kind = entity_kind
        self.actor_id = actor_id


class InvalidStateError(WorkflowError):
    kind = "invalid_state"

    def __init__(
        self,
        *,
        entity_kind: str,
        entity_id: Union[UUID, str, None],
        current: Union[Enum, str],
        requested: str,
        target: Union[Enum, str, None] = None,
        message: Optional[str] = None,
    ) -> None:
        current_value = current.value if isinstance(current, Enum) else current
        target_value = target.value if isinstance(target, Enum) else target
        if message is None:
            message = f"Cannot {requested} {entity_kind} {entity_id}: current status is {current_value}"
            if target_value is not None:
                message += f", requested status {target_value}"
        super().__init__(message)
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.current = current_value
        self.requested = requested
        self.target = target_value


class ConcurrentModificationError(InvalidStateError):
    """Raised when a save loses an optimistic version check."""

    kind = "concurrent_modification"

    def __init__(
        self,
        *,
        entity_kind: str,
        entity_id: Union[UUID, str],
        expected_version: int,
        actual_version: Optional[int],
    ) -> None:
        super().__init__(
            entity_kind=entity_kind,
            entity_id=entity_id,
            current=f"version {actual_version}",
            requested="save",
            message=(
                f"{entity_kind} {entity_id} was modified concurrently "
                f"(expected version {expected_version}, found {actual_version})"
            ),
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class ValidationError(WorkflowError):
    kind = "validation_error"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(WorkflowError):
    kind = "not_found"

    def __init__(self, *, entity_kind: str, entity_id: Union[UUID, str]) -> None:
        super().__init__(f"{entity_kind} {entity_id} not found")
        self.entity_kind = entity_kind
        self.entity_id = entity_id


def require_text(value: Optional[str], *, field: str) -> str:
    """Return ``value`` stripped, raising ValidationError when it is blank."""

    if value is None or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()
