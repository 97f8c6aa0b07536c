"""
Error taxonomy for the hiring workflow engine.

Every failure surfaced to a caller is a HiringError subclass carrying a
stable code plus enough structured detail to render a precise message.
"""

from typing import Any


class HiringError(Exception):
    """Base class for all hiring workflow errors."""

    code = "HIRING_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for an outer API layer."""
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(HiringError):
    """Malformed or missing input."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, field=field)
        self.field = field


class NotFoundError(HiringError):
    """Entity, job or application does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class ForbiddenError(HiringError):
    """Role or ownership mismatch, or a plan-limit gate refusal."""

    code = "FORBIDDEN"

    ROLE = "ROLE"
    OWNERSHIP = "OWNERSHIP"
    PLAN_LIMIT = "PLAN_LIMIT"
    BLOCKED = "BLOCKED"

    def __init__(self, message: str, reason_code: str = "OWNERSHIP") -> None:
        super().__init__(message, reason_code=reason_code)
        self.reason_code = reason_code


class InvalidTransitionError(HiringError):
    """A state machine rejected the requested move."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        entity: str,
        current: str,
        attempted: str,
        allowed: list[str] | None = None,
        message: str | None = None,
    ) -> None:
        allowed = sorted(allowed or [])
        super().__init__(
            message or f"Cannot move {entity} from '{current}' to '{attempted}'",
            entity=entity,
            current=current,
            attempted=attempted,
            allowed=allowed,
        )
        self.entity = entity
        self.current = current
        self.attempted = attempted
        self.allowed = allowed


class SlotConflictError(HiringError):
    """The requested interview slot overlaps an existing booking."""

    code = "SLOT_CONFLICT"

    def __init__(
        self,
        conflicting_interview_id: str,
        date: str,
        start_time: str,
        end_time: str,
    ) -> None:
        super().__init__(
            f"Slot {date} {start_time}-{end_time} overlaps interview {conflicting_interview_id}",
            conflicting_interview_id=conflicting_interview_id,
            date=date,
            start_time=start_time,
            end_time=end_time,
        )
        self.conflicting_interview_id = conflicting_interview_id


class ConflictError(HiringError):
    """A write precondition no longer held at commit time."""

    code = "CONFLICT"

    STALE_WRITE = "STALE_WRITE"
    DUPLICATE_APPLICATION = "DUPLICATE_APPLICATION"
    CHAT_CREATION_IN_PROGRESS = "CHAT_CREATION_IN_PROGRESS"
    ALREADY_BLOCKED = "ALREADY_BLOCKED"

    def __init__(self, message: str, reason_code: str = "STALE_WRITE") -> None:
        super().__init__(message, reason_code=reason_code)
        self.reason_code = reason_code


class StorageError(HiringError):
    """The storage layer kept failing after bounded retries."""

    code = "STORAGE_ERROR"


class CollaboratorError(HiringError):
    """An external collaborator (chat, notifications, directory, gate) failed."""

    code = "COLLABORATOR_ERROR"

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}", collaborator=collaborator)
        self.collaborator = collaborator
