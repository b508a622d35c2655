"""Error taxonomy for workflow operations.

Every public workflow operation converts these into the uniform result
envelope; ``code`` is the stable machine-readable identifier the HTTP
layer maps onto a status code.
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base class for workflow failures surfaced to callers."""

    code = "workflow_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def public_error(self) -> str | dict[str, Any]:
        """Human-readable string or field-keyed object, never a traceback."""
        return self.details if self.details else self.message


class ValidationError(WorkflowError):
    """Missing or malformed input, or a failed scope gate."""

    code = "validation_error"


class NotFoundError(WorkflowError):
    """Request, budget or level row absent."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class CollaboratorFailure(WorkflowError):
    """Row-store error during a core write."""

    code = "collaborator_failure"

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


def require_fields(data: dict[str, Any], *fields: str) -> None:
    """Raise ValidationError listing every missing field."""
    missing = {
        name: f"{name} is required"
        for name in fields
        if data.get(name) is None or (isinstance(data.get(name), str) and not data[name].strip())
    }
    if missing:
        raise ValidationError(
            "Missing required fields: " + ", ".join(missing),
            details=missing,
        )
