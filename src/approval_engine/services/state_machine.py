"""Request and approval-level state machines with transition validation."""

from __future__ import annotations

from enum import Enum

from approval_engine.services.errors import WorkflowError


class RequestStatus(str, Enum):
    """Stored overall status of an approval request."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class LevelStatus(str, Enum):
    """Status of a single approval level record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


PAYROLL_LEVEL = 4
APPROVER_LEVELS = (1, 2, 3)


def level_name(level: int) -> str:
    """Display name for a level: L1..L3, or Payroll."""
    return "Payroll" if level == PAYROLL_LEVEL else f"L{level}"


class InvalidTransitionError(WorkflowError):
    """Raised when an invalid state transition is attempted."""

    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class LevelStateMachine:
    """State machine for approval level records.

    Allowed transitions:
    - pending → approved
    - pending → rejected
    - approved → completed (payroll level only)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        LevelStatus.PENDING: [LevelStatus.APPROVED, LevelStatus.REJECTED],
        LevelStatus.APPROVED: [LevelStatus.COMPLETED],
        LevelStatus.REJECTED: [],  # Terminal state
        LevelStatus.COMPLETED: [],  # Terminal state
    }

    @classmethod
    def can_transition(cls, level: int, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid for the given level."""
        if to_status == LevelStatus.COMPLETED and level != PAYROLL_LEVEL:
            return False
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, level: int, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(level, from_status, to_status):
            raise InvalidTransitionError(
                from_status,
                to_status,
                f"level {level_name(level)} is {from_status}",
            )


class RequestStateMachine:
    """State machine for the overall request status.

    Allowed transitions:
    - draft → submitted
    - submitted → in_progress | approved | rejected
    - in_progress → in_progress | approved | rejected
    - approved → completed
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        RequestStatus.DRAFT: [RequestStatus.SUBMITTED],
        RequestStatus.SUBMITTED: [
            RequestStatus.IN_PROGRESS,
            RequestStatus.APPROVED,
            RequestStatus.REJECTED,
        ],
        RequestStatus.IN_PROGRESS: [
            RequestStatus.IN_PROGRESS,
            RequestStatus.APPROVED,
            RequestStatus.REJECTED,
        ],
        RequestStatus.APPROVED: [RequestStatus.COMPLETED, RequestStatus.REJECTED],
        RequestStatus.REJECTED: [],  # Terminal state
        RequestStatus.COMPLETED: [],  # Terminal state
    }

    TERMINAL = {RequestStatus.REJECTED, RequestStatus.COMPLETED}

    # Statuses in which approvers may still act
    IN_FLIGHT = {
        RequestStatus.SUBMITTED,
        RequestStatus.IN_PROGRESS,
        RequestStatus.APPROVED,
    }

    # Statuses in which line items may still be appended
    LINE_ITEMS_MUTABLE = {
        RequestStatus.DRAFT,
        RequestStatus.SUBMITTED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def is_in_flight(cls, status: str) -> bool:
        return status in cls.IN_FLIGHT

    @classmethod
    def can_modify_line_items(cls, status: str) -> bool:
        return status in cls.LINE_ITEMS_MUTABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
