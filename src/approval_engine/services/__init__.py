"""Approval workflow services."""

from approval_engine.services.budget_service import BudgetConfigService
from approval_engine.services.errors import (
    CollaboratorFailure,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from approval_engine.services.inbox import NotificationInbox
from approval_engine.services.ledger import ApprovalLedger, ApproverSnapshot
from approval_engine.services.notifications import NotificationDispatcher
from approval_engine.services.request_service import RequestNumberAllocator, RequestService
from approval_engine.services.scope import ScopeValidator
from approval_engine.services.stage import Stage, compute_stage
from approval_engine.services.state_machine import (
    InvalidTransitionError,
    LevelStatus,
    RequestStateMachine,
    RequestStatus,
)
from approval_engine.services.workflow import WorkflowOrchestrator, WorkflowResult

__all__ = [
    "ApprovalLedger",
    "ApproverSnapshot",
    "BudgetConfigService",
    "CollaboratorFailure",
    "InvalidTransitionError",
    "LevelStatus",
    "NotFoundError",
    "NotificationDispatcher",
    "NotificationInbox",
    "RequestNumberAllocator",
    "RequestService",
    "RequestStateMachine",
    "RequestStatus",
    "ScopeValidator",
    "Stage",
    "ValidationError",
    "WorkflowError",
    "WorkflowOrchestrator",
    "WorkflowResult",
    "compute_stage",
]
