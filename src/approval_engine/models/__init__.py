"""ORM models for the approval engine."""

from approval_engine.models.base import Base, TimestampMixin, new_id, utcnow
from approval_engine.models.budget import BudgetApprover, BudgetConfig, BudgetStatus
from approval_engine.models.directory import Organization, UserProfile, UserRole
from approval_engine.models.notification import Notification
from approval_engine.models.request import (
    ActivityLog,
    ApprovalLevel,
    ApprovalRequest,
    Attachment,
    LineItem,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "new_id",
    "utcnow",
    "BudgetConfig",
    "BudgetApprover",
    "BudgetStatus",
    "Organization",
    "UserProfile",
    "UserRole",
    "Notification",
    "ApprovalRequest",
    "LineItem",
    "ApprovalLevel",
    "Attachment",
    "ActivityLog",
]
