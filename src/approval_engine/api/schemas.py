"""Pydantic schemas for API request bodies."""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RequestCreate(BaseModel):
    """Schema for creating a draft approval request."""

    budget_id: str
    description: str | None = None
    is_client_sponsored: bool = False


class RequestUpdate(BaseModel):
    """Editable fields of a draft request; omitted fields are left alone."""

    description: str | None = None
    current_budget_used: Decimal | None = None
    remaining_budget: Decimal | None = None
    will_exceed_budget: bool | None = None
    excess_amount: Decimal | None = None


class AttachmentCreate(BaseModel):
    """Metadata for a file already uploaded to storage."""

    file_name: str = Field(min_length=1)
    storage_path: str = Field(min_length=1)
    file_type: str | None = None
    file_size_bytes: int | None = Field(default=None, ge=0)
    storage_provider: str | None = None
    file_purpose: str | None = None


class LineItemCreate(BaseModel):
    """One employee line; a negative amount is stored as a deduction."""

    model_config = ConfigDict(extra="ignore")

    employee_id: str
    amount: Decimal
    employee_name: str | None = None
    email: str | None = None
    department: str | None = None
    position: str | None = None
    geo: str | None = None
    location: str | None = None
    hire_date: date | None = None
    termination_date: date | None = None
    employee_status: str | None = None
    item_type: str | None = None
    item_description: str | None = None
    is_deduction: bool = False
    has_warning: bool = False
    warning_reason: str | None = None
    notes: str | None = None


class LineItemBulkCreate(BaseModel):
    """Schema for appending a batch of line items."""

    line_items: list[LineItemCreate] = Field(min_length=1)


class ApprovalDecision(BaseModel):
    """Approve one level; payroll fields are required at level 4."""

    approval_level: int = Field(ge=1, le=4)
    approver_name: str | None = None
    approver_title: str | None = None
    approval_notes: str | None = None
    conditions_applied: str | None = None
    payroll_cycle: str | None = None
    payroll_cycle_date: date | None = None


class RejectionDecision(BaseModel):
    """Reject one level."""

    approval_level: int = Field(ge=1, le=4)
    rejection_reason: str
    approver_name: str | None = None


class PaymentCompletion(BaseModel):
    """Confirm payroll payment."""

    completion_notes: str | None = None
    approver_name: str | None = None


class Envelope(BaseModel):
    """Uniform response envelope."""

    success: bool
    data: Any = None
    message: str | None = None
    error: str | dict[str, Any] | None = None
    error_code: str | None = None
