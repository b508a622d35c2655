"""Approval request, line item, approval level, attachment and activity log models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_engine.models.base import Base, TimestampMixin, new_id, utcnow


class ApprovalRequest(Base, TimestampMixin):
    """One instance of spending against a budget configuration."""

    __tablename__ = "approval_request"

    request_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    request_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    budget_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("budget_config.budget_id", ondelete="CASCADE"),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    overall_status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    submission_status: Mapped[str | None] = mapped_column(String, nullable=True)
    total_request_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_client_sponsored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attachment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    current_budget_used: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    remaining_budget: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    will_exceed_budget: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    excess_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    payroll_cycle: Mapped[str | None] = mapped_column(String, nullable=True)
    payroll_cycle_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    submitted_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    submitted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "overall_status IN ('draft', 'submitted', 'in_progress', 'approved', "
            "'rejected', 'completed')",
            name="approval_request_status_check",
        ),
    )

    line_items: Mapped[list[LineItem]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="LineItem.item_number",
    )
    levels: Mapped[list[ApprovalLevel]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="ApprovalLevel.approval_level",
    )
    attachments: Mapped[list[Attachment]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="Attachment.uploaded_date",
    )


class LineItem(Base, TimestampMixin):
    """Per-employee amount on a request. Never updated in place."""

    __tablename__ = "approval_line_item"

    line_item_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("approval_request.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    item_number: Mapped[int] = mapped_column(Integer, nullable=False)

    employee_id: Mapped[str] = mapped_column(String, nullable=False)
    employee_name: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    position: Mapped[str | None] = mapped_column(String, nullable=True)
    geo: Mapped[str | None] = mapped_column(String, nullable=True)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    employee_status: Mapped[str | None] = mapped_column(String, nullable=True)

    item_type: Mapped[str] = mapped_column(String, nullable=False, default="bonus")
    item_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    is_deduction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_warning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    warning_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("request_id", "item_number", name="line_item_number_unique"),
        CheckConstraint("amount >= 0", name="line_item_amount_non_negative"),
    )

    request: Mapped[ApprovalRequest] = relationship(back_populates="line_items")

    @property
    def signed_amount(self) -> Decimal:
        """Effective contribution to the request total."""
        return -self.amount if self.is_deduction else self.amount


class ApprovalLevel(Base, TimestampMixin):
    """Per-level approval record; approvers are snapshotted at submission."""

    __tablename__ = "approval_level"

    approval_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("approval_request.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    approval_level: Mapped[int] = mapped_column(Integer, nullable=False)
    approval_level_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")

    assigned_to_primary: Mapped[str | None] = mapped_column(String(36), nullable=True)
    assigned_to_backup: Mapped[str | None] = mapped_column(String(36), nullable=True)

    approved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String, nullable=True)
    approver_title: Mapped[str | None] = mapped_column(String, nullable=True)
    approval_decision: Mapped[str | None] = mapped_column(String, nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions_applied: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    completed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_self_request: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("request_id", "approval_level", name="approval_level_unique"),
        CheckConstraint("approval_level BETWEEN 1 AND 4", name="approval_level_range_check"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed')",
            name="approval_level_status_check",
        ),
    )

    request: Mapped[ApprovalRequest] = relationship(back_populates="levels")


class Attachment(Base):
    """Metadata for a file stored outside the database."""

    __tablename__ = "approval_attachment"

    attachment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("approval_request.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    file_name: Mapped[str] = mapped_column(String, nullable=False)
    file_type: Mapped[str | None] = mapped_column(String, nullable=True)
    file_size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    storage_provider: Mapped[str | None] = mapped_column(String, nullable=True)
    file_purpose: Mapped[str | None] = mapped_column(String, nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    uploaded_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "file_size_bytes IS NULL OR file_size_bytes >= 0",
            name="attachment_size_non_negative",
        ),
    )

    request: Mapped[ApprovalRequest] = relationship(back_populates="attachments")


class ActivityLog(Base):
    """Audit trail entry for a request."""

    __tablename__ = "approval_activity_log"

    log_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("approval_request.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    action_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    details_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
