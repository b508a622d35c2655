"""Budget configuration and approver chain models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
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

from approval_engine.models.base import Base, TimestampMixin, new_id


class BudgetStatus:
    """Derived budget status values."""

    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"


class BudgetConfig(Base, TimestampMixin):
    """Named spending envelope with scope, limits and a three-level approver chain.

    Scope columns hold raw text: a JSON array, a bare scalar or a
    comma-separated string. Decode them with ``parse_scope_list``.
    """

    __tablename__ = "budget_config"

    budget_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    budget_name: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    pay_cycle: Mapped[str] = mapped_column(String, nullable=False, default="SEMI_MONTHLY")
    min_limit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    max_limit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    budget_control: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    budget_limit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    geo: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    client: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_ou: Mapped[str | None] = mapped_column(Text, nullable=True)
    affected_ou: Mapped[str | None] = mapped_column(Text, nullable=True)
    tenure_group: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "min_limit IS NULL OR max_limit IS NULL OR min_limit <= max_limit",
            name="budget_config_limits_check",
        ),
        CheckConstraint(
            "end_date IS NULL OR start_date IS NULL OR end_date >= start_date",
            name="budget_config_dates_check",
        ),
    )

    approvers: Mapped[list[BudgetApprover]] = relationship(
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetApprover.approval_level",
    )

    def status_on(self, as_of: date) -> str:
        """Derived lifecycle status."""
        if not self.is_active:
            return BudgetStatus.DEACTIVATED
        if self.end_date is not None and self.end_date < as_of:
            return BudgetStatus.EXPIRED
        return BudgetStatus.ACTIVE


class BudgetApprover(Base, TimestampMixin):
    """Configured approver for one level of a budget (upsert-by-level)."""

    __tablename__ = "budget_approver"

    approver_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    budget_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("budget_config.budget_id", ondelete="CASCADE"),
        nullable=False,
    )
    approval_level: Mapped[int] = mapped_column(Integer, nullable=False)
    primary_approver: Mapped[str] = mapped_column(String(36), nullable=False)
    backup_approver: Mapped[str | None] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        UniqueConstraint("budget_id", "approval_level", name="budget_approver_level_unique"),
        CheckConstraint(
            "approval_level BETWEEN 1 AND 3",
            name="budget_approver_level_check",
        ),
    )

    budget: Mapped[BudgetConfig] = relationship(back_populates="approvers")
