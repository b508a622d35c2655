"""Derived lifecycle stage for an approval request.

The stage is never stored; it is recomputed from the approval level
records and the stored overall status on every read.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping

from approval_engine.services.state_machine import (
    PAYROLL_LEVEL,
    LevelStatus,
    RequestStatus,
)


class Stage(str, Enum):
    """Coarse lifecycle label shown to users."""

    DRAFT = "draft"
    ONGOING_APPROVAL = "ongoing_approval"
    PENDING_PAYROLL_APPROVAL = "pending_payroll_approval"
    PENDING_PAYMENT_COMPLETION = "pending_payment_completion"
    REJECTED = "rejected"
    COMPLETED = "completed"


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def approver_levels_approved(records: Iterable[Any]) -> bool:
    """True when every non-payroll level present is approved (and one exists)."""
    statuses = [
        _field(r, "status")
        for r in records
        if int(_field(r, "approval_level")) != PAYROLL_LEVEL
    ]
    return bool(statuses) and all(s == LevelStatus.APPROVED for s in statuses)


def compute_stage(records: Iterable[Any], overall_status: str) -> Stage:
    """Map level records plus overall status onto a stage; first match wins.

    ``records`` may be ORM rows or mappings with ``approval_level`` and
    ``status``.
    """
    records = list(records)

    if overall_status == RequestStatus.REJECTED:
        return Stage.REJECTED
    if overall_status == RequestStatus.COMPLETED:
        return Stage.COMPLETED

    if any(_field(r, "status") == LevelStatus.REJECTED for r in records):
        return Stage.REJECTED

    payroll = next(
        (r for r in records if int(_field(r, "approval_level")) == PAYROLL_LEVEL),
        None,
    )
    payroll_status = _field(payroll, "status") if payroll is not None else None

    if payroll_status == LevelStatus.COMPLETED:
        return Stage.COMPLETED
    if payroll_status == LevelStatus.APPROVED:
        return Stage.PENDING_PAYMENT_COMPLETION
    if approver_levels_approved(records):
        return Stage.PENDING_PAYROLL_APPROVAL

    if overall_status == RequestStatus.DRAFT:
        return Stage.DRAFT
    return Stage.ONGOING_APPROVAL
