"""Approval ledger - per-level approval records for a request.

Each level record moves pending → approved | rejected exactly once; the
payroll level additionally moves approved → completed when payment is
confirmed. Level writes are compare-and-swap updates guarded on the prior
status, so a second decision on the same level fails instead of
overwriting the first.

Approvers are copied into the level records when the ledger is
initialized. Later edits to the budget's approver chain do not change who
is responsible for a request already in flight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.models import ApprovalLevel, ApprovalRequest, BudgetApprover
from approval_engine.services.activity import ActivityRecorder
from approval_engine.services.errors import NotFoundError, ValidationError
from approval_engine.services.stage import approver_levels_approved
from approval_engine.services.state_machine import (
    PAYROLL_LEVEL,
    InvalidTransitionError,
    LevelStateMachine,
    LevelStatus,
    RequestStateMachine,
    RequestStatus,
    level_name,
)

logger = logging.getLogger(__name__)

VALID_LEVELS = (1, 2, 3, PAYROLL_LEVEL)


@dataclass(frozen=True)
class ApproverSnapshot:
    """Approver assignment captured at submission time."""

    approval_level: int
    primary: str | None
    backup: str | None

    @classmethod
    def from_approver(cls, approver: BudgetApprover) -> ApproverSnapshot:
        return cls(approver.approval_level, approver.primary_approver, approver.backup_approver)

    @classmethod
    def from_level(cls, record: ApprovalLevel) -> ApproverSnapshot:
        return cls(record.approval_level, record.assigned_to_primary, record.assigned_to_backup)

    def matches(self, user_id: str | None) -> bool:
        """Case-insensitive match against primary or backup."""
        if not user_id:
            return False
        key = user_id.strip().lower()
        return any(a and a.strip().lower() == key for a in (self.primary, self.backup))


@dataclass(frozen=True)
class LedgerOutcome:
    """Result of a ledger mutation."""

    request: ApprovalRequest
    level: ApprovalLevel
    levels: list[ApprovalLevel]
    approver_levels_complete: bool


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalLedger:
    """Owns the approval level records of a request."""

    def __init__(self, session: AsyncSession, activity: ActivityRecorder | None = None):
        self.session = session
        self.activity = activity or ActivityRecorder(session)

    async def get_levels(self, request_id: str) -> list[ApprovalLevel]:
        """Level records ordered by level, freshly loaded."""
        result = await self.session.execute(
            select(ApprovalLevel)
            .where(ApprovalLevel.request_id == request_id)
            .order_by(ApprovalLevel.approval_level)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_snapshots(self, request_id: str) -> dict[int, ApproverSnapshot]:
        return {r.approval_level: ApproverSnapshot.from_level(r) for r in await self.get_levels(request_id)}

    async def initialize(self, request_id: str) -> list[ApprovalLevel]:
        """Create one pending record per configured level plus the payroll level.

        Idempotent: levels that already exist are left alone, and a
        unique-constraint collision from a concurrent initializer is
        swallowed. Commits its own inserts.
        """
        request = await self._get_request(request_id)

        result = await self.session.execute(
            select(BudgetApprover)
            .where(BudgetApprover.budget_id == request.budget_id)
            .order_by(BudgetApprover.approval_level)
        )
        snapshots = [ApproverSnapshot.from_approver(a) for a in result.scalars().all()]
        if not any(s.approval_level == PAYROLL_LEVEL for s in snapshots):
            snapshots.append(ApproverSnapshot(PAYROLL_LEVEL, None, None))

        existing = {r.approval_level for r in await self.get_levels(request_id)}
        records = [
            ApprovalLevel(
                request_id=request_id,
                approval_level=snap.approval_level,
                approval_level_name=level_name(snap.approval_level),
                assigned_to_primary=snap.primary,
                assigned_to_backup=snap.backup,
                status=LevelStatus.PENDING.value,
            )
            for snap in snapshots
            if snap.approval_level not in existing
        ]
        if not records:
            return await self.get_levels(request_id)

        self.session.add_all(records)
        try:
            await self.session.commit()
        except IntegrityError:
            # Another initializer won the race; its rows stand.
            await self.session.rollback()
            logger.info("Approval workflow for %s already initialized", request_id)
        else:
            logger.info(
                "Initialized levels %s for request %s",
                [r.approval_level for r in records],
                request_id,
            )
        return await self.get_levels(request_id)

    async def approve(
        self,
        request_id: str,
        level: int,
        *,
        actor_id: str,
        approver_name: str | None = None,
        approver_title: str | None = None,
        notes: str | None = None,
        conditions: str | None = None,
        payroll_cycle: str | None = None,
        payroll_cycle_date: date | None = None,
        is_self_request: bool = False,
    ) -> LedgerOutcome:
        """Approve one level and recompute the overall status."""
        request, levels, target = await self._load_for_decision(
            request_id, level, LevelStatus.APPROVED.value
        )

        now = _now()
        await self._compare_and_set(
            target,
            expected=LevelStatus.PENDING.value,
            to_status=LevelStatus.APPROVED.value,
            values={
                "approved_by": actor_id,
                "approver_name": approver_name,
                "approver_title": approver_title,
                "approval_decision": "approved",
                "approval_notes": notes,
                "conditions_applied": conditions,
                "approval_date": now,
                "is_self_request": is_self_request,
            },
        )

        levels = await self.get_levels(request_id)
        target = next(r for r in levels if r.approval_level == level)
        complete = approver_levels_approved(levels)

        if level == PAYROLL_LEVEL:
            request.payroll_cycle = payroll_cycle
            request.payroll_cycle_date = payroll_cycle_date
        else:
            to_status = RequestStatus.APPROVED if complete else RequestStatus.IN_PROGRESS
            RequestStateMachine.validate_transition(request.overall_status, to_status.value)
            request.overall_status = to_status.value
            if complete:
                request.approved_date = now
        request.updated_by = actor_id
        request.updated_at = now

        self.activity.record(
            request_id,
            "auto_approved" if is_self_request else "approved",
            actor_id,
            notes if is_self_request and notes else f"Approved at level {level}",
            details={"approval_level": level},
        )
        await self.session.flush()
        return LedgerOutcome(request, target, levels, complete)

    async def reject(
        self,
        request_id: str,
        level: int,
        *,
        actor_id: str,
        reason: str,
        approver_name: str | None = None,
    ) -> LedgerOutcome:
        """Reject one level; the whole request becomes rejected."""
        request, levels, target = await self._load_for_decision(
            request_id, level, LevelStatus.REJECTED.value
        )

        now = _now()
        await self._compare_and_set(
            target,
            expected=LevelStatus.PENDING.value,
            to_status=LevelStatus.REJECTED.value,
            values={
                "approved_by": actor_id,
                "approver_name": approver_name,
                "approval_decision": "rejected",
                "approval_notes": reason,
                "approval_date": now,
            },
        )

        RequestStateMachine.validate_transition(request.overall_status, RequestStatus.REJECTED.value)
        request.overall_status = RequestStatus.REJECTED.value
        request.updated_by = actor_id
        request.updated_at = now

        self.activity.record(
            request_id,
            "rejected",
            actor_id,
            f"Rejected at level {level}: {reason}",
            details={"approval_level": level},
        )
        await self.session.flush()

        levels = await self.get_levels(request_id)
        target = next(r for r in levels if r.approval_level == level)
        return LedgerOutcome(request, target, levels, approver_levels_approved(levels))

    async def complete_payment(
        self,
        request_id: str,
        *,
        actor_id: str,
        approver_name: str | None = None,
        notes: str | None = None,
    ) -> LedgerOutcome:
        """Mark the approved payroll level completed; the request completes."""
        request = await self._get_request(request_id)
        if RequestStateMachine.is_terminal(request.overall_status):
            raise InvalidTransitionError(
                request.overall_status,
                RequestStatus.COMPLETED.value,
                f"request is already {request.overall_status}",
            )

        levels = await self.get_levels(request_id)
        target = next((r for r in levels if r.approval_level == PAYROLL_LEVEL), None)
        if target is None:
            raise NotFoundError("Approval level", f"{request_id}/{level_name(PAYROLL_LEVEL)}")
        if target.status != LevelStatus.APPROVED:
            raise InvalidTransitionError(
                target.status,
                LevelStatus.COMPLETED.value,
                "payroll approval is required before payment completion",
            )

        now = _now()
        await self._compare_and_set(
            target,
            expected=LevelStatus.APPROVED.value,
            to_status=LevelStatus.COMPLETED.value,
            values={
                "completed_by": actor_id,
                "completion_notes": notes,
                "completed_date": now,
            },
        )

        RequestStateMachine.validate_transition(request.overall_status, RequestStatus.COMPLETED.value)
        request.overall_status = RequestStatus.COMPLETED.value
        request.completed_date = now
        request.updated_by = actor_id
        request.updated_at = now

        self.activity.record(
            request_id,
            "payment_completed",
            actor_id,
            notes or "Payroll payment completed",
            details={"approval_level": PAYROLL_LEVEL, "approver_name": approver_name},
        )
        await self.session.flush()

        levels = await self.get_levels(request_id)
        target = next(r for r in levels if r.approval_level == PAYROLL_LEVEL)
        return LedgerOutcome(request, target, levels, approver_levels_approved(levels))

    async def _get_request(self, request_id: str) -> ApprovalRequest:
        request = await self.session.get(ApprovalRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Approval request", request_id)
        return request

    async def _load_for_decision(
        self,
        request_id: str,
        level: int,
        to_status: str,
    ) -> tuple[ApprovalRequest, list[ApprovalLevel], ApprovalLevel]:
        """Load and check everything an approve/reject needs."""
        if level not in VALID_LEVELS:
            raise ValidationError(
                f"approval_level must be one of {list(VALID_LEVELS)}",
                details={"approval_level": f"invalid level {level!r}"},
            )

        request = await self._get_request(request_id)
        if RequestStateMachine.is_terminal(request.overall_status):
            raise InvalidTransitionError(
                request.overall_status,
                to_status,
                f"request is already {request.overall_status}",
            )
        if not RequestStateMachine.is_in_flight(request.overall_status):
            raise InvalidTransitionError(
                request.overall_status,
                to_status,
                "request has not been submitted",
            )

        levels = await self.get_levels(request_id)
        target = next((r for r in levels if r.approval_level == level), None)
        if target is None:
            raise NotFoundError("Approval level", f"{request_id}/{level_name(level)}")

        LevelStateMachine.validate_transition(level, target.status, to_status)

        blocking = [
            r for r in levels
            if r.approval_level < level and r.status != LevelStatus.APPROVED
        ]
        if blocking:
            raise InvalidTransitionError(
                target.status,
                to_status,
                f"level {level_name(blocking[0].approval_level)} is still {blocking[0].status}",
            )
        return request, levels, target

    async def _compare_and_set(
        self,
        target: ApprovalLevel,
        *,
        expected: str,
        to_status: str,
        values: dict,
    ) -> None:
        """Conditional update; fails if the level moved since it was read."""
        result = await self.session.execute(
            update(ApprovalLevel)
            .where(
                ApprovalLevel.approval_id == target.approval_id,
                ApprovalLevel.status == expected,
            )
            .values(status=to_status, updated_at=_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.refresh(target)
            raise InvalidTransitionError(
                target.status,
                to_status,
                f"level {level_name(target.approval_level)} was decided concurrently",
            )
