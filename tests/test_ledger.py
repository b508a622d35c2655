"""Tests for the approval ledger."""

from datetime import date

import pytest
from sqlalchemy import select

from approval_engine.models import ActivityLog, ApprovalLevel, ApprovalRequest, BudgetApprover
from approval_engine.services.errors import NotFoundError, ValidationError
from approval_engine.services.ledger import ApprovalLedger, ApproverSnapshot
from approval_engine.services.state_machine import InvalidTransitionError

from .conftest import L1_APPROVER, L1_BACKUP, L2_APPROVER, L3_APPROVER, OUTSIDER


@pytest.fixture
def ledger(session) -> ApprovalLedger:
    return ApprovalLedger(session)


@pytest.fixture
async def submitted(session, make_request, ledger) -> ApprovalRequest:
    """A submitted request with its ledger initialized."""
    request = await make_request()
    request.overall_status = "submitted"
    await session.commit()
    await ledger.initialize(request.request_id)
    return request


async def approve(ledger: ApprovalLedger, request_id: str, level: int, actor: str, **kwargs):
    return await ledger.approve(request_id, level, actor_id=actor, **kwargs)


class TestInitialize:
    async def test_creates_configured_levels_plus_payroll(self, ledger, submitted):
        levels = await ledger.get_levels(submitted.request_id)

        assert [r.approval_level for r in levels] == [1, 2, 3, 4]
        assert all(r.status == "pending" for r in levels)
        assert [r.approval_level_name for r in levels] == ["L1", "L2", "L3", "Payroll"]
        assert levels[0].assigned_to_primary == L1_APPROVER
        assert levels[0].assigned_to_backup == L1_BACKUP
        assert levels[3].assigned_to_primary is None

    async def test_idempotent(self, ledger, submitted):
        again = await ledger.initialize(submitted.request_id)
        assert len(again) == 4

    async def test_snapshot_survives_approver_change(self, session, ledger, submitted, budget):
        approver = await session.scalar(
            select(BudgetApprover).where(
                BudgetApprover.budget_id == budget.budget_id,
                BudgetApprover.approval_level == 2,
            )
        )
        approver.primary_approver = OUTSIDER
        await session.commit()

        snapshots = await ledger.get_snapshots(submitted.request_id)
        assert snapshots[2].primary == L2_APPROVER

    async def test_unknown_request(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.initialize("missing")


class TestApprove:
    async def test_first_level_moves_request_in_progress(self, ledger, submitted):
        outcome = await approve(ledger, submitted.request_id, 1, L1_APPROVER, notes="ok")

        assert outcome.level.status == "approved"
        assert outcome.level.approved_by == L1_APPROVER
        assert outcome.level.approval_notes == "ok"
        assert outcome.level.approval_date is not None
        assert outcome.request.overall_status == "in_progress"
        assert outcome.approver_levels_complete is False

    async def test_all_approver_levels_approve_request(self, ledger, submitted):
        for level, actor in ((1, L1_APPROVER), (2, L2_APPROVER), (3, L3_APPROVER)):
            outcome = await approve(ledger, submitted.request_id, level, actor)

        assert outcome.approver_levels_complete is True
        assert outcome.request.overall_status == "approved"
        assert outcome.request.approved_date is not None

    async def test_double_approval_rejected(self, ledger, submitted):
        await approve(ledger, submitted.request_id, 1, L1_APPROVER)

        with pytest.raises(InvalidTransitionError):
            await approve(ledger, submitted.request_id, 1, L1_BACKUP)

    async def test_level_ordering_enforced(self, ledger, submitted):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await approve(ledger, submitted.request_id, 3, L3_APPROVER)

        assert "L1" in str(exc_info.value)

    async def test_invalid_level(self, ledger, submitted):
        with pytest.raises(ValidationError):
            await approve(ledger, submitted.request_id, 5, L1_APPROVER)

    async def test_draft_request_cannot_be_approved(self, ledger, make_request):
        request = await make_request()

        with pytest.raises(InvalidTransitionError):
            await approve(ledger, request.request_id, 1, L1_APPROVER)

    async def test_payroll_level_persists_cycle(self, ledger, submitted):
        for level, actor in ((1, L1_APPROVER), (2, L2_APPROVER), (3, L3_APPROVER)):
            await approve(ledger, submitted.request_id, level, actor)

        outcome = await approve(
            ledger,
            submitted.request_id,
            4,
            "payroll-1",
            payroll_cycle="2025-06-A",
            payroll_cycle_date=date(2025, 6, 15),
        )

        assert outcome.level.status == "approved"
        assert outcome.request.overall_status == "approved"
        assert outcome.request.payroll_cycle == "2025-06-A"
        assert outcome.request.payroll_cycle_date == date(2025, 6, 15)

    async def test_compare_and_swap_detects_concurrent_decision(self, session, ledger, submitted):
        levels = await ledger.get_levels(submitted.request_id)
        stale = levels[0]
        await approve(ledger, submitted.request_id, 1, L1_APPROVER)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await ledger._compare_and_set(
                stale,
                expected="pending",
                to_status="approved",
                values={"approved_by": L1_BACKUP},
            )

        assert "concurrently" in str(exc_info.value)
        refreshed = await ledger.get_levels(submitted.request_id)
        assert refreshed[0].approved_by == L1_APPROVER

    async def test_activity_written(self, session, ledger, submitted):
        await approve(ledger, submitted.request_id, 1, L1_APPROVER)
        await session.commit()

        actions = (
            await session.execute(
                select(ActivityLog.action_type).where(ActivityLog.request_id == submitted.request_id)
            )
        ).scalars().all()
        assert "approved" in actions


class TestReject:
    async def test_rejection_is_terminal(self, ledger, submitted):
        await approve(ledger, submitted.request_id, 1, L1_APPROVER)
        outcome = await ledger.reject(submitted.request_id, 2, actor_id=L2_APPROVER, reason="Over budget")

        assert outcome.level.status == "rejected"
        assert outcome.level.approval_notes == "Over budget"
        assert outcome.request.overall_status == "rejected"

        with pytest.raises(InvalidTransitionError):
            await approve(ledger, submitted.request_id, 3, L3_APPROVER)
        with pytest.raises(InvalidTransitionError):
            await ledger.reject(submitted.request_id, 3, actor_id=L3_APPROVER, reason="again")

    async def test_reject_decided_level(self, ledger, submitted):
        await approve(ledger, submitted.request_id, 1, L1_APPROVER)

        with pytest.raises(InvalidTransitionError):
            await ledger.reject(submitted.request_id, 1, actor_id=L1_APPROVER, reason="changed mind")


class TestCompletePayment:
    async def test_requires_payroll_approval(self, ledger, submitted):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await ledger.complete_payment(submitted.request_id, actor_id="payroll-1")

        assert "payroll approval" in str(exc_info.value)

    async def test_completes_request(self, ledger, submitted):
        for level, actor in ((1, L1_APPROVER), (2, L2_APPROVER), (3, L3_APPROVER)):
            await approve(ledger, submitted.request_id, level, actor)
        await approve(
            ledger,
            submitted.request_id,
            4,
            "payroll-1",
            payroll_cycle="2025-06-A",
            payroll_cycle_date=date(2025, 6, 15),
        )

        outcome = await ledger.complete_payment(submitted.request_id, actor_id="payroll-1", notes="Paid")

        assert outcome.level.status == "completed"
        assert outcome.level.completion_notes == "Paid"
        assert outcome.request.overall_status == "completed"
        assert outcome.request.completed_date is not None

        with pytest.raises(InvalidTransitionError):
            await ledger.complete_payment(submitted.request_id, actor_id="payroll-1")


class TestApproverSnapshot:
    def test_matches_case_insensitively(self):
        snapshot = ApproverSnapshot(1, "User-A", "user-e")

        assert snapshot.matches("user-a") is True
        assert snapshot.matches(" USER-E ") is True
        assert snapshot.matches("user-b") is False
        assert snapshot.matches(None) is False

    def test_missing_backup(self):
        assert ApproverSnapshot(1, "user-a", None).matches("none") is False


async def test_levels_are_unique_per_request(session, ledger, submitted):
    count = len(
        (
            await session.execute(
                select(ApprovalLevel).where(ApprovalLevel.request_id == submitted.request_id)
            )
        ).scalars().all()
    )
    assert count == 4
