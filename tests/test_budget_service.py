"""Tests for budget configuration and approver upserts."""

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from approval_engine.models import BudgetApprover
from approval_engine.services.budget_service import BudgetConfigService, encode_scope
from approval_engine.services.errors import NotFoundError, ValidationError
from approval_engine.services.ledger import ApprovalLedger

from .conftest import BUDGET_OWNER, L1_APPROVER, L2_APPROVER, L3_APPROVER, OUTSIDER


@pytest.fixture
def budgets(session) -> BudgetConfigService:
    return BudgetConfigService(session)


def budget_payload(**overrides) -> dict:
    data = {
        "budget_name": "  Q3 Incentives ",
        "created_by": BUDGET_OWNER,
        "currency": "PHP",
        "min_limit": "100",
        "max_limit": "5000",
        "start_date": "2025-07-01",
        "location": ["Manila", "Cebu"],
        "tenure_group": "1-2years, 2-5years",
        "access_ou": ["org-root"],
        "approvers": [
            {"approval_level": 1, "primary_approver": L1_APPROVER},
            {"approval_level": 2, "primary_approver": L2_APPROVER},
            {"approval_level": 3, "primary_approver": L3_APPROVER},
        ],
    }
    data.update(overrides)
    return data


async def approver_count(session, budget_id: str) -> int:
    return await session.scalar(
        select(func.count()).select_from(BudgetApprover).where(BudgetApprover.budget_id == budget_id)
    )


class TestEncodeScope:
    def test_lists_become_json(self):
        assert encode_scope(["Manila", "Cebu"]) == '["Manila", "Cebu"]'

    def test_strings_kept(self):
        assert encode_scope("Manila, Cebu") == "Manila, Cebu"
        assert encode_scope(None) is None


class TestCreateBudget:
    async def test_create_with_approvers(self, session, budgets, directory):
        budget = await budgets.create_budget(budget_payload())
        await session.commit()

        data = await budgets.get_budget(budget.budget_id)
        assert data["budget_name"] == "Q3 Incentives"
        assert data["currency"] == "PHP"
        assert data["status"] == "active"
        assert data["location_list"] == ["manila", "cebu"]
        assert data["tenure_group_list"] == ["1-2years", "2-5years"]
        assert [a["approval_level"] for a in data["approvers"]] == [1, 2, 3]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"min_limit": "900", "max_limit": "100"},
            {"start_date": "2025-07-01", "end_date": "2025-06-01"},
            {"max_limit": "lots"},
            {"start_date": "July"},
            {"budget_name": ""},
        ],
    )
    async def test_invalid_input(self, budgets, directory, overrides):
        with pytest.raises(ValidationError):
            await budgets.create_budget(budget_payload(approvers=[], **overrides))

    async def test_list_budget_ids_for_org(self, session, budgets, directory):
        scoped = await budgets.create_budget(budget_payload())
        await budgets.create_budget(budget_payload(access_ou=None, affected_ou="org-other"))
        await session.commit()

        assert await budgets.list_budget_ids_for_org("ORG-ROOT") == [scoped.budget_id]


class TestApprovers:
    async def test_upsert_replaces_level(self, session, budgets, budget):
        await budgets.upsert_approver(budget.budget_id, 2, OUTSIDER, L3_APPROVER)
        await session.commit()

        data = await budgets.get_budget(budget.budget_id)
        level_two = [a for a in data["approvers"] if a["approval_level"] == 2]
        assert len(level_two) == 1
        assert level_two[0]["primary_approver"] == OUTSIDER
        assert level_two[0]["backup_approver"] == L3_APPROVER
        assert await approver_count(session, budget.budget_id) == 3

    @pytest.mark.parametrize("level", [0, 4, None])
    async def test_only_levels_one_to_three(self, budgets, budget, level):
        with pytest.raises(ValidationError):
            await budgets.upsert_approver(budget.budget_id, level, L1_APPROVER)

    async def test_primary_required(self, budgets, budget):
        with pytest.raises(ValidationError):
            await budgets.upsert_approver(budget.budget_id, 1, "")

    async def test_unknown_budget(self, budgets, directory):
        with pytest.raises(NotFoundError):
            await budgets.upsert_approver("missing", 1, L1_APPROVER)


class TestUpdateBudget:
    async def test_update_fields(self, session, budgets, budget):
        await budgets.update_budget(
            budget.budget_id,
            {"budget_name": "Renamed", "location": ["Davao"], "max_limit": 2500},
        )
        await session.commit()

        data = await budgets.get_budget(budget.budget_id)
        assert data["budget_name"] == "Renamed"
        assert data["location_list"] == ["davao"]
        assert data["updated_at"] is not None

    async def test_start_date_locked_after_decision(self, session, budgets, budget, make_request):
        request = await make_request()
        request.overall_status = "submitted"
        await session.commit()
        ledger = ApprovalLedger(session)
        await ledger.initialize(request.request_id)
        await ledger.approve(request.request_id, 1, actor_id=L1_APPROVER)
        await session.commit()

        with pytest.raises(ValidationError):
            await budgets.update_budget(budget.budget_id, {"start_date": date.today() - timedelta(days=1)})

        # Other fields stay editable
        await budgets.update_budget(budget.budget_id, {"budget_name": "Still editable"})

    async def test_start_date_editable_without_decisions(self, session, budgets, budget, make_request):
        await make_request()
        new_start = date.today() - timedelta(days=5)

        updated = await budgets.update_budget(budget.budget_id, {"start_date": new_start.isoformat()})

        assert updated.start_date == new_start


class TestDeactivate:
    async def test_deactivated_budget_status(self, session, budgets, budget):
        await budgets.deactivate_budget(budget.budget_id)
        await session.commit()

        assert (await budgets.get_budget(budget.budget_id))["status"] == "deactivated"

    async def test_unknown(self, budgets, directory):
        with pytest.raises(NotFoundError):
            await budgets.deactivate_budget("missing")
