"""Budget configuration and approver chain management."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.models import (
    ApprovalLevel,
    ApprovalRequest,
    BudgetApprover,
    BudgetConfig,
)
from approval_engine.services.errors import NotFoundError, ValidationError, require_fields
from approval_engine.services.scope import parse_scope_list
from approval_engine.services.state_machine import APPROVER_LEVELS, LevelStatus

logger = logging.getLogger(__name__)

SCOPE_FIELDS = ("geo", "location", "client", "access_ou", "affected_ou", "tenure_group")
LIMIT_FIELDS = ("min_limit", "max_limit", "budget_limit")


def encode_scope(value: Any) -> str | None:
    """Store lists as JSON arrays; strings are kept in whatever encoding they came in."""
    if value is None:
        return None
    if isinstance(value, (list, tuple, set)):
        return json.dumps([str(v) for v in value])
    return str(value)


def _limit(name: str, value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(
            f"Invalid {name}: {value!r}",
            details={name: f"{name} must be a number"},
        ) from None


def _date(name: str, value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(
            f"Invalid {name}: {value!r}",
            details={name: f"{name} must be an ISO date"},
        ) from None


class BudgetConfigService:
    """Create, update and deactivate budget configurations.

    Approvers are upserted by level: one row per (budget, level), levels
    1 to 3 only. Level 4 is the fixed payroll step and is never configured.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_budget(self, data: dict[str, Any]) -> BudgetConfig:
        require_fields(data, "budget_name", "created_by")

        budget = BudgetConfig(
            budget_name=data["budget_name"].strip(),
            currency=data.get("currency") or "USD",
            pay_cycle=data.get("pay_cycle") or "SEMI_MONTHLY",
            budget_control=bool(data.get("budget_control", False)),
            created_by=data["created_by"],
            is_active=True,
        )
        self._apply(budget, data)
        self.session.add(budget)
        await self.session.flush()

        for approver in data.get("approvers") or []:
            await self.upsert_approver(
                budget.budget_id,
                approver.get("approval_level"),
                approver.get("primary_approver"),
                approver.get("backup_approver"),
            )

        logger.info("Created budget %s (%s)", budget.budget_name, budget.budget_id)
        return budget

    async def upsert_approver(
        self,
        budget_id: str,
        level: int | None,
        primary: str | None,
        backup: str | None = None,
    ) -> BudgetApprover:
        if level not in APPROVER_LEVELS:
            raise ValidationError(
                f"Approver level must be one of {list(APPROVER_LEVELS)}",
                details={"approval_level": f"invalid level {level!r}"},
            )
        if not primary:
            raise ValidationError(
                "primary_approver is required",
                details={"primary_approver": "primary_approver is required"},
            )
        await self._get_budget(budget_id)

        approver = await self.session.scalar(
            select(BudgetApprover).where(
                BudgetApprover.budget_id == budget_id,
                BudgetApprover.approval_level == level,
            )
        )
        if approver is None:
            approver = BudgetApprover(budget_id=budget_id, approval_level=level)
            self.session.add(approver)
        approver.primary_approver = primary
        approver.backup_approver = backup or None
        await self.session.flush()
        return approver

    async def get_budget(self, budget_id: str) -> dict[str, Any]:
        """Budget row with approvers and derived status."""
        budget = await self._get_budget(budget_id)
        result = await self.session.execute(
            select(BudgetApprover)
            .where(BudgetApprover.budget_id == budget_id)
            .order_by(BudgetApprover.approval_level)
        )
        data = budget.to_dict()
        data["approvers"] = [a.to_dict() for a in result.scalars().all()]
        data["status"] = budget.status_on(date.today())
        for name in SCOPE_FIELDS:
            data[f"{name}_list"] = parse_scope_list(getattr(budget, name))
        return data

    async def update_budget(self, budget_id: str, data: dict[str, Any]) -> BudgetConfig:
        budget = await self._get_budget(budget_id)

        if "start_date" in data:
            new_start = _date("start_date", data["start_date"])
            if new_start != budget.start_date and await self._has_decisions(budget_id):
                raise ValidationError(
                    "start_date cannot change once an approval decision exists",
                    details={"start_date": "locked by existing approval decisions"},
                )

        if data.get("budget_name") is not None:
            budget.budget_name = str(data["budget_name"]).strip()
        if "budget_control" in data:
            budget.budget_control = bool(data["budget_control"])
        self._apply(budget, data)
        budget.updated_at = datetime.now(timezone.utc)

        for approver in data.get("approvers") or []:
            await self.upsert_approver(
                budget_id,
                approver.get("approval_level"),
                approver.get("primary_approver"),
                approver.get("backup_approver"),
            )
        await self.session.flush()
        return budget

    async def deactivate_budget(self, budget_id: str) -> BudgetConfig:
        budget = await self._get_budget(budget_id)
        budget.is_active = False
        budget.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        logger.info("Deactivated budget %s", budget_id)
        return budget

    async def list_budget_ids_for_org(self, org_id: str) -> list[str]:
        """Budgets whose access or affected OU scope names the org."""
        key = org_id.strip().lower()
        result = await self.session.execute(
            select(BudgetConfig.budget_id, BudgetConfig.access_ou, BudgetConfig.affected_ou)
        )
        return [
            budget_id
            for budget_id, access_ou, affected_ou in result.all()
            if key in parse_scope_list(access_ou) or key in parse_scope_list(affected_ou)
        ]

    async def _get_budget(self, budget_id: str) -> BudgetConfig:
        budget = await self.session.get(BudgetConfig, budget_id)
        if budget is None:
            raise NotFoundError("Budget configuration", budget_id)
        return budget

    async def _has_decisions(self, budget_id: str) -> bool:
        count = await self.session.scalar(
            select(func.count(ApprovalLevel.approval_id))
            .join(ApprovalRequest, ApprovalRequest.request_id == ApprovalLevel.request_id)
            .where(
                ApprovalRequest.budget_id == budget_id,
                ApprovalLevel.status != LevelStatus.PENDING.value,
            )
        )
        return bool(count)

    @staticmethod
    def _apply(budget: BudgetConfig, data: dict[str, Any]) -> None:
        for name in LIMIT_FIELDS:
            if name in data:
                setattr(budget, name, _limit(name, data[name]))
        for name in ("start_date", "end_date"):
            if name in data:
                setattr(budget, name, _date(name, data[name]))
        for name in SCOPE_FIELDS:
            if name in data:
                setattr(budget, name, encode_scope(data[name]))

        if (
            budget.min_limit is not None
            and budget.max_limit is not None
            and budget.min_limit > budget.max_limit
        ):
            raise ValidationError(
                "min_limit cannot exceed max_limit",
                details={"min_limit": "must not exceed max_limit"},
            )
        if budget.start_date and budget.end_date and budget.end_date < budget.start_date:
            raise ValidationError(
                "end_date cannot precede start_date",
                details={"end_date": "must not precede start_date"},
            )
