"""Workflow orchestrator for approval requests.

Sequences the four decision operations:

    submit:           approvers configured → location gate → tenure gate
                      → net amount → SUBMITTED → initialize ledger
                      → auto-approval → notify (plus the payroll hand-off
                      when self-approval closed the approver chain)
    approve(level):   ledger.approve → notify (payroll hand-off after the
                      last approver level)
    reject(level):    ledger.reject → REJECTED → notify
    complete payment: ledger.complete_payment → COMPLETED → notify

The core mutation of each operation is committed before notifications
are dispatched. Notification and event delivery failures end up in
``warnings`` and never change the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.config import Settings, get_settings
from approval_engine.events import AsyncEventEmitter, RequestAction, RequestUpdated
from approval_engine.models import (
    ApprovalRequest,
    BudgetApprover,
    BudgetConfig,
    BudgetStatus,
    LineItem,
)
from approval_engine.notify.base import NotifyService
from approval_engine.services.activity import ActivityRecorder
from approval_engine.services.auto_approval import AutoApprovalResolver
from approval_engine.services.errors import (
    CollaboratorFailure,
    NotFoundError,
    ValidationError,
    WorkflowError,
    require_fields,
)
from approval_engine.services.ledger import ApprovalLedger
from approval_engine.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    describe_report,
)
from approval_engine.services.request_service import coerce_date
from approval_engine.services.scope import ScopeValidator
from approval_engine.services.stage import approver_levels_approved, compute_stage
from approval_engine.services.state_machine import (
    PAYROLL_LEVEL,
    RequestStateMachine,
    RequestStatus,
    level_name,
)

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    """Uniform envelope returned by every workflow operation."""

    success: bool
    data: Any = None
    error: str | dict[str, Any] | None = None
    message: str | None = None
    error_code: str | None = None
    auto_approved: bool | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, exc: WorkflowError) -> WorkflowResult:
        return cls(success=False, error=exc.public_error, message=exc.message, error_code=exc.code)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success}
        if self.success:
            body["data"] = self.data
        else:
            body["error"] = self.error
            body["error_code"] = self.error_code
        if self.message:
            body["message"] = self.message
        if self.auto_approved is not None:
            body["autoApproved"] = self.auto_approved
        if self.warnings:
            body["warnings"] = list(self.warnings)
        return body


def _coerce_level(level: Any) -> int:
    try:
        return int(level)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid approval level: {level!r}",
            details={"approval_level": "approval_level must be an integer"},
        ) from None


class WorkflowOrchestrator:
    """Drives a request from draft through approval to payment."""

    def __init__(
        self,
        session: AsyncSession,
        notify: NotifyService,
        emitter: AsyncEventEmitter | None = None,
        settings: Settings | None = None,
        scope: ScopeValidator | None = None,
    ):
        settings = settings or get_settings()
        self.session = session
        self.emitter = emitter
        self.activity = ActivityRecorder(session)
        self.scope = scope or ScopeValidator(session)
        self.ledger = ApprovalLedger(session, self.activity)
        self.resolver = AutoApprovalResolver(self.ledger)
        self.dispatcher = NotificationDispatcher(
            session,
            notify,
            app_base_url=settings.app_base_url,
            payroll_role_keyword=settings.payroll_role_keyword,
        )

    async def submit_approval_request(self, request_id: str, submitted_by: str) -> WorkflowResult:
        return await self._run("submit", self._submit, request_id, submitted_by)

    async def approve_request_at_level(
        self,
        request_id: str,
        level: Any,
        approval_data: dict[str, Any],
    ) -> WorkflowResult:
        return await self._run("approve", self._approve, request_id, level, approval_data)

    async def reject_request_at_level(
        self,
        request_id: str,
        level: Any,
        rejection_data: dict[str, Any],
    ) -> WorkflowResult:
        return await self._run("reject", self._reject, request_id, level, rejection_data)

    async def complete_payroll_payment(
        self,
        request_id: str,
        completion_data: dict[str, Any],
    ) -> WorkflowResult:
        return await self._run("complete payment", self._complete, request_id, completion_data)

    async def _run(
        self,
        operation: str,
        fn: Callable[..., Awaitable[WorkflowResult]],
        *args: Any,
    ) -> WorkflowResult:
        try:
            return await fn(*args)
        except WorkflowError as exc:
            await self.session.rollback()
            logger.info("%s rejected: %s", operation, exc.message)
            return WorkflowResult.failure(exc)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception("%s failed on the row store", operation)
            return WorkflowResult.failure(CollaboratorFailure(operation, exc))

    async def _submit(self, request_id: str, submitted_by: str) -> WorkflowResult:
        require_fields({"submitted_by": submitted_by}, "submitted_by")

        request = await self.session.get(ApprovalRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Approval request", request_id)
        RequestStateMachine.validate_transition(request.overall_status, RequestStatus.SUBMITTED.value)

        budget = await self.session.get(BudgetConfig, request.budget_id)
        if budget is None:
            raise NotFoundError("Budget configuration", request.budget_id)
        budget_status = budget.status_on(self.scope.as_of)
        if budget_status != BudgetStatus.ACTIVE:
            raise ValidationError(f"Budget {budget.budget_name} is {budget_status}")
        approver_count = await self.session.scalar(
            select(func.count())
            .select_from(BudgetApprover)
            .where(BudgetApprover.budget_id == budget.budget_id)
        )
        if not approver_count:
            raise ValidationError(f"Budget {budget.budget_name} has no approvers configured")

        result = await self.session.execute(
            select(LineItem).where(LineItem.request_id == request_id)
        )
        items = list(result.scalars().all())
        if not items:
            raise ValidationError("Cannot submit a request without line items")

        for verdict in (
            await self.scope.validate_location_scope(request_id),
            await self.scope.validate_tenure_scope(request_id),
        ):
            if not verdict.valid:
                raise ValidationError(verdict.reason or "Scope validation failed")

        now = datetime.now(timezone.utc)
        request.total_request_amount = sum((i.signed_amount for i in items), Decimal("0"))
        request.employee_count = len({i.employee_id for i in items})
        request.overall_status = RequestStatus.SUBMITTED.value
        request.submission_status = RequestStatus.SUBMITTED.value
        request.submitted_by = submitted_by
        request.submitted_date = now
        request.updated_by = submitted_by
        request.updated_at = now
        self.activity.record(
            request_id,
            "submitted",
            submitted_by,
            f"Request {request.request_number} submitted for approval",
            details={"total_request_amount": str(request.total_request_amount)},
        )
        await self.session.commit()
        logger.info("Submitted request %s by %s", request.request_number, submitted_by)

        await self.ledger.initialize(request_id)
        auto_approved = await self.resolver.resolve(request_id, submitted_by)
        handoff_level = None
        if auto_approved:
            levels = await self.ledger.get_levels(request_id)
            if approver_levels_approved(levels):
                handoff_level = max(
                    r.approval_level for r in levels if r.approval_level != PAYROLL_LEVEL
                )

        warnings = await self._after_commit(
            NotificationEvent.SUBMITTED,
            RequestUpdated(
                RequestAction.SUBMITTED,
                request_id,
                payload={"auto_approved": auto_approved},
            ),
            submitted_by,
        )
        if handoff_level is not None:
            # Self-approval closed the approver chain; hand off to payroll
            warnings += await self._after_commit(
                NotificationEvent.APPROVED,
                RequestUpdated(
                    RequestAction.APPROVED,
                    request_id,
                    approval_level=handoff_level,
                    payload={"approver_levels_complete": True},
                ),
                submitted_by,
                level=handoff_level,
            )
        message = (
            "Approval request submitted and auto-approved at L1 (self-request)"
            if auto_approved
            else "Approval request submitted successfully"
        )
        return WorkflowResult(
            success=True,
            data=await self._snapshot(request_id),
            message=message,
            auto_approved=auto_approved,
            warnings=warnings,
        )

    async def _approve(self, request_id: str, level: Any, data: dict[str, Any]) -> WorkflowResult:
        level = _coerce_level(level)
        require_fields(data, "approved_by")

        cycle_date = None
        if level == PAYROLL_LEVEL:
            require_fields(data, "payroll_cycle", "payroll_cycle_date")
            cycle_date = coerce_date(data["payroll_cycle_date"])
            if cycle_date is None:
                raise ValidationError(
                    f"Invalid payroll_cycle_date: {data['payroll_cycle_date']!r}",
                    details={"payroll_cycle_date": "payroll_cycle_date must be an ISO date"},
                )

        outcome = await self.ledger.approve(
            request_id,
            level,
            actor_id=data["approved_by"],
            approver_name=data.get("approver_name"),
            approver_title=data.get("approver_title"),
            notes=data.get("approval_notes"),
            conditions=data.get("conditions_applied"),
            payroll_cycle=data.get("payroll_cycle") if level == PAYROLL_LEVEL else None,
            payroll_cycle_date=cycle_date,
        )
        await self.session.commit()
        logger.info(
            "Request %s approved at %s by %s",
            request_id,
            level_name(level),
            data["approved_by"],
        )

        warnings = await self._after_commit(
            NotificationEvent.APPROVED,
            RequestUpdated(
                RequestAction.APPROVED,
                request_id,
                approval_level=level,
                payload={"approver_levels_complete": outcome.approver_levels_complete},
            ),
            data["approved_by"],
            level=level,
        )
        return WorkflowResult(
            success=True,
            data=await self._snapshot(request_id),
            message=f"Request approved at level {level}",
            warnings=warnings,
        )

    async def _reject(self, request_id: str, level: Any, data: dict[str, Any]) -> WorkflowResult:
        level = _coerce_level(level)
        require_fields(data, "rejected_by", "rejection_reason")

        await self.ledger.reject(
            request_id,
            level,
            actor_id=data["rejected_by"],
            reason=data["rejection_reason"],
            approver_name=data.get("approver_name"),
        )
        await self.session.commit()
        logger.info("Request %s rejected at %s", request_id, level_name(level))

        warnings = await self._after_commit(
            NotificationEvent.REJECTED,
            RequestUpdated(RequestAction.REJECTED, request_id, approval_level=level),
            data["rejected_by"],
            level=level,
            notes=data["rejection_reason"],
        )
        return WorkflowResult(
            success=True,
            data=await self._snapshot(request_id),
            message=f"Request rejected at level {level}",
            warnings=warnings,
        )

    async def _complete(self, request_id: str, data: dict[str, Any]) -> WorkflowResult:
        require_fields(data, "completed_by")
        notes = data.get("completion_notes") or data.get("notes")

        await self.ledger.complete_payment(
            request_id,
            actor_id=data["completed_by"],
            approver_name=data.get("approver_name"),
            notes=notes,
        )
        await self.session.commit()
        logger.info("Payment completed for request %s", request_id)

        warnings = await self._after_commit(
            NotificationEvent.COMPLETED,
            RequestUpdated(
                RequestAction.PAYMENT_COMPLETED,
                request_id,
                approval_level=PAYROLL_LEVEL,
            ),
            data["completed_by"],
            notes=notes,
        )
        return WorkflowResult(
            success=True,
            data=await self._snapshot(request_id),
            message="Payroll payment completed",
            warnings=warnings,
        )

    async def _after_commit(
        self,
        event: str,
        update: RequestUpdated,
        actor_id: str,
        *,
        level: int | None = None,
        notes: str | None = None,
    ) -> list[str]:
        """Notify and broadcast; failures become warnings."""
        report = await self.dispatcher.notify_event(
            event,
            update.request_id,
            actor_id,
            level=level,
            notes=notes,
        )
        logger.debug("Notification dispatch for %s: %s", update.request_id, describe_report(report))
        warnings = list(report.warnings)
        if self.emitter is not None:
            errors = await self.emitter.emit(update)
            warnings.extend(f"Realtime listener failed: {e}" for e in errors)
        return warnings

    async def _snapshot(self, request_id: str) -> dict[str, Any]:
        request = await self.session.get(ApprovalRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Approval request", request_id)
        levels = await self.ledger.get_levels(request_id)
        data = request.to_dict()
        data["approvals"] = [r.to_dict() for r in levels]
        data["stage"] = compute_stage(levels, request.overall_status).value
        return data
