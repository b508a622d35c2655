"""Notification dispatcher: scoped in-app rows plus outbound email.

Recipients are scoped to the submitter's organizational tree. Candidates
are the submitter, the request creator, the budget creator and every
configured approver; only those whose org root equals the submitter's
org root are kept. The acting user is always included.

Dispatch is best-effort. Nothing here raises into the workflow: row
insert failures are rolled back on their own and logged, and email
failures are counted and reported as warnings.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.models import (
    ApprovalLevel,
    ApprovalRequest,
    BudgetApprover,
    BudgetConfig,
    Notification,
)
from approval_engine.notify.base import NotifyService, SendResult
from approval_engine.services.directory import Profile, UserDirectory, user_key
from approval_engine.services.stage import approver_levels_approved
from approval_engine.services.state_machine import PAYROLL_LEVEL, level_name

logger = logging.getLogger(__name__)


class NotificationEvent:
    """Notification types written to ``approval_notification``."""

    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    PAYROLL_ACTION_REQUIRED = "payroll_action_required"


@dataclass
class DispatchReport:
    """What a dispatch managed to do."""

    event: str
    recipients: list[str] = field(default_factory=list)
    notifications_created: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    payroll_recipients: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Message:
    notification_type: str
    title: str
    body: str
    level: int | None = None


def _format_amount(amount: Decimal | None, currency: str | None) -> str:
    return f"{(amount or Decimal('0')):,.2f} {currency or ''}".strip()


def _actor_label(profile: Profile | None, fallback: str | None) -> str:
    if profile is None:
        return fallback or "Someone"
    return f"{profile.name} ({profile.primary_role or 'User'})"


class NotificationDispatcher:
    """Fans out notifications for workflow milestones."""

    def __init__(
        self,
        session: AsyncSession,
        notify: NotifyService,
        *,
        app_base_url: str = "",
        payroll_role_keyword: str = "payroll",
        directory: UserDirectory | None = None,
    ):
        self.session = session
        self.notify = notify
        self.app_base_url = app_base_url.rstrip("/")
        self.payroll_role_keyword = payroll_role_keyword
        self.directory = directory or UserDirectory(session)

    async def notify_event(
        self,
        event: str,
        request_id: str,
        actor_id: str | None = None,
        *,
        level: int | None = None,
        notes: str | None = None,
    ) -> DispatchReport:
        """Dispatch one milestone. Never raises."""
        report = DispatchReport(event=event)
        try:
            await self._dispatch(report, event, request_id, actor_id, level, notes)
        except Exception as exc:
            logger.exception("Notification dispatch failed for %s on %s", event, request_id)
            await self.session.rollback()
            report.warnings.append(f"Notification dispatch failed: {exc}")
        return report

    async def scoped_recipients(
        self,
        request: ApprovalRequest,
        budget: BudgetConfig,
        actor_id: str | None,
    ) -> tuple[list[Profile], str | None]:
        """Candidates sharing the submitter's org root, plus the actor."""
        result = await self.session.execute(
            select(BudgetApprover).where(BudgetApprover.budget_id == budget.budget_id)
        )
        candidates: list[str] = [
            u
            for u in (request.submitted_by, request.created_by, budget.created_by)
            if u
        ]
        for approver in result.scalars().all():
            candidates.extend(a for a in (approver.primary_approver, approver.backup_approver) if a)

        profiles = await self.directory.resolve_profiles([*candidates, actor_id])
        submitter = profiles.get(user_key(request.submitted_by or request.created_by))
        submitter_root = await self.directory.resolve_org_root(submitter.org_id) if submitter else None

        scoped: dict[str, Profile] = {}
        if submitter_root is not None:
            for candidate in candidates:
                key = user_key(candidate)
                profile = profiles.get(key)
                if profile is None or key in scoped:
                    continue
                if await self.directory.resolve_org_root(profile.org_id) == submitter_root:
                    scoped[key] = profile

        actor = profiles.get(user_key(actor_id))
        if actor is not None:
            scoped.setdefault(user_key(actor_id), actor)
        return list(scoped.values()), submitter_root

    async def payroll_recipients(self, submitter_root: str | None) -> list[Profile]:
        """Payroll-role users under the submitter's org root."""
        if submitter_root is None:
            return []
        users = await self.directory.find_users_by_role(self.payroll_role_keyword)
        return [
            u for u in users
            if await self.directory.resolve_org_root(u.org_id) == submitter_root
        ]

    async def _dispatch(
        self,
        report: DispatchReport,
        event: str,
        request_id: str,
        actor_id: str | None,
        level: int | None,
        notes: str | None,
    ) -> None:
        request = await self.session.get(ApprovalRequest, request_id)
        if request is None:
            report.warnings.append(f"Request {request_id} no longer exists")
            return
        budget = await self.session.get(BudgetConfig, request.budget_id)
        if budget is None:
            report.warnings.append(f"Budget {request.budget_id} no longer exists")
            return

        # Everything is read before the first commit; a failed insert
        # rolls back and expires the loaded rows.
        recipients, submitter_root = await self.scoped_recipients(request, budget, actor_id)
        actor = next((p for p in recipients if user_key(p.user_id) == user_key(actor_id)), None)
        message = self._build_message(event, request, budget, actor, actor_id, level, notes)

        payroll_users: list[Profile] = []
        handoff: _Message | None = None
        if event == NotificationEvent.APPROVED and level is not None:
            if await self._is_payroll_handoff(request_id, level):
                payroll_users = await self.payroll_recipients(submitter_root)
                handoff = self._payroll_message(request, budget)

        number = request.request_number
        report.recipients = [p.user_id for p in recipients]
        await self._deliver(report, request_id, number, message, recipients)

        if handoff is not None:
            report.payroll_recipients = [p.user_id for p in payroll_users]
            await self._deliver(report, request_id, number, handoff, payroll_users)
            logger.info("Payroll hand-off for %s sent to %d user(s)", number, len(payroll_users))

    async def _is_payroll_handoff(self, request_id: str, level: int) -> bool:
        if level == PAYROLL_LEVEL:
            return False
        result = await self.session.execute(
            select(ApprovalLevel).where(ApprovalLevel.request_id == request_id)
        )
        levels = list(result.scalars().all())
        approver_levels = [r.approval_level for r in levels if r.approval_level != PAYROLL_LEVEL]
        if not approver_levels or level != max(approver_levels):
            return False
        return approver_levels_approved(levels)

    def _build_message(
        self,
        event: str,
        request: ApprovalRequest,
        budget: BudgetConfig,
        actor: Profile | None,
        actor_id: str | None,
        level: int | None,
        notes: str | None,
    ) -> _Message:
        who = _actor_label(actor, actor_id)
        number = request.request_number
        amount = _format_amount(request.total_request_amount, budget.currency)

        if event == NotificationEvent.SUBMITTED:
            return _Message(
                event,
                "New Approval Request Submitted",
                f"{who} has submitted approval request {number} against "
                f"{budget.budget_name} for {amount}.",
            )
        if event == NotificationEvent.APPROVED:
            body = f"{who} has approved request {number} at level {level_name(level or 0)}."
            if level == PAYROLL_LEVEL and request.payroll_cycle:
                body += f" Payroll cycle: {request.payroll_cycle}"
                if request.payroll_cycle_date:
                    body += f" ({request.payroll_cycle_date.isoformat()})"
                body += "."
            return _Message(event, f"Request Approved at {level_name(level or 0)}", body, level)
        if event == NotificationEvent.REJECTED:
            body = f"{who} has rejected request {number} at level {level_name(level or 0)}."
            if notes:
                body += f" Reason: {notes}"
            return _Message(event, "Request Rejected", body, level)
        if event == NotificationEvent.COMPLETED:
            body = f"Payment for request {number} ({amount}) has been completed by {who}."
            if notes:
                body += f" Notes: {notes}"
            return _Message(event, "Payment Completed", body, PAYROLL_LEVEL)
        raise ValueError(f"Unknown notification event: {event}")

    def _payroll_message(self, request: ApprovalRequest, budget: BudgetConfig) -> _Message:
        return _Message(
            NotificationEvent.PAYROLL_ACTION_REQUIRED,
            "Payroll Action Required",
            f"Request {request.request_number} against {budget.budget_name} "
            f"({_format_amount(request.total_request_amount, budget.currency)}) "
            "has been approved at all levels and is ready for payroll processing.",
            PAYROLL_LEVEL,
        )

    async def _deliver(
        self,
        report: DispatchReport,
        request_id: str,
        request_number: str,
        message: _Message,
        recipients: list[Profile],
    ) -> None:
        if not recipients:
            return

        rows = [
            Notification(
                request_id=request_id,
                recipient_id=p.user_id,
                notification_type=message.notification_type,
                title=message.title,
                message=message.body,
                related_approval_level=message.level,
            )
            for p in recipients
        ]
        self.session.add_all(rows)
        try:
            await self.session.commit()
            report.notifications_created += len(rows)
        except Exception as exc:
            await self.session.rollback()
            logger.warning("Could not store %s notifications: %s", message.notification_type, exc)
            report.warnings.append(f"Notification rows not stored: {exc}")

        addressed = [p for p in recipients if p.email]
        if not addressed:
            return
        html_body = self._render_html(request_id, request_number, message)
        results = await asyncio.gather(
            *(self.notify.send(p.email, message.title, html_body, message.body) for p in addressed),
            return_exceptions=True,
        )
        failed = 0
        for profile, result in zip(addressed, results):
            if isinstance(result, SendResult) and result.success:
                report.emails_sent += 1
                continue
            failed += 1
            reason = result.error if isinstance(result, SendResult) else repr(result)
            logger.warning("Email to %s failed: %s", profile.email, reason)
        if failed:
            report.emails_failed += failed
            report.warnings.append(f"{failed} {message.notification_type} email(s) failed to send")

    def _render_html(self, request_id: str, request_number: str, message: _Message) -> str:
        link = f"{self.app_base_url}/approval-requests/{request_id}"
        return (
            f"<h2>{html.escape(message.title)}</h2>"
            f"<p>{html.escape(message.body)}</p>"
            f'<p><a href="{html.escape(link)}">View request {html.escape(request_number)}</a></p>'
        )


def describe_report(report: DispatchReport) -> dict[str, Any]:
    """Compact form for activity details and logs."""
    return {
        "event": report.event,
        "recipients": len(report.recipients),
        "notifications_created": report.notifications_created,
        "emails_sent": report.emails_sent,
        "emails_failed": report.emails_failed,
        "payroll_recipients": len(report.payroll_recipients),
    }
