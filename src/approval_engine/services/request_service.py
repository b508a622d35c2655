"""Approval request lifecycle outside the decision path.

Creation, draft edits, line items, attachments, reads with the derived
stage, listing, pending approvals per user and deletion. Decisions
(submit, approve, reject, complete payment) live in the workflow
orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.events import AsyncEventEmitter, RequestAction, RequestUpdated
from approval_engine.models import (
    ActivityLog,
    ApprovalLevel,
    ApprovalRequest,
    Attachment,
    BudgetConfig,
    BudgetStatus,
    LineItem,
    Notification,
)
from approval_engine.services.activity import ActivityRecorder
from approval_engine.services.errors import NotFoundError, ValidationError, require_fields
from approval_engine.services.stage import compute_stage
from approval_engine.services.state_machine import (
    InvalidTransitionError,
    LevelStatus,
    RequestStateMachine,
    RequestStatus,
)

logger = logging.getLogger(__name__)

ITEM_TYPES = ("bonus", "incentive")
DEFAULT_ITEM_TYPE = "bonus"

_ITEM_TYPE_ALIASES: dict[str, str] = {
    "bonus": "bonus",
    "incentive": "incentive",
    "performance_bonus": "bonus",
    "performance bonus": "bonus",
    "spot_award": "bonus",
    "spot award": "bonus",
    "innovation_reward": "bonus",
    "innovation reward": "bonus",
    "recognition": "bonus",
}

# Fields a requester may edit while the request is still a draft
EDITABLE_FIELDS = (
    "description",
    "current_budget_used",
    "remaining_budget",
    "will_exceed_budget",
    "excess_amount",
)
_AMOUNT_FIELDS = ("current_budget_used", "remaining_budget", "excess_amount")

_REQUEST_NUMBER = re.compile(r"^REQ-(\d{4})-(\d+)$")


def normalize_item_type(raw: Any) -> str:
    """Map free-text item types onto the closed vocabulary; unknown is bonus."""
    if raw is None:
        return DEFAULT_ITEM_TYPE
    value = str(raw).strip().lower()
    return _ITEM_TYPE_ALIASES.get(value, DEFAULT_ITEM_TYPE)


def _coerce_amount(value: Any, field_name: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            details={field_name: f"{field_name} must be a number"},
        ) from None
    if not amount.is_finite():
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            details={field_name: f"{field_name} must be a number"},
        )
    return amount


def coerce_date(value: Any) -> date | None:
    """Accept a date, datetime or ISO string; anything unparseable is None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


class RequestNumberAllocator:
    """Issues ``REQ-<year>-<seq>`` numbers.

    The sequence continues from the highest number stored for the year.
    Allocation is serialized in-process and the last issued sequence is
    remembered, so concurrent callers never receive the same number even
    before either request is inserted. If the lookup fails the allocator
    falls back to ``REQ-<epoch millis>``.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._last_seq: dict[int, int] = {}
        self._last_fallback = 0

    async def next_number(self, session: AsyncSession, year: int | None = None) -> str:
        year = year or date.today().year
        async with self._lock:
            try:
                stored = await self._max_sequence(session, year)
            except SQLAlchemyError:
                logger.exception("Request number lookup failed; using timestamp fallback")
                return self._fallback()
            seq = max(stored, self._last_seq.get(year, 0)) + 1
            self._last_seq[year] = seq
            return f"REQ-{year}-{seq:06d}"

    async def _max_sequence(self, session: AsyncSession, year: int) -> int:
        result = await session.execute(
            select(ApprovalRequest.request_number).where(
                ApprovalRequest.request_number.like(f"REQ-{year}-%")
            )
        )
        highest = 0
        for number in result.scalars().all():
            match = _REQUEST_NUMBER.match(number or "")
            if match and int(match.group(1)) == year:
                highest = max(highest, int(match.group(2)))
        return highest

    def _fallback(self) -> str:
        millis = int(time.time() * 1000)
        if millis <= self._last_fallback:
            millis = self._last_fallback + 1
        self._last_fallback = millis
        return f"REQ-{millis}"


class RequestService:
    """Create, edit, read and delete approval requests and what they own."""

    def __init__(
        self,
        session: AsyncSession,
        allocator: RequestNumberAllocator | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.session = session
        self.allocator = allocator or RequestNumberAllocator()
        self.emitter = emitter
        self.activity = ActivityRecorder(session)

    async def create_request(
        self,
        budget_id: str,
        created_by: str,
        description: str | None = None,
        is_client_sponsored: bool = False,
    ) -> ApprovalRequest:
        """Create a draft request against an active budget."""
        require_fields({"budget_id": budget_id, "created_by": created_by}, "budget_id", "created_by")

        budget = await self.session.get(BudgetConfig, budget_id)
        if budget is None:
            raise NotFoundError("Budget configuration", budget_id)
        status = budget.status_on(date.today())
        if status != BudgetStatus.ACTIVE:
            raise ValidationError(f"Budget {budget.budget_name} is {status}")

        request = ApprovalRequest(
            request_number=await self.allocator.next_number(self.session),
            budget_id=budget_id,
            description=description,
            overall_status=RequestStatus.DRAFT.value,
            submission_status=RequestStatus.DRAFT.value,
            is_client_sponsored=is_client_sponsored,
            created_by=created_by,
        )
        self.session.add(request)
        await self.session.flush()
        self.activity.record(
            request.request_id,
            "created",
            created_by,
            f"Request {request.request_number} created",
        )
        await self.session.commit()

        logger.info("Created request %s (%s)", request.request_number, request.request_id)
        await self._emit(RequestUpdated(RequestAction.CREATED, request.request_id))
        return request

    async def update_request(
        self,
        request_id: str,
        data: dict[str, Any],
        updated_by: str | None = None,
    ) -> ApprovalRequest:
        """Edit the description and budget tracking figures of a draft.

        Status, totals and counts are owned by the workflow and are not
        editable here.
        """
        request = await self._get_request(request_id)
        if request.overall_status != RequestStatus.DRAFT:
            raise InvalidTransitionError(
                request.overall_status,
                request.overall_status,
                "only draft requests can be edited",
            )

        changes = {name: data[name] for name in EDITABLE_FIELDS if name in data}
        if not changes:
            raise ValidationError(
                f"Nothing to update; editable fields are {', '.join(EDITABLE_FIELDS)}"
            )
        for name in _AMOUNT_FIELDS:
            if changes.get(name) is not None:
                changes[name] = _coerce_amount(changes[name], name)
        if "will_exceed_budget" in changes:
            changes["will_exceed_budget"] = bool(changes["will_exceed_budget"])

        for name, value in changes.items():
            setattr(request, name, value)
        request.updated_by = updated_by
        request.updated_at = datetime.now(timezone.utc)
        self.activity.record(
            request_id,
            "updated",
            updated_by,
            f"Request {request.request_number} updated",
            details={"fields": sorted(changes)},
        )
        await self.session.commit()

        await self._emit(
            RequestUpdated(RequestAction.UPDATED, request_id, payload={"fields": sorted(changes)})
        )
        return request

    async def add_line_item(
        self,
        request_id: str,
        data: dict[str, Any],
        created_by: str | None = None,
    ) -> LineItem:
        items = await self.add_line_items_bulk(request_id, [data], created_by)
        return items[0]

    async def add_line_items_bulk(
        self,
        request_id: str,
        items: list[dict[str, Any]],
        created_by: str | None = None,
    ) -> list[LineItem]:
        """Append line items; numbering continues from the current maximum."""
        if not items:
            raise ValidationError("At least one line item is required")

        request = await self._get_request(request_id)
        if not RequestStateMachine.can_modify_line_items(request.overall_status):
            raise InvalidTransitionError(
                request.overall_status,
                request.overall_status,
                "line items can only be added while the request is draft or submitted",
            )

        for index, item in enumerate(items):
            try:
                require_fields(item, "employee_id", "amount")
            except ValidationError as exc:
                raise ValidationError(
                    f"Line item {index + 1}: {exc.message}",
                    details=exc.details,
                ) from None

        next_number = (
            await self.session.scalar(
                select(func.max(LineItem.item_number)).where(LineItem.request_id == request_id)
            )
            or 0
        ) + 1

        created: list[LineItem] = []
        for offset, item in enumerate(items):
            amount = _coerce_amount(item["amount"])
            created.append(
                LineItem(
                    request_id=request_id,
                    item_number=next_number + offset,
                    employee_id=str(item["employee_id"]).strip(),
                    employee_name=item.get("employee_name"),
                    email=item.get("email"),
                    department=item.get("department"),
                    position=item.get("position"),
                    geo=item.get("geo"),
                    location=item.get("location"),
                    hire_date=coerce_date(item.get("hire_date")),
                    termination_date=coerce_date(item.get("termination_date")),
                    employee_status=item.get("employee_status"),
                    item_type=normalize_item_type(item.get("item_type")),
                    item_description=item.get("item_description"),
                    amount=abs(amount),
                    is_deduction=bool(item.get("is_deduction")) or amount < 0,
                    has_warning=bool(item.get("has_warning")),
                    warning_reason=item.get("warning_reason"),
                    notes=item.get("notes"),
                )
            )
        self.session.add_all(created)
        await self.session.flush()

        await self._refresh_totals(request)
        request.updated_by = created_by
        request.updated_at = datetime.now(timezone.utc)
        self.activity.record(
            request_id,
            "line_item_added",
            created_by,
            f"{len(created)} line item(s) added",
            details={"item_numbers": [i.item_number for i in created]},
        )
        await self.session.commit()

        await self._emit(
            RequestUpdated(
                RequestAction.LINE_ITEMS_ADDED,
                request_id,
                payload={"count": len(created)},
            )
        )
        return created

    async def list_line_items(self, request_id: str) -> list[LineItem]:
        result = await self.session.execute(
            select(LineItem)
            .where(LineItem.request_id == request_id)
            .order_by(LineItem.item_number)
        )
        return list(result.scalars().all())

    async def add_attachment(
        self,
        request_id: str,
        data: dict[str, Any],
        uploaded_by: str | None = None,
    ) -> Attachment:
        """Record attachment metadata and bump the request's attachment count."""
        require_fields(data, "file_name", "storage_path")
        request = await self._get_request(request_id)

        size = data.get("file_size_bytes")
        if size is not None:
            try:
                size = int(size)
            except (TypeError, ValueError):
                size = -1
            if size < 0:
                raise ValidationError(
                    f"Invalid file_size_bytes: {data['file_size_bytes']!r}",
                    details={"file_size_bytes": "file_size_bytes must be a non-negative integer"},
                )

        attachment = Attachment(
            request_id=request_id,
            file_name=str(data["file_name"]).strip(),
            file_type=data.get("file_type"),
            file_size_bytes=size,
            storage_path=data["storage_path"],
            storage_provider=data.get("storage_provider"),
            file_purpose=data.get("file_purpose"),
            uploaded_by=uploaded_by,
        )
        self.session.add(attachment)
        await self.session.flush()

        request.attachment_count = (request.attachment_count or 0) + 1
        request.updated_by = uploaded_by
        request.updated_at = datetime.now(timezone.utc)
        self.activity.record(
            request_id,
            "attachment_added",
            uploaded_by,
            f"Attachment {attachment.file_name} added",
            details={"attachment_id": attachment.attachment_id},
        )
        await self.session.commit()

        logger.info("Attachment %s added to %s", attachment.file_name, request.request_number)
        await self._emit(
            RequestUpdated(
                RequestAction.ATTACHMENT_ADDED,
                request_id,
                payload={"file_name": attachment.file_name},
            )
        )
        return attachment

    async def list_attachments(self, request_id: str) -> list[Attachment]:
        await self._get_request(request_id)
        return await self._attachments_for(request_id)

    async def get_request(self, request_id: str) -> dict[str, Any]:
        """Request with line items, attachments, levels, activity (newest first) and stage."""
        request = await self._get_request(request_id)
        levels = await self._levels_for([request_id])
        records = levels.get(request_id, [])
        activity = await self.activity.list_for_request(request_id)

        data = request.to_dict()
        data["line_items"] = [i.to_dict() for i in await self.list_line_items(request_id)]
        data["attachments"] = [a.to_dict() for a in await self._attachments_for(request_id)]
        data["approvals"] = [r.to_dict() for r in records]
        data["activity_log"] = [a.to_dict() for a in activity]
        data["stage"] = compute_stage(records, request.overall_status).value
        return data

    async def list_requests(
        self,
        budget_id: str | None = None,
        status: str | None = None,
        submitted_by: str | None = None,
        search: str | None = None,
        budget_ids: Iterable[str] | None = None,
        stage: str | None = None,
    ) -> list[dict[str, Any]]:
        """Requests newest first, each carrying its derived stage."""
        stmt = select(ApprovalRequest)
        if budget_id:
            stmt = stmt.where(ApprovalRequest.budget_id == budget_id)
        if budget_ids is not None:
            stmt = stmt.where(ApprovalRequest.budget_id.in_(list(budget_ids)))
        if status:
            stmt = stmt.where(ApprovalRequest.overall_status == status)
        if submitted_by:
            stmt = stmt.where(func.lower(ApprovalRequest.submitted_by) == submitted_by.lower())
        if search:
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(ApprovalRequest.request_number).like(pattern),
                    func.lower(ApprovalRequest.description).like(pattern),
                )
            )
        result = await self.session.execute(stmt.order_by(ApprovalRequest.created_at.desc()))
        requests = list(result.scalars().all())

        levels = await self._levels_for([r.request_id for r in requests])
        rows = []
        for request in requests:
            data = request.to_dict()
            data["stage"] = compute_stage(levels.get(request.request_id, []), request.overall_status).value
            if stage and data["stage"] != stage:
                continue
            rows.append(data)
        return rows

    async def get_pending_approvals(self, user_id: str) -> list[dict[str, Any]]:
        """Pending levels assigned to the user whose turn has come."""
        key = user_id.strip().lower()
        result = await self.session.execute(
            select(ApprovalLevel, ApprovalRequest)
            .join(ApprovalRequest, ApprovalRequest.request_id == ApprovalLevel.request_id)
            .where(
                ApprovalLevel.status == LevelStatus.PENDING.value,
                or_(
                    func.lower(ApprovalLevel.assigned_to_primary) == key,
                    func.lower(ApprovalLevel.assigned_to_backup) == key,
                ),
                ApprovalRequest.overall_status.in_([s.value for s in RequestStateMachine.IN_FLIGHT]),
            )
            .order_by(ApprovalRequest.submitted_date.desc())
        )
        candidates = list(result.all())
        levels = await self._levels_for({level.request_id for level, _ in candidates})

        pending = []
        for level, request in candidates:
            predecessors = [
                r for r in levels.get(request.request_id, [])
                if r.approval_level < level.approval_level
            ]
            if any(r.status != LevelStatus.APPROVED for r in predecessors):
                continue
            data = level.to_dict()
            data["request"] = request.to_dict()
            pending.append(data)
        return pending

    async def delete_request(self, request_id: str, deleted_by: str | None = None) -> None:
        """Delete a request and everything it owns."""
        request = await self._get_request(request_id)
        number = request.request_number

        for model in (Notification, ActivityLog, Attachment, ApprovalLevel, LineItem):
            await self.session.execute(delete(model).where(model.request_id == request_id))
        await self.session.execute(
            delete(ApprovalRequest).where(ApprovalRequest.request_id == request_id)
        )
        await self.session.commit()

        logger.info("Deleted request %s by %s", number, deleted_by)
        await self._emit(
            RequestUpdated(RequestAction.DELETED, request_id, payload={"request_number": number})
        )

    async def list_approvals(self, request_id: str) -> list[ApprovalLevel]:
        await self._get_request(request_id)
        levels = await self._levels_for([request_id])
        return levels.get(request_id, [])

    async def get_activity_log(self, request_id: str) -> list[ActivityLog]:
        await self._get_request(request_id)
        return await self.activity.list_for_request(request_id)

    async def _get_request(self, request_id: str) -> ApprovalRequest:
        request = await self.session.get(ApprovalRequest, request_id)
        if request is None:
            raise NotFoundError("Approval request", request_id)
        return request

    async def _attachments_for(self, request_id: str) -> list[Attachment]:
        result = await self.session.execute(
            select(Attachment)
            .where(Attachment.request_id == request_id)
            .order_by(Attachment.uploaded_date)
        )
        return list(result.scalars().all())

    async def _levels_for(self, request_ids: Iterable[str]) -> dict[str, list[ApprovalLevel]]:
        ids = list(request_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(ApprovalLevel)
            .where(ApprovalLevel.request_id.in_(ids))
            .order_by(ApprovalLevel.approval_level)
        )
        grouped: dict[str, list[ApprovalLevel]] = defaultdict(list)
        for record in result.scalars().all():
            grouped[record.request_id].append(record)
        return grouped

    async def _refresh_totals(self, request: ApprovalRequest) -> None:
        items = await self.list_line_items(request.request_id)
        request.total_request_amount = sum((i.signed_amount for i in items), Decimal("0"))
        request.employee_count = len({i.employee_id for i in items})

    async def _emit(self, event: RequestUpdated) -> None:
        if self.emitter is None:
            return
        errors = await self.emitter.emit(event)
        if errors:
            logger.warning("%d listener(s) failed for %s", len(errors), event.action)
