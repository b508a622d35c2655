"""Approval request API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from approval_engine.api.dependencies import DbSession, Requests, UserId, Workflow
from approval_engine.api.responses import envelope, ok
from approval_engine.api.schemas import (
    ApprovalDecision,
    AttachmentCreate,
    Envelope,
    LineItemBulkCreate,
    LineItemCreate,
    PaymentCompletion,
    RejectionDecision,
    RequestCreate,
    RequestUpdate,
)
from approval_engine.services.budget_service import BudgetConfigService
from approval_engine.services.inbox import NotificationInbox

router = APIRouter(
    prefix="/approval-requests",
    tags=["approval-requests"],
    responses={
        400: {"model": Envelope},
        404: {"model": Envelope},
        409: {"model": Envelope},
    },
)


# ============================================================================
# Per-user views (declared before /{request_id})
# ============================================================================


@router.get("/my-approvals/pending")
async def my_pending_approvals(service: Requests, user_id: UserId) -> JSONResponse:
    """Pending levels assigned to the caller whose turn has come."""
    return ok(await service.get_pending_approvals(user_id))


@router.get("/notifications")
async def list_notifications(
    db: DbSession,
    user_id: UserId,
    unread_only: Annotated[bool, Query()] = False,
) -> JSONResponse:
    notifications = await NotificationInbox(db).list_for_user(user_id, unread_only=unread_only)
    return ok([n.to_dict() for n in notifications])


@router.patch("/notifications/read-all")
async def mark_all_notifications_read(db: DbSession, user_id: UserId) -> JSONResponse:
    count = await NotificationInbox(db).mark_all_read(user_id)
    await db.commit()
    return ok({"updated": count}, f"{count} notification(s) marked as read")


@router.patch("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    db: DbSession,
    user_id: UserId,
) -> JSONResponse:
    notification = await NotificationInbox(db).mark_read(notification_id, user_id)
    await db.commit()
    return ok(notification.to_dict(), "Notification marked as read")


# ============================================================================
# Request CRUD
# ============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: RequestCreate,
    service: Requests,
    user_id: UserId,
) -> JSONResponse:
    """Create a new approval request in draft status."""
    request = await service.create_request(
        payload.budget_id,
        user_id,
        description=payload.description,
        is_client_sponsored=payload.is_client_sponsored,
    )
    return ok(
        request.to_dict(),
        "Approval request created successfully",
        status.HTTP_201_CREATED,
    )


@router.get("")
async def list_requests(
    service: Requests,
    db: DbSession,
    budget_id: Annotated[str | None, Query()] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    submitted_by: Annotated[str | None, Query()] = None,
    search: Annotated[str | None, Query()] = None,
    stage: Annotated[str | None, Query()] = None,
    org_id: Annotated[str | None, Query()] = None,
) -> JSONResponse:
    """List requests newest first, optionally scoped to an org's budgets."""
    budget_ids = None
    if org_id:
        budget_ids = await BudgetConfigService(db).list_budget_ids_for_org(org_id)
    rows = await service.list_requests(
        budget_id=budget_id,
        status=status_filter,
        submitted_by=submitted_by,
        search=search,
        budget_ids=budget_ids,
        stage=stage,
    )
    return ok(rows)


@router.get("/{request_id}")
async def get_request(request_id: str, service: Requests) -> JSONResponse:
    """Request with line items, approvals, activity and derived stage."""
    return ok(await service.get_request(request_id))


@router.patch("/{request_id}")
async def update_request(
    request_id: str,
    payload: RequestUpdate,
    service: Requests,
    user_id: UserId,
) -> JSONResponse:
    """Edit a draft's description and budget tracking figures."""
    request = await service.update_request(
        request_id,
        payload.model_dump(exclude_unset=True),
        updated_by=user_id,
    )
    return ok(request.to_dict(), "Approval request updated successfully")


@router.delete("/{request_id}")
async def delete_request(request_id: str, service: Requests, user_id: UserId) -> JSONResponse:
    await service.delete_request(request_id, deleted_by=user_id)
    return ok(None, "Approval request deleted successfully")


# ============================================================================
# Line items
# ============================================================================


@router.post("/{request_id}/line-items", status_code=status.HTTP_201_CREATED)
async def add_line_item(
    request_id: str,
    payload: LineItemCreate,
    service: Requests,
    user_id: UserId,
) -> JSONResponse:
    item = await service.add_line_item(request_id, payload.model_dump(), created_by=user_id)
    return ok(item.to_dict(), "Line item added successfully", status.HTTP_201_CREATED)


@router.post("/{request_id}/line-items/bulk", status_code=status.HTTP_201_CREATED)
async def add_line_items_bulk(
    request_id: str,
    payload: LineItemBulkCreate,
    service: Requests,
    user_id: UserId,
) -> JSONResponse:
    items = await service.add_line_items_bulk(
        request_id,
        [item.model_dump() for item in payload.line_items],
        created_by=user_id,
    )
    return ok(
        [i.to_dict() for i in items],
        f"{len(items)} line items added successfully",
        status.HTTP_201_CREATED,
    )


@router.get("/{request_id}/line-items")
async def list_line_items(request_id: str, service: Requests) -> JSONResponse:
    return ok([i.to_dict() for i in await service.list_line_items(request_id)])


# ============================================================================
# Attachments
# ============================================================================


@router.post("/{request_id}/attachments", status_code=status.HTTP_201_CREATED)
async def add_attachment(
    request_id: str,
    payload: AttachmentCreate,
    service: Requests,
    user_id: UserId,
) -> JSONResponse:
    attachment = await service.add_attachment(request_id, payload.model_dump(), uploaded_by=user_id)
    return ok(attachment.to_dict(), "Attachment added successfully", status.HTTP_201_CREATED)


@router.get("/{request_id}/attachments")
async def list_attachments(request_id: str, service: Requests) -> JSONResponse:
    return ok([a.to_dict() for a in await service.list_attachments(request_id)])


# ============================================================================
# Workflow actions
# ============================================================================


@router.post("/{request_id}/submit")
async def submit_request(request_id: str, workflow: Workflow, user_id: UserId) -> JSONResponse:
    """Run the scope gates and start the approval chain."""
    return envelope(await workflow.submit_approval_request(request_id, user_id))


@router.post("/{request_id}/approvals/approve")
async def approve_request(
    request_id: str,
    payload: ApprovalDecision,
    workflow: Workflow,
    user_id: UserId,
) -> JSONResponse:
    data = payload.model_dump(exclude={"approval_level"})
    data["approved_by"] = user_id
    return envelope(
        await workflow.approve_request_at_level(request_id, payload.approval_level, data)
    )


@router.post("/{request_id}/approvals/reject")
async def reject_request(
    request_id: str,
    payload: RejectionDecision,
    workflow: Workflow,
    user_id: UserId,
) -> JSONResponse:
    data = payload.model_dump(exclude={"approval_level"})
    data["rejected_by"] = user_id
    return envelope(
        await workflow.reject_request_at_level(request_id, payload.approval_level, data)
    )


@router.post("/{request_id}/approvals/complete-payment")
async def complete_payment(
    request_id: str,
    payload: PaymentCompletion,
    workflow: Workflow,
    user_id: UserId,
) -> JSONResponse:
    data = payload.model_dump()
    data["completed_by"] = user_id
    return envelope(await workflow.complete_payroll_payment(request_id, data))


@router.get("/{request_id}/approvals")
async def list_approvals(request_id: str, service: Requests) -> JSONResponse:
    return ok([r.to_dict() for r in await service.list_approvals(request_id)])


@router.get("/{request_id}/activity")
async def activity_log(request_id: str, service: Requests) -> JSONResponse:
    return ok([a.to_dict() for a in await service.get_activity_log(request_id)])
