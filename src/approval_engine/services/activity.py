"""Audit trail for approval requests."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.models import ActivityLog


class ActivityRecorder:
    """Adds activity rows to the current unit of work."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def record(
        self,
        request_id: str,
        action_type: str,
        performed_by: str | None,
        description: str = "",
        details: dict[str, Any] | None = None,
    ) -> ActivityLog:
        """Record an activity entry; flushed with the surrounding write."""
        entry = ActivityLog(
            request_id=request_id,
            action_type=action_type,
            description=description,
            performed_by=performed_by,
            details_json=details,
        )
        self.session.add(entry)
        return entry

    async def list_for_request(self, request_id: str) -> list[ActivityLog]:
        """Activity for a request, newest first."""
        result = await self.session.execute(
            select(ActivityLog)
            .where(ActivityLog.request_id == request_id)
            .order_by(ActivityLog.performed_at.desc())
        )
        return list(result.scalars().all())
