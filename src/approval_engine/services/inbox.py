"""In-app notification inbox."""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.models import Notification
from approval_engine.services.errors import NotFoundError


class NotificationInbox:
    """Read and acknowledge notifications; only the recipient may mark them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        stmt = select(Notification).where(
            func.lower(Notification.recipient_id) == user_id.strip().lower()
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        result = await self.session.execute(stmt.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())

    async def mark_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self.session.get(Notification, notification_id)
        if notification is None or notification.recipient_id.lower() != user_id.strip().lower():
            raise NotFoundError("Notification", notification_id)
        notification.is_read = True
        await self.session.flush()
        return notification

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of the user; returns the count."""
        result = await self.session.execute(
            update(Notification)
            .where(
                func.lower(Notification.recipient_id) == user_id.strip().lower(),
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
