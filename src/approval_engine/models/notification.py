"""In-app notification model."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_engine.models.base import Base, TimestampMixin, new_id


class Notification(Base, TimestampMixin):
    """Notification row created at each workflow milestone."""

    __tablename__ = "approval_notification"

    notification_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("approval_request.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    recipient_id: Mapped[str] = mapped_column(String(36), nullable=False)
    notification_type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    related_approval_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
