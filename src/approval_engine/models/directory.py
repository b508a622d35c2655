"""Organization hierarchy and user directory models."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_engine.models.base import Base, TimestampMixin, new_id


class Organization(Base, TimestampMixin):
    """Organizational unit; the root is the node without a parent."""

    __tablename__ = "organization"

    org_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    parent_org_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("organization.org_id", ondelete="SET NULL"),
        nullable=True,
    )


class UserProfile(Base, TimestampMixin):
    """Directory entry for a person who can act on requests."""

    __tablename__ = "user_profile"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    org_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("organization.org_id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    roles: Mapped[list[UserRole]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="[UserRole.priority, UserRole.created_at]",
    )


class UserRole(Base, TimestampMixin):
    """Role assignment, keyed by free-text role name.

    Lower ``priority`` wins when a single role is shown for the user.
    """

    __tablename__ = "user_role"

    user_role_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("user_profile.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    role_name: Mapped[str] = mapped_column(String, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "role_name", name="user_role_unique"),
    )

    user: Mapped[UserProfile] = relationship(back_populates="roles")
