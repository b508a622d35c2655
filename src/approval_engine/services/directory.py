"""Read-only user and organization directory lookups."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.models import Organization, UserProfile, UserRole

logger = logging.getLogger(__name__)

# Guards against cycles in a corrupted parent chain
MAX_ORG_DEPTH = 64


@dataclass(frozen=True)
class Profile:
    """Resolved directory entry."""

    user_id: str
    name: str
    email: str | None
    org_id: str | None
    role_names: tuple[str, ...] = field(default_factory=tuple)

    @property
    def primary_role(self) -> str | None:
        """Highest-priority role; ties go to the earliest assignment."""
        return self.role_names[0] if self.role_names else None


def user_key(user_id: str | None) -> str:
    """Case-insensitive identity key for user ids."""
    return (user_id or "").strip().lower()


class UserDirectory:
    """Resolves profiles and organizational roots.

    Org roots are cached for the lifetime of the instance; create one per
    unit of work.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._root_cache: dict[str, str | None] = {}

    async def resolve_profiles(self, user_ids: Iterable[str | None]) -> dict[str, Profile]:
        """Resolve profiles keyed by lowercased user id; unknown ids are omitted."""
        keys = {user_key(u) for u in user_ids if u}
        keys.discard("")
        if not keys:
            return {}

        result = await self.session.execute(
            select(UserProfile).where(func.lower(UserProfile.user_id).in_(sorted(keys)))
        )
        profiles: dict[str, Profile] = {}
        for user in result.scalars().all():
            profiles[user_key(user.user_id)] = self._to_profile(user)
        return profiles

    async def resolve_org_root(self, org_id: str | None) -> str | None:
        """Walk parent pointers to the top-most ancestor."""
        if not org_id:
            return None
        if org_id in self._root_cache:
            return self._root_cache[org_id]

        visited: list[str] = []
        current = org_id
        for _ in range(MAX_ORG_DEPTH):
            if current in self._root_cache:
                root = self._root_cache[current]
                break
            visited.append(current)
            parent = await self.session.scalar(
                select(Organization.parent_org_id).where(Organization.org_id == current)
            )
            if not parent or parent in visited:
                root = current
                break
            current = parent
        else:
            logger.warning("Org hierarchy deeper than %d at %s", MAX_ORG_DEPTH, org_id)
            root = current

        for node in visited:
            self._root_cache[node] = root
        return root

    async def find_users_by_role(self, keyword: str) -> list[Profile]:
        """Active users holding a role whose name contains ``keyword``."""
        result = await self.session.execute(
            select(UserProfile)
            .join(UserRole, UserRole.user_id == UserProfile.user_id)
            .where(
                func.lower(UserRole.role_name).contains(keyword.lower()),
                UserProfile.is_active.is_(True),
            )
        )
        return [self._to_profile(u) for u in result.scalars().unique().all()]

    @staticmethod
    def _to_profile(user: UserProfile) -> Profile:
        return Profile(
            user_id=user.user_id,
            name=user.full_name,
            email=user.email,
            org_id=user.org_id,
            role_names=tuple(
                role.role_name for role in sorted(user.roles, key=lambda r: r.priority or 0)
            ),
        )
