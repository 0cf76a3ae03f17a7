from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.exceptions import ForbiddenError, UnauthenticatedError
from subsidy_flow.models.profile import Profile, UserRole

logger = logging.getLogger("subsidy_flow.auth")


class RoleAuthorizer:
    """Answers "does this actor hold this role" against ``user_roles``.

    There is no role hierarchy: ADMIN does not inherit other roles, so every
    guard lists the roles it accepts. Nothing is cached; roles are read on
    every check because assignments may change between requests.
    """

    async def roles_of(self, session: AsyncSession, actor: Profile) -> set[str]:
        res = await session.execute(select(UserRole.role).where(UserRole.user_id == actor.id))
        return set(res.scalars().all())

    async def has_role(self, session: AsyncSession, actor: Profile | None, role: str) -> bool:
        if actor is None or not actor.is_active:
            return False
        res = await session.execute(
            select(UserRole.id).where(UserRole.user_id == actor.id, UserRole.role == role).limit(1)
        )
        return res.scalar_one_or_none() is not None

    async def has_any_role(self, session: AsyncSession, actor: Profile | None, roles: Iterable[str]) -> bool:
        if actor is None or not actor.is_active:
            return False
        wanted = set(roles)
        return bool(wanted & await self.roles_of(session, actor))

    async def require_any(self, session: AsyncSession, actor: Profile | None, roles: Iterable[str]) -> None:
        roles = tuple(sorted(roles))
        if actor is None or not actor.is_active:
            raise UnauthenticatedError("Not authenticated.")
        if not await self.has_any_role(session, actor, roles):
            logger.info("forbidden actor=%s required_roles=%s", actor.id, ",".join(roles))
            raise ForbiddenError(f"Requires one of roles: {', '.join(roles)}.")
