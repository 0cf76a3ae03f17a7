from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from subsidy_flow.config import settings
from subsidy_flow.core.statuses import Role
from subsidy_flow.models.entity import Entity
from subsidy_flow.models.profile import Profile, UserRole


@dataclass(frozen=True)
class SeedProfileSpec:
    email: str
    full_name: str
    roles: tuple[str, ...]
    entity_user: bool = False


@dataclass(frozen=True)
class SeedResult:
    entity_id: uuid.UUID
    profile_ids: dict[str, uuid.UUID]


DEMO_ENTITY_NIF = "500000000"
DEMO_ENTITY_NAME = "Demo Cultural Association"

DEMO_PROFILES: tuple[SeedProfileSpec, ...] = (
    SeedProfileSpec(email="admin@demo.local", full_name="Demo Admin", roles=(Role.ADMIN,)),
    SeedProfileSpec(email="tech@demo.local", full_name="Demo Technician", roles=(Role.TECH,)),
    SeedProfileSpec(email="president@demo.local", full_name="Demo President", roles=(Role.PRESIDENT,)),
    SeedProfileSpec(email="entity@demo.local", full_name="Demo Entity User", roles=(Role.ENTITY,), entity_user=True),
)


async def _get_or_create_entity(session: AsyncSession) -> Entity:
    res = await session.execute(select(Entity).where(Entity.nif == DEMO_ENTITY_NIF))
    entity = res.scalar_one_or_none()

    if entity is None:
        entity = Entity(name=DEMO_ENTITY_NAME, nif=DEMO_ENTITY_NIF, is_active=True)
        session.add(entity)
        await session.flush()
    else:
        # Keep it idempotent but allow evolving defaults.
        entity.name = entity.name or DEMO_ENTITY_NAME
        entity.is_active = True

    return entity


async def _get_or_create_profile(session: AsyncSession, *, entity_id: uuid.UUID, spec: SeedProfileSpec) -> Profile:
    res = await session.execute(select(Profile).where(Profile.email == spec.email))
    profile = res.scalar_one_or_none()

    if profile is None:
        profile = Profile(
            email=spec.email,
            full_name=spec.full_name,
            entity_id=entity_id if spec.entity_user else None,
            is_active=True,
        )
        session.add(profile)
        await session.flush()
    else:
        profile.is_active = True
        profile.full_name = profile.full_name or spec.full_name
        if spec.entity_user:
            profile.entity_id = entity_id

    res = await session.execute(select(UserRole.role).where(UserRole.user_id == profile.id))
    existing = set(res.scalars().all())
    for role in spec.roles:
        if role not in existing:
            session.add(UserRole(user_id=profile.id, role=role))
    await session.flush()

    return profile


async def _seed(session: AsyncSession) -> SeedResult:
    entity = await _get_or_create_entity(session)

    profile_ids: dict[str, uuid.UUID] = {}
    for spec in DEMO_PROFILES:
        profile = await _get_or_create_profile(session, entity_id=entity.id, spec=spec)
        profile_ids[spec.email] = profile.id

    return SeedResult(entity_id=entity.id, profile_ids=profile_ids)


async def seed_dev_data(database_url: str | None = None) -> SeedResult:
    engine = create_async_engine(database_url or settings.database_url, pool_pre_ping=True)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_maker() as session:
            async with session.begin():
                result = await _seed(session)
    finally:
        await engine.dispose()

    return result


def main() -> None:
    result = asyncio.run(seed_dev_data())
    print(f"entity_id={result.entity_id}")
    for email, profile_id in result.profile_ids.items():
        print(f"{email} X-User-ID={profile_id}")


if __name__ == "__main__":
    main()
