from __future__ import annotations

from collections.abc import Collection, Iterable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.statuses import ApplicationStatus
from subsidy_flow.crud.base import BaseCRUD
from subsidy_flow.models.application import Application


application_crud: BaseCRUD[Application] = BaseCRUD(Application)


async def get_application(
    session: AsyncSession,
    *,
    application_id: UUID,
    for_update: bool = False,
) -> Application | None:
    """Fetch a non-deleted application, optionally taking a row lock."""

    return await application_crud.get(session, id=application_id, for_update=for_update)


async def list_applications(
    session: AsyncSession,
    *,
    entity_id: UUID | None = None,
    statuses: Collection[str] | None = None,
    exclude_statuses: Collection[str] | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Application], int]:
    """Return (items, total) of non-deleted applications, newest first."""

    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1 or page_size > 100:
        raise ValueError("page_size must be between 1 and 100")

    stmt = select(Application).where(Application.is_deleted.is_(False))
    if entity_id is not None:
        stmt = stmt.where(Application.entity_id == entity_id)
    if statuses is not None:
        stmt = stmt.where(Application.current_status.in_(list(statuses)))
    if exclude_statuses:
        stmt = stmt.where(Application.current_status.not_in(list(exclude_statuses)))

    total = int((await session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one())

    stmt = stmt.order_by(Application.created_at.desc(), Application.id.desc())
    stmt = stmt.offset((page - 1) * page_size).limit(page_size)
    res = await session.execute(stmt)
    return list(res.scalars().all()), total


async def compare_and_set_status(
    session: AsyncSession,
    *,
    application_id: UUID,
    expected_status: str,
    values: dict[str, Any],
) -> bool:
    """Conditionally update an application guarded by its current status.

    Returns False when the persisted status no longer matches
    ``expected_status`` (another request got there first).
    """

    stmt = (
        update(Application)
        .where(
            Application.id == application_id,
            Application.current_status == expected_status,
            Application.is_deleted.is_(False),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def find_possible_duplicates(
    session: AsyncSession,
    *,
    entity_id: UUID,
    object_normalized: str,
    exclude_id: UUID | None = None,
    limit: int = 5,
) -> list[Application]:
    """Applications of the same entity whose normalized title contains this one.

    Advisory only; callers never block on the result.
    """

    if not object_normalized:
        return []

    stmt = (
        select(Application)
        .where(
            Application.entity_id == entity_id,
            Application.is_deleted.is_(False),
            Application.object_normalized.contains(object_normalized, autoescape=True),
        )
        .order_by(Application.created_at.desc())
        .limit(limit)
    )
    if exclude_id is not None:
        stmt = stmt.where(Application.id != exclude_id)

    res = await session.execute(stmt)
    return list(res.scalars().all())


async def soft_delete_drafts(
    session: AsyncSession,
    *,
    application_ids: Iterable[UUID],
    entity_id: UUID,
    deleted_by: UUID,
    reason: str,
) -> list[UUID]:
    """Soft-delete the given drafts owned by ``entity_id``; return the ids deleted."""

    ids = list(application_ids)
    if not ids:
        return []

    res = await session.execute(
        select(Application.id).where(
            Application.id.in_(ids),
            Application.entity_id == entity_id,
            Application.current_status == ApplicationStatus.S1_DRAFT,
            Application.is_deleted.is_(False),
        )
    )
    deletable = list(res.scalars().all())
    if not deletable:
        return []

    now = datetime.now(timezone.utc)
    await session.execute(
        update(Application)
        .where(
            Application.id.in_(deletable),
            Application.current_status == ApplicationStatus.S1_DRAFT,
        )
        .values(
            is_deleted=True,
            deleted_at=now,
            deleted_by=deleted_by,
            deleted_reason=reason,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return deletable
