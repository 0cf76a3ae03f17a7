from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.models.decision import MeetingDeliberation, PresidentDecision


async def _upsert_by_application(session: AsyncSession, model, *, application_id: UUID, values: dict[str, Any]):
    res = await session.execute(select(model).where(model.application_id == application_id))
    row = res.scalar_one_or_none()

    if row is None:
        row = model(application_id=application_id, **values)
        session.add(row)
    else:
        for field, value in values.items():
            setattr(row, field, value)

    await session.flush()
    return row


async def upsert_president_decision(
    session: AsyncSession,
    *,
    application_id: UUID,
    values: dict[str, Any],
) -> PresidentDecision:
    """Insert or overwrite the single president decision of an application."""

    return await _upsert_by_application(session, PresidentDecision, application_id=application_id, values=values)


async def upsert_meeting_deliberation(
    session: AsyncSession,
    *,
    application_id: UUID,
    values: dict[str, Any],
) -> MeetingDeliberation:
    """Insert or overwrite the single meeting deliberation of an application."""

    return await _upsert_by_application(session, MeetingDeliberation, application_id=application_id, values=values)


async def get_president_decision(session: AsyncSession, *, application_id: UUID) -> PresidentDecision | None:
    res = await session.execute(select(PresidentDecision).where(PresidentDecision.application_id == application_id))
    return res.scalar_one_or_none()


async def get_meeting_deliberation(session: AsyncSession, *, application_id: UUID) -> MeetingDeliberation | None:
    res = await session.execute(
        select(MeetingDeliberation).where(MeetingDeliberation.application_id == application_id)
    )
    return res.scalar_one_or_none()
