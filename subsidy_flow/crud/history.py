from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.models.history import ApplicationStatusHistory, DocumentReviewHistory


async def list_status_history(
    session: AsyncSession,
    *,
    application_id: UUID,
) -> list[ApplicationStatusHistory]:
    """Return the transition path of an application, oldest first."""

    stmt = (
        select(ApplicationStatusHistory)
        .where(ApplicationStatusHistory.application_id == application_id)
        .order_by(ApplicationStatusHistory.changed_at.asc())
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def list_document_reviews(
    session: AsyncSession,
    *,
    document_id: UUID,
) -> list[DocumentReviewHistory]:
    stmt = (
        select(DocumentReviewHistory)
        .where(DocumentReviewHistory.document_id == document_id)
        .order_by(DocumentReviewHistory.decided_at.asc())
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())
