from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.statuses import DocumentStatus
from subsidy_flow.crud.base import BaseCRUD
from subsidy_flow.models.document import Document


document_crud: BaseCRUD[Document] = BaseCRUD(Document)


async def list_documents_for_application(
    session: AsyncSession,
    *,
    application_id: UUID,
    limit: int = 200,
) -> list[Document]:
    return await document_crud.get_multi(
        session,
        filters={"application_id": application_id},
        order_by=Document.uploaded_at.asc(),
        limit=limit,
    )


async def record_review_decision(
    session: AsyncSession,
    *,
    document_id: UUID,
    values: dict[str, Any],
) -> bool:
    """Move a PENDING document to its decided status.

    Returns False when the document is no longer PENDING.
    """

    stmt = (
        update(Document)
        .where(
            Document.id == document_id,
            Document.status == DocumentStatus.PENDING,
            Document.is_deleted.is_(False),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
