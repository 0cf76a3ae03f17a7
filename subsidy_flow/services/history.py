from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.exceptions import AUDIT_WARNING, WorkflowWarning
from subsidy_flow.models.history import ApplicationStatusHistory, DocumentReviewHistory

logger = logging.getLogger("subsidy_flow.workflow")


@dataclass(frozen=True)
class StatusChange:
    application_id: UUID
    from_status: str | None
    to_status: str
    comment: str | None = None
    changed_by: UUID | None = None


@dataclass(frozen=True)
class ReviewDecision:
    document_id: UUID
    decision: str
    comment: str | None = None
    decided_by: UUID | None = None


class HistoryRecorder:
    """Appends immutable audit rows.

    Every append runs in its own commit, after the primary mutation has been
    committed. A failed append is rolled back and reported as an
    ``AuditWarning``; it never undoes the mutation it describes.
    """

    async def record_status_change(self, session: AsyncSession, change: StatusChange) -> WorkflowWarning | None:
        row = ApplicationStatusHistory(
            application_id=change.application_id,
            from_status=change.from_status,
            to_status=change.to_status,
            comment=change.comment,
            changed_by=change.changed_by,
            changed_at=datetime.now(timezone.utc),
        )
        return await self._append(
            session,
            row,
            label=f"status history {change.from_status} -> {change.to_status}",
            subject_id=change.application_id,
        )

    async def record_document_review(self, session: AsyncSession, decision: ReviewDecision) -> WorkflowWarning | None:
        row = DocumentReviewHistory(
            document_id=decision.document_id,
            decision=decision.decision,
            comment=decision.comment,
            decided_by=decision.decided_by,
            decided_at=datetime.now(timezone.utc),
        )
        return await self._append(
            session,
            row,
            label=f"document review {decision.decision}",
            subject_id=decision.document_id,
        )

    async def _append(self, session: AsyncSession, row, *, label: str, subject_id: UUID) -> WorkflowWarning | None:
        try:
            await self._insert(session, row)
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("audit_append_failed subject_id=%s entry=%r error=%s", subject_id, label, exc)
            return WorkflowWarning(AUDIT_WARNING, f"Audit record not written ({label}): {exc.__class__.__name__}")
        return None

    async def _insert(self, session: AsyncSession, row) -> None:
        session.add(row)
        await session.commit()
