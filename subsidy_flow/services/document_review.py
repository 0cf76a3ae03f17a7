from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.exceptions import (
    AUDIT_WARNING,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    WorkflowError,
    WorkflowValidationError,
    WorkflowWarning,
    join_warnings,
)
from subsidy_flow.core.statuses import DocumentStatus, Role
from subsidy_flow.crud.document import document_crud, record_review_decision
from subsidy_flow.models.document import Document
from subsidy_flow.models.profile import Profile
from subsidy_flow.services.history import HistoryRecorder, ReviewDecision
from subsidy_flow.services.roles import RoleAuthorizer
from subsidy_flow.services.state_machine import ActorRef, ApplicationStateMachine, TransitionOutcome

logger = logging.getLogger("subsidy_flow.documents")

_VERBS = {
    "APPROVE": DocumentStatus.APPROVED,
    "REJECT": DocumentStatus.REJECTED,
}


def normalize_decision(decision: str | None) -> str:
    value = (decision or "").strip().upper()
    value = _VERBS.get(value, value)
    if value not in DocumentStatus.DECISIONS:
        raise WorkflowValidationError("Invalid decision. Use APPROVED or REJECTED.")
    return value


@dataclass
class DocumentReviewOutcome:
    document_id: UUID
    application_id: UUID
    decision: str
    warnings: list[WorkflowWarning] = field(default_factory=list)
    cascade: TransitionOutcome | None = None

    ok = True

    @property
    def warning(self) -> str | None:
        return join_warnings(self.warnings)


class DocumentReviewService:
    """Back-office decision on a single candidacy document.

    The document status update and the review ledger entry are written in
    separate commits. Losing one of them is reported as a warning; losing
    both is a persistence failure. A rejection additionally sends the owning
    application back to the entity.
    """

    def __init__(
        self,
        state_machine: ApplicationStateMachine,
        *,
        authorizer: RoleAuthorizer | None = None,
        recorder: HistoryRecorder | None = None,
    ) -> None:
        self.state_machine = state_machine
        self.authorizer = authorizer or state_machine.authorizer
        self.recorder = recorder or state_machine.recorder

    async def review(
        self,
        session: AsyncSession,
        document_id: UUID,
        actor: Profile | None,
        decision: str,
        comment: str | None = None,
    ) -> DocumentReviewOutcome:
        await self.authorizer.require_any(session, actor, {Role.TECH, Role.ADMIN})
        ref = ActorRef.of(actor)

        decision = normalize_decision(decision)
        comment = (comment or "").strip() or None
        if decision == DocumentStatus.REJECTED and not comment:
            raise WorkflowValidationError("A comment is required when rejecting a document.")

        doc = await document_crud.get(session, id=document_id, for_update=True)
        if doc is None:
            await session.rollback()
            raise NotFoundError("Document not found.")
        if doc.status != DocumentStatus.PENDING:
            current = doc.status
            await session.rollback()
            raise InvalidStateError(current, (DocumentStatus.PENDING,), subject="document")

        application_id = doc.application_id
        original_name = doc.original_name

        outcome = DocumentReviewOutcome(document_id=document_id, application_id=application_id, decision=decision)

        status_written = True
        try:
            swapped = await record_review_decision(
                session,
                document_id=document_id,
                values={
                    "status": decision,
                    "reviewed_by": ref.id,
                    "reviewed_at": datetime.now(timezone.utc),
                    "review_comment": comment,
                },
            )
            if swapped:
                await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("document_status_update_failed document_id=%s error=%s", document_id, exc)
            outcome.warnings.append(
                WorkflowWarning(AUDIT_WARNING, f"Document status not updated: {exc.__class__.__name__}")
            )
            status_written = False
        else:
            if not swapped:
                await session.rollback()
                current = (
                    await session.execute(select(Document.status).where(Document.id == document_id))
                ).scalar_one_or_none()
                raise InvalidStateError(current, (DocumentStatus.PENDING,), subject="document")

        # The ledger entry is attempted even when the status update failed.
        audit = await self.recorder.record_document_review(
            session,
            ReviewDecision(document_id=document_id, decision=decision, comment=comment, decided_by=ref.id),
        )
        if audit is not None:
            if not status_written:
                raise PersistenceError("Neither the document status nor its review record could be saved.")
            outcome.warnings.append(audit)

        logger.info(
            "document_reviewed document_id=%s application_id=%s decision=%s actor=%s",
            document_id,
            application_id,
            decision,
            ref.id,
        )

        if decision == DocumentStatus.REJECTED:
            try:
                outcome.cascade = await self.state_machine.cascade_document_rejection(
                    session,
                    application_id,
                    ref,
                    f"Document rejected: {original_name} - {comment}",
                )
            except WorkflowError as exc:
                logger.warning("document_rejection_cascade_failed application_id=%s error=%s", application_id, exc)
                outcome.warnings.append(
                    WorkflowWarning(AUDIT_WARNING, f"Application not returned to the entity: {exc.message}")
                )
            else:
                if outcome.cascade is not None:
                    outcome.warnings.extend(outcome.cascade.warnings)

        return outcome
