from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.api.deps import (
    get_application_service,
    get_current_actor,
    get_document_review,
    get_state_machine,
    parse_id,
)
from subsidy_flow.database import get_db
from subsidy_flow.models.profile import Profile
from subsidy_flow.schemas.application import ApplicationListResponse
from subsidy_flow.schemas.common import WarningRead
from subsidy_flow.schemas.decision import DeliberationRequest
from subsidy_flow.schemas.document import DocumentReviewRequest, DocumentReviewResponse
from subsidy_flow.schemas.workflow import CommentRequest, TransitionResponse
from subsidy_flow.services.applications import ApplicationService
from subsidy_flow.services.document_review import DocumentReviewService
from subsidy_flow.services.state_machine import ApplicationStateMachine, DeliberationInput


router = APIRouter(prefix="/backoffice", tags=["backoffice"])

NOT_FOUND = "Application not found."


@router.get("/applications", response_model=ApplicationListResponse)
async def backoffice_queue_endpoint(
    status: str | None = Query(None, description="Application status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> ApplicationListResponse:
    result = await service.list_for_backoffice(session, actor, status=status, page=page, page_size=page_size)
    return ApplicationListResponse.from_page(result)


@router.post("/applications/{application_id}/begin-review", response_model=TransitionResponse)
async def begin_review_endpoint(
    application_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    outcome = await state_machine.begin_review(session, parse_id(application_id, not_found=NOT_FOUND), actor)
    return TransitionResponse.from_outcome(outcome)


@router.post("/applications/{application_id}/return", response_model=TransitionResponse)
async def return_endpoint(
    application_id: str,
    payload: CommentRequest,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    outcome = await state_machine.return_to_entity(
        session, parse_id(application_id, not_found=NOT_FOUND), actor, payload.comment
    )
    return TransitionResponse.from_outcome(outcome)


@router.post("/applications/{application_id}/validate", response_model=TransitionResponse)
async def validate_endpoint(
    application_id: str,
    payload: CommentRequest | None = None,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    outcome = await state_machine.validate(
        session,
        parse_id(application_id, not_found=NOT_FOUND),
        actor,
        payload.comment if payload is not None else None,
    )
    return TransitionResponse.from_outcome(outcome)


@router.post("/applications/{application_id}/send-to-president", response_model=TransitionResponse)
async def send_to_president_endpoint(
    application_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    outcome = await state_machine.send_to_president(session, parse_id(application_id, not_found=NOT_FOUND), actor)
    return TransitionResponse.from_outcome(outcome)


@router.post("/applications/{application_id}/deliberate", response_model=TransitionResponse)
async def deliberate_endpoint(
    application_id: str,
    payload: DeliberationRequest,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    outcome = await state_machine.deliberate(
        session,
        parse_id(application_id, not_found=NOT_FOUND),
        actor,
        DeliberationInput(**payload.model_dump()),
    )
    return TransitionResponse.from_outcome(outcome)


@router.post("/documents/{document_id}/review", response_model=DocumentReviewResponse)
async def review_document_endpoint(
    document_id: str,
    payload: DocumentReviewRequest,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    review: DocumentReviewService = Depends(get_document_review),
) -> DocumentReviewResponse:
    outcome = await review.review(
        session,
        parse_id(document_id, not_found="Document not found."),
        actor,
        payload.decision,
        payload.comment,
    )
    return DocumentReviewResponse(
        ok=outcome.ok,
        warning=outcome.warning,
        warnings=[WarningRead.model_validate(w) for w in outcome.warnings],
        document_id=outcome.document_id,
        application_id=outcome.application_id,
        decision=outcome.decision,
        application_status=outcome.cascade.to_status if outcome.cascade is not None else None,
    )
