from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.api.deps import get_application_service, get_current_actor, get_state_machine, parse_id
from subsidy_flow.database import get_db
from subsidy_flow.models.profile import Profile
from subsidy_flow.schemas.application import ApplicationListResponse
from subsidy_flow.schemas.decision import PresidentDecisionRequest
from subsidy_flow.schemas.workflow import TransitionResponse
from subsidy_flow.services.applications import ApplicationService
from subsidy_flow.services.state_machine import ApplicationStateMachine


router = APIRouter(prefix="/president", tags=["president"])


@router.get("/applications", response_model=ApplicationListResponse)
async def president_queue_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> ApplicationListResponse:
    """Applications waiting for the President's decision."""

    result = await service.list_for_president(session, actor, page=page, page_size=page_size)
    return ApplicationListResponse.from_page(result)


@router.post("/applications/{application_id}/decide", response_model=TransitionResponse)
async def decide_endpoint(
    application_id: str,
    payload: PresidentDecisionRequest,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    """Approve the application for the council meeting, or return it for correction."""

    outcome = await state_machine.president_decide(
        session,
        parse_id(application_id, not_found="Application not found."),
        actor,
        payload.decision,
        payload.comment,
    )
    return TransitionResponse.from_outcome(outcome)
