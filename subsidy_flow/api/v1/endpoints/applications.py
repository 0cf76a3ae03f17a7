from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.api.deps import get_application_service, get_current_actor, get_state_machine, parse_id
from subsidy_flow.crud.decision import get_meeting_deliberation, get_president_decision
from subsidy_flow.database import get_db
from subsidy_flow.models.profile import Profile
from subsidy_flow.schemas.application import (
    ApplicationCreate,
    ApplicationDetail,
    ApplicationListResponse,
    ApplicationRead,
    ApplicationUpdate,
    ApplicationWriteResponse,
    DeleteManyRequest,
    DeleteManyResponse,
    PossibleDuplicate,
)
from subsidy_flow.schemas.common import OkResponse, WarningRead
from subsidy_flow.schemas.decision import DeliberationRead, PresidentDecisionRead
from subsidy_flow.schemas.document import DocumentCreate, DocumentRead
from subsidy_flow.schemas.workflow import StatusHistoryRead, TransitionResponse
from subsidy_flow.services.applications import ApplicationResult, ApplicationService
from subsidy_flow.services.state_machine import ApplicationStateMachine


router = APIRouter(prefix="/applications", tags=["applications"])

NOT_FOUND = "Application not found."


def _write_response(result: ApplicationResult) -> ApplicationWriteResponse:
    return ApplicationWriteResponse(
        ok=result.ok,
        warning=result.warning,
        warnings=[WarningRead.model_validate(w) for w in result.warnings],
        application=ApplicationRead.model_validate(result.application),
        possible_duplicates=[PossibleDuplicate.model_validate(d) for d in result.possible_duplicates],
    )


@router.post("", response_model=ApplicationWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_application_endpoint(
    payload: ApplicationCreate,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> ApplicationWriteResponse:
    result = await service.create_application(
        session,
        actor,
        category_id=payload.category_id,
        object_title=payload.object_title,
        requested_amount=payload.requested_amount,
    )
    return _write_response(result)


@router.get("", response_model=ApplicationListResponse)
async def list_applications_endpoint(
    status_filter: str | None = Query(None, alias="status", description="Application status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> ApplicationListResponse:
    """The caller's own entity applications, newest first."""

    result = await service.list_for_entity(session, actor, status=status_filter, page=page, page_size=page_size)
    return ApplicationListResponse.from_page(result)


@router.post("/delete-many", response_model=DeleteManyResponse)
async def delete_many_endpoint(
    payload: DeleteManyRequest,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> DeleteManyResponse:
    result = await service.delete_applications(session, actor, payload.ids, reason=payload.reason)
    return DeleteManyResponse(deleted=result.deleted, skipped=result.skipped)


@router.get("/{application_id}", response_model=ApplicationDetail)
async def get_application_endpoint(
    application_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> ApplicationDetail:
    app = await service.get_detail(session, actor, parse_id(application_id, not_found=NOT_FOUND))

    decision = await get_president_decision(session, application_id=app.id)
    deliberation = await get_meeting_deliberation(session, application_id=app.id)

    payload = ApplicationRead.model_validate(app).model_dump()
    payload["president_decision"] = PresidentDecisionRead.model_validate(decision) if decision else None
    payload["deliberation"] = DeliberationRead.model_validate(deliberation) if deliberation else None
    return ApplicationDetail(**payload)


@router.patch("/{application_id}", response_model=ApplicationWriteResponse)
async def patch_application_endpoint(
    application_id: str,
    payload: ApplicationUpdate,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> ApplicationWriteResponse:
    result = await service.update_application(
        session,
        actor,
        parse_id(application_id, not_found=NOT_FOUND),
        **payload.model_dump(exclude_unset=True),
    )
    return _write_response(result)


@router.delete("/{application_id}", response_model=OkResponse)
async def delete_application_endpoint(
    application_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> OkResponse:
    """Soft-delete a draft application."""

    await service.delete_application(session, actor, parse_id(application_id, not_found=NOT_FOUND))
    return OkResponse()


@router.get("/{application_id}/history", response_model=list[StatusHistoryRead])
async def application_history_endpoint(
    application_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> list[StatusHistoryRead]:
    rows = await service.get_history(session, actor, parse_id(application_id, not_found=NOT_FOUND))
    return [StatusHistoryRead.model_validate(r) for r in rows]


@router.get("/{application_id}/documents", response_model=list[DocumentRead])
async def application_documents_endpoint(
    application_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> list[DocumentRead]:
    docs = await service.get_documents(session, actor, parse_id(application_id, not_found=NOT_FOUND))
    return [DocumentRead.model_validate(d) for d in docs]


@router.post("/{application_id}/documents", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
async def attach_document_endpoint(
    application_id: str,
    payload: DocumentCreate,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> DocumentRead:
    doc = await service.attach_document(
        session,
        actor,
        parse_id(application_id, not_found=NOT_FOUND),
        **payload.model_dump(),
    )
    return DocumentRead.model_validate(doc)


@router.post("/{application_id}/submit", response_model=TransitionResponse)
async def submit_application_endpoint(
    application_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    outcome = await state_machine.submit(session, parse_id(application_id, not_found=NOT_FOUND), actor)
    return TransitionResponse.from_outcome(outcome)
