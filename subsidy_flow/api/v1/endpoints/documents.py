from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.api.deps import get_application_service, get_current_actor, parse_id
from subsidy_flow.database import get_db
from subsidy_flow.models.profile import Profile
from subsidy_flow.schemas.common import OkResponse
from subsidy_flow.services.applications import ApplicationService


router = APIRouter(prefix="/documents", tags=["documents"])


@router.delete("/{document_id}", response_model=OkResponse)
async def delete_document_endpoint(
    document_id: str,
    session: AsyncSession = Depends(get_db),
    actor: Profile = Depends(get_current_actor),
    service: ApplicationService = Depends(get_application_service),
) -> OkResponse:
    await service.delete_document(session, actor, parse_id(document_id, not_found="Document not found."))
    return OkResponse()
