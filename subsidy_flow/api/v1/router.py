from fastapi import APIRouter

from subsidy_flow.api.v1.endpoints.applications import router as applications_router
from subsidy_flow.api.v1.endpoints.backoffice import router as backoffice_router
from subsidy_flow.api.v1.endpoints.documents import router as documents_router
from subsidy_flow.api.v1.endpoints.president import router as president_router

router = APIRouter()


@router.get("/ping")
async def ping():
    return {"ping": "pong"}


router.include_router(applications_router)
router.include_router(documents_router)
router.include_router(backoffice_router)
router.include_router(president_router)
