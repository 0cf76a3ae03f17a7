from __future__ import annotations

import uuid

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.exceptions import NotFoundError, UnauthenticatedError
from subsidy_flow.database import get_db
from subsidy_flow.models.profile import Profile
from subsidy_flow.services.applications import ApplicationService
from subsidy_flow.services.document_review import DocumentReviewService
from subsidy_flow.services.notifications import NotificationGateway, get_notification_gateway
from subsidy_flow.services.state_machine import ApplicationStateMachine


def parse_id(value: str, *, not_found: str) -> uuid.UUID:
    # Keep it explicit to get a clean 404 for malformed UUIDs.
    try:
        return uuid.UUID(value)
    except ValueError:
        raise NotFoundError(not_found)


async def get_current_actor(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    session: AsyncSession = Depends(get_db),
) -> Profile:
    """Resolve the caller forwarded by the authenticating gateway."""

    if not x_user_id:
        raise UnauthenticatedError("Not authenticated.")
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise UnauthenticatedError("Not authenticated.")

    profile = await session.get(Profile, user_id)
    if profile is None or not profile.is_active:
        raise UnauthenticatedError("Not authenticated.")
    return profile


def get_notifier() -> NotificationGateway:
    return get_notification_gateway()


def get_state_machine(notifier: NotificationGateway = Depends(get_notifier)) -> ApplicationStateMachine:
    return ApplicationStateMachine(notifier=notifier)


def get_document_review(
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> DocumentReviewService:
    return DocumentReviewService(state_machine)


def get_application_service() -> ApplicationService:
    return ApplicationService()
