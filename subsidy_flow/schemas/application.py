from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from subsidy_flow.schemas.common import WarningRead
from subsidy_flow.schemas.decision import DeliberationRead, PresidentDecisionRead


class ApplicationCreate(BaseModel):
    category_id: UUID
    object_title: str
    requested_amount: Decimal


class ApplicationUpdate(BaseModel):
    """Partial update; omitted fields are left as they are."""

    category_id: UUID | None = None
    object_title: str | None = None
    requested_amount: Decimal | None = None


class ApplicationRead(BaseModel):
    id: UUID
    entity_id: UUID
    category_id: UUID

    object_title: str
    requested_amount: Decimal
    approved_amount: Decimal | None

    current_status: str
    origin: str

    submitted_at: datetime | None
    tech_validated_at: datetime | None
    sent_to_meeting_at: datetime | None

    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ApplicationDetail(ApplicationRead):
    president_decision: PresidentDecisionRead | None = None
    deliberation: DeliberationRead | None = None


class PossibleDuplicate(BaseModel):
    id: UUID
    object_title: str
    current_status: str
    created_at: datetime

    class Config:
        from_attributes = True


class ApplicationWriteResponse(BaseModel):
    ok: bool = True
    warning: str | None = None
    warnings: list[WarningRead] = Field(default_factory=list)

    application: ApplicationRead
    possible_duplicates: list[PossibleDuplicate] = Field(default_factory=list)


class ApplicationListResponse(BaseModel):
    items: list[ApplicationRead]
    total: int
    page: int
    page_size: int

    @classmethod
    def from_page(cls, page) -> "ApplicationListResponse":
        return cls(
            items=[ApplicationRead.model_validate(i) for i in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
        )


class DeleteManyRequest(BaseModel):
    ids: list[UUID]
    reason: str | None = None


class DeleteManyResponse(BaseModel):
    ok: bool = True
    deleted: list[UUID]
    skipped: list[UUID]
