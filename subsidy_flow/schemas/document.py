from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from subsidy_flow.schemas.common import WarningRead


class DocumentCreate(BaseModel):
    document_type_id: UUID
    storage_path: str
    original_name: str
    mime_type: str | None = None
    size_bytes: int | None = None


class DocumentRead(BaseModel):
    id: UUID
    application_id: UUID
    document_type_id: UUID

    storage_path: str
    original_name: str
    mime_type: str | None = None
    size_bytes: int | None = None

    status: str
    uploaded_by: UUID | None = None
    uploaded_at: datetime

    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    review_comment: str | None = None

    class Config:
        from_attributes = True


class DocumentReviewRequest(BaseModel):
    decision: str
    comment: str | None = None


class DocumentReviewResponse(BaseModel):
    ok: bool = True
    warning: str | None = None
    warnings: list[WarningRead] = Field(default_factory=list)

    document_id: UUID
    application_id: UUID
    decision: str

    # Set when the rejection sent the application back to the entity.
    application_status: str | None = None
