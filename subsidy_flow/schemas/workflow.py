from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from subsidy_flow.schemas.common import WarningRead


class CommentRequest(BaseModel):
    comment: str | None = None


class TransitionResponse(BaseModel):
    ok: bool = True
    warning: str | None = None
    warnings: list[WarningRead] = Field(default_factory=list)

    application_id: UUID
    from_status: str
    to_status: str
    final_status: str

    @classmethod
    def from_outcome(cls, outcome) -> "TransitionResponse":
        return cls(
            ok=outcome.ok,
            warning=outcome.warning,
            warnings=[WarningRead.model_validate(w) for w in outcome.warnings],
            application_id=outcome.application_id,
            from_status=outcome.from_status,
            to_status=outcome.to_status,
            final_status=outcome.final_status,
        )


class StatusHistoryRead(BaseModel):
    id: UUID
    application_id: UUID

    from_status: str | None = None
    to_status: str
    comment: str | None = None

    changed_by: UUID | None = None
    changed_at: datetime

    class Config:
        from_attributes = True
