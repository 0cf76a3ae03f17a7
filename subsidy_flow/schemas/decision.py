from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class PresidentDecisionRequest(BaseModel):
    decision: str
    comment: str | None = None


class PresidentDecisionRead(BaseModel):
    id: UUID
    application_id: UUID

    decision: str
    comment: str | None = None

    decided_by: UUID | None = None
    decided_at: datetime

    class Config:
        from_attributes = True


class DeliberationRequest(BaseModel):
    meeting_date: date
    outcome: str

    votes_for: int | None = None
    votes_against: int | None = None
    votes_abstain: int | None = None
    voting_notes: str | None = None

    approved_amount: Decimal | None = None
    deliberation_notes: str | None = None

    notify_entity: bool = False


class DeliberationRead(BaseModel):
    id: UUID
    application_id: UUID

    meeting_date: date
    outcome: str

    votes_for: int | None = None
    votes_against: int | None = None
    votes_abstain: int | None = None
    voting_notes: str | None = None

    approved_amount: Decimal | None = None
    deliberation_notes: str | None = None

    deliberated_by: UUID | None = None
    deliberated_at: datetime

    class Config:
        from_attributes = True
