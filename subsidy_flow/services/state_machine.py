"""Application lifecycle state machine.

Every status change goes through one table (``TRANSITIONS``) and one code
path (``ApplicationStateMachine._advance``):

1. re-read the application under a row lock (never trust caller state);
2. check the current status against the transition's source states;
3. compare-and-swap the status (``UPDATE ... WHERE current_status = :seen``);
4. run transition-specific writes (decision / deliberation records) and commit;
5. append the status history row in its own commit (failure -> AuditWarning).

Steps 1-4 are the primary mutation: any failure there aborts the operation.
Step 5 and notifications are secondary and only ever degrade to warnings.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.exceptions import (
    NOTIFICATION_WARNING,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    WorkflowValidationError,
    WorkflowWarning,
    join_warnings,
)
from subsidy_flow.core.statuses import (
    ApplicationStatus as S,
    DeliberationOutcome,
    PresidentDecisionKind,
    Role,
)
from subsidy_flow.crud.application import compare_and_set_status, get_application
from subsidy_flow.crud.decision import upsert_meeting_deliberation, upsert_president_decision
from subsidy_flow.models.application import Application
from subsidy_flow.models.entity import Entity
from subsidy_flow.models.profile import Profile
from subsidy_flow.services.history import HistoryRecorder, StatusChange
from subsidy_flow.services.notifications import (
    NotificationGateway,
    build_deliberation_email,
    get_notification_gateway,
)
from subsidy_flow.services.roles import RoleAuthorizer

logger = logging.getLogger("subsidy_flow.workflow")

BACKOFFICE = frozenset({Role.TECH, Role.ADMIN})
SYSTEM = frozenset()


class Operation:
    SUBMIT = "SUBMIT"
    BEGIN_REVIEW = "BEGIN_REVIEW"
    RETURN = "RETURN"
    VALIDATE = "VALIDATE"
    SEND_TO_PRESIDENT = "SEND_TO_PRESIDENT"
    PRESIDENT_APPROVE = "PRESIDENT_APPROVE"
    PRESIDENT_RETURN = "PRESIDENT_RETURN"
    DELIBERATE = "DELIBERATE"

    # Derived hops, never requested directly by an actor.
    DELIBERATION_APPROVED = "DELIBERATION_APPROVED"
    DELIBERATION_REJECTED = "DELIBERATION_REJECTED"
    DOCUMENT_REJECTED = "DOCUMENT_REJECTED"


@dataclass(frozen=True)
class Transition:
    operation: str
    sources: tuple[str, ...]
    target: str
    roles: frozenset[str]
    comment_required: bool = False
    owner_only: bool = False
    default_comment: str | None = None
    stamp: str | None = None
    # Carries a decision record; only reachable through its dedicated method.
    needs_payload: bool = False

    @property
    def system_only(self) -> bool:
        return not self.roles


def _t(operation: str, sources: Iterable[str], target: str, roles: frozenset[str], **kw: Any) -> tuple[str, Transition]:
    return operation, Transition(operation, tuple(sources), target, roles, **kw)


TRANSITIONS: dict[str, Transition] = dict(
    [
        _t(
            Operation.SUBMIT,
            (S.S1_DRAFT, S.S4_RETURNED),
            S.S2_SUBMITTED,
            frozenset({Role.ENTITY}),
            owner_only=True,
            default_comment="Submitted by the entity.",
            stamp="submitted_at",
        ),
        _t(
            Operation.BEGIN_REVIEW,
            (S.S2_SUBMITTED,),
            S.S3_IN_REVIEW,
            BACKOFFICE,
            default_comment="Technical review started.",
        ),
        _t(
            Operation.RETURN,
            (S.S3_IN_REVIEW, S.S5_TECH_VALIDATED),
            S.S4_RETURNED,
            BACKOFFICE,
            comment_required=True,
        ),
        _t(
            Operation.VALIDATE,
            (S.S3_IN_REVIEW, S.S4_RETURNED),
            S.S5_TECH_VALIDATED,
            BACKOFFICE,
            default_comment="Technically validated.",
            stamp="tech_validated_at",
        ),
        _t(
            Operation.SEND_TO_PRESIDENT,
            (S.S5_TECH_VALIDATED,),
            S.S6_READY_FOR_PRESIDENT,
            BACKOFFICE,
            default_comment="Sent to the President for decision.",
        ),
        _t(
            Operation.PRESIDENT_APPROVE,
            (S.S6_READY_FOR_PRESIDENT,),
            S.S8_SENT_TO_MEETING,
            frozenset({Role.PRESIDENT}),
            default_comment="Approved by the President and sent to the council meeting.",
            stamp="sent_to_meeting_at",
            needs_payload=True,
        ),
        _t(
            Operation.PRESIDENT_RETURN,
            (S.S6_READY_FOR_PRESIDENT,),
            S.S4_RETURNED,
            frozenset({Role.PRESIDENT}),
            comment_required=True,
            needs_payload=True,
        ),
        _t(
            Operation.DELIBERATE,
            (S.S8_SENT_TO_MEETING,),
            S.S9_DELIBERATED,
            BACKOFFICE,
            needs_payload=True,
        ),
        _t(
            Operation.DELIBERATION_APPROVED,
            (S.S9_DELIBERATED,),
            S.S10_AWAITING_EXPENSE,
            SYSTEM,
            default_comment="Application approved; awaiting expense documents.",
        ),
        _t(
            Operation.DELIBERATION_REJECTED,
            (S.S9_DELIBERATED,),
            S.S15_CLOSED,
            SYSTEM,
            default_comment="Application rejected and closed.",
        ),
        # A rejected candidacy document always sends the application back to
        # the entity, whatever stage it had reached.
        _t(
            Operation.DOCUMENT_REJECTED,
            tuple(s for s in S.ALL if s != S.S4_RETURNED),
            S.S4_RETURNED,
            SYSTEM,
            comment_required=True,
        ),
    ]
)


def can_edit_application(app: Application) -> bool:
    """Category, title and amount are editable only in the open window."""

    return not app.is_deleted and app.current_status in S.EDITABLE


def can_upload_application_docs(app: Application) -> bool:
    return not app.is_deleted and app.current_status in S.EDITABLE


@dataclass
class TransitionOutcome:
    application_id: UUID
    operation: str
    from_status: str
    to_status: str
    warnings: list[WorkflowWarning] = field(default_factory=list)
    followup: TransitionOutcome | None = None

    ok = True

    @property
    def final_status(self) -> str:
        return self.followup.final_status if self.followup is not None else self.to_status

    @property
    def warning(self) -> str | None:
        return join_warnings(self.warnings)


@dataclass(frozen=True)
class DeliberationInput:
    meeting_date: date
    outcome: str
    votes_for: int | None = None
    votes_against: int | None = None
    votes_abstain: int | None = None
    voting_notes: str | None = None
    deliberation_notes: str | None = None
    approved_amount: Decimal | None = None
    notify_entity: bool = False


@dataclass(frozen=True)
class ActorRef:
    """Plain snapshot of the acting profile.

    A failed audit append rolls the session back and expires every loaded
    instance, so the ids are read once up front.
    """

    id: UUID
    entity_id: UUID | None

    @classmethod
    def of(cls, actor: Profile | None) -> ActorRef | None:
        if actor is None:
            return None
        return cls(id=actor.id, entity_id=actor.entity_id)


SideEffect = Callable[[AsyncSession, Application], Awaitable[None]]
ValuesFn = Callable[[Application], dict[str, Any]]


def _clean(comment: str | None) -> str | None:
    if comment is None:
        return None
    comment = comment.strip()
    return comment or None


class ApplicationStateMachine:
    def __init__(
        self,
        *,
        authorizer: RoleAuthorizer | None = None,
        recorder: HistoryRecorder | None = None,
        notifier: NotificationGateway | None = None,
    ) -> None:
        self.authorizer = authorizer or RoleAuthorizer()
        self.recorder = recorder or HistoryRecorder()
        self.notifier = notifier or get_notification_gateway()

    async def apply(
        self,
        session: AsyncSession,
        operation: str,
        application_id: UUID,
        actor: Profile | None,
        *,
        comment: str | None = None,
    ) -> TransitionOutcome:
        """Generic entry point for actor-initiated transitions."""

        transition = TRANSITIONS.get(operation)
        if transition is None:
            raise WorkflowValidationError(f"Unknown operation: {operation}.")
        if transition.system_only:
            raise ForbiddenError(f"{operation} is performed by the system only.")
        if transition.needs_payload:
            raise WorkflowValidationError(f"{operation} needs its decision details; use the dedicated operation.")

        await self.authorizer.require_any(session, actor, transition.roles)
        return await self._advance(session, transition, application_id, actor=ActorRef.of(actor), comment=comment)

    async def submit(self, session: AsyncSession, application_id: UUID, actor: Profile | None) -> TransitionOutcome:
        return await self.apply(session, Operation.SUBMIT, application_id, actor)

    async def begin_review(self, session: AsyncSession, application_id: UUID, actor: Profile | None) -> TransitionOutcome:
        return await self.apply(session, Operation.BEGIN_REVIEW, application_id, actor)

    async def return_to_entity(
        self, session: AsyncSession, application_id: UUID, actor: Profile | None, comment: str | None
    ) -> TransitionOutcome:
        return await self.apply(session, Operation.RETURN, application_id, actor, comment=comment)

    async def validate(
        self, session: AsyncSession, application_id: UUID, actor: Profile | None, comment: str | None = None
    ) -> TransitionOutcome:
        return await self.apply(session, Operation.VALIDATE, application_id, actor, comment=comment)

    async def send_to_president(self, session: AsyncSession, application_id: UUID, actor: Profile | None) -> TransitionOutcome:
        return await self.apply(session, Operation.SEND_TO_PRESIDENT, application_id, actor)

    async def president_decide(
        self,
        session: AsyncSession,
        application_id: UUID,
        actor: Profile | None,
        decision: str,
        comment: str | None = None,
    ) -> TransitionOutcome:
        await self.authorizer.require_any(session, actor, {Role.PRESIDENT})
        ref = ActorRef.of(actor)

        decision = (decision or "").strip().upper()
        if decision not in PresidentDecisionKind.ALL:
            raise WorkflowValidationError("Invalid decision. Use APPROVE_TO_PROCEED or RETURN_FOR_CORRECTION.")

        operation = (
            Operation.PRESIDENT_APPROVE
            if decision == PresidentDecisionKind.APPROVE_TO_PROCEED
            else Operation.PRESIDENT_RETURN
        )
        comment = _clean(comment)

        async def record_decision(s: AsyncSession, app: Application) -> None:
            await upsert_president_decision(
                s,
                application_id=app.id,
                values={
                    "decision": decision,
                    "comment": comment,
                    "decided_by": ref.id,
                    "decided_at": datetime.now(timezone.utc),
                },
            )

        return await self._advance(
            session,
            TRANSITIONS[operation],
            application_id,
            actor=ref,
            comment=comment,
            side_effect=record_decision,
        )

    async def deliberate(
        self,
        session: AsyncSession,
        application_id: UUID,
        actor: Profile | None,
        params: DeliberationInput,
    ) -> TransitionOutcome:
        """Record the council deliberation (S8 -> S9) and fork to S10 or S15."""

        await self.authorizer.require_any(session, actor, BACKOFFICE)
        ref = ActorRef.of(actor)
        self._validate_deliberation(params)

        async def record_deliberation(s: AsyncSession, app: Application) -> None:
            await upsert_meeting_deliberation(
                s,
                application_id=app.id,
                values={
                    "meeting_date": params.meeting_date,
                    "outcome": params.outcome,
                    "votes_for": params.votes_for,
                    "votes_against": params.votes_against,
                    "votes_abstain": params.votes_abstain,
                    "voting_notes": _clean(params.voting_notes),
                    "approved_amount": params.approved_amount,
                    "deliberation_notes": _clean(params.deliberation_notes),
                    "deliberated_by": ref.id,
                    "deliberated_at": datetime.now(timezone.utc),
                },
            )

        def approved_amount(app: Application) -> dict[str, Any]:
            # Decided once, here: the deliberated amount if given, otherwise
            # whatever the application already carried. Never requested_amount.
            amount = params.approved_amount if params.approved_amount is not None else app.approved_amount
            return {"approved_amount": amount}

        outcome = await self._advance(
            session,
            TRANSITIONS[Operation.DELIBERATE],
            application_id,
            actor=ref,
            comment=f"Deliberation recorded (outcome: {params.outcome}).",
            values=approved_amount,
            side_effect=record_deliberation,
        )

        fork = (
            Operation.DELIBERATION_APPROVED
            if params.outcome == DeliberationOutcome.APPROVED
            else Operation.DELIBERATION_REJECTED
        )
        try:
            outcome.followup = await self._advance(session, TRANSITIONS[fork], application_id, actor=ref)
        except PersistenceError as exc:
            raise PersistenceError(
                f"Deliberation recorded but the application stayed in {S.S9_DELIBERATED}: {exc.message}"
            ) from exc
        outcome.warnings.extend(outcome.followup.warnings)

        if params.notify_entity:
            warning = await self._notify_deliberation(session, application_id, params)
            if warning is not None:
                outcome.warnings.append(warning)

        return outcome

    async def cascade_document_rejection(
        self,
        session: AsyncSession,
        application_id: UUID,
        actor: ActorRef | None,
        comment: str,
    ) -> TransitionOutcome | None:
        """Send the application back to the entity after a document rejection.

        Returns None when the application is already S4_RETURNED.
        """

        transition = TRANSITIONS[Operation.DOCUMENT_REJECTED]
        res = await session.execute(
            select(Application.current_status).where(
                Application.id == application_id,
                Application.is_deleted.is_(False),
            )
        )
        current = res.scalar_one_or_none()
        if current is None:
            raise NotFoundError("Application not found.")
        if current == transition.target:
            logger.info("document_rejection_no_cascade application_id=%s status=%s", application_id, current)
            return None

        return await self._advance(session, transition, application_id, actor=actor, comment=comment)

    async def _advance(
        self,
        session: AsyncSession,
        transition: Transition,
        application_id: UUID,
        *,
        actor: ActorRef | None,
        comment: str | None = None,
        values: ValuesFn | None = None,
        side_effect: SideEffect | None = None,
    ) -> TransitionOutcome:
        comment = _clean(comment)
        if transition.comment_required and not comment:
            raise WorkflowValidationError("A comment is required for this transition.")

        actor_id = actor.id if actor is not None else None

        app = await get_application(session, application_id=application_id, for_update=True)
        if app is None:
            await session.rollback()
            raise NotFoundError("Application not found.")

        if transition.owner_only and (actor is None or actor.entity_id != app.entity_id):
            await session.rollback()
            raise ForbiddenError("Application belongs to another entity.")

        from_status = app.current_status
        if from_status not in transition.sources:
            await session.rollback()
            raise InvalidStateError(from_status, transition.sources)

        now = datetime.now(timezone.utc)
        update_values: dict[str, Any] = {"current_status": transition.target, "updated_at": now}
        if transition.stamp:
            update_values[transition.stamp] = now
        if values is not None:
            update_values.update(values(app))

        try:
            swapped = await compare_and_set_status(
                session,
                application_id=application_id,
                expected_status=from_status,
                values=update_values,
            )
            if swapped and side_effect is not None:
                await side_effect(session, app)
            if swapped:
                await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception(
                "transition_failed application_id=%s operation=%s from=%s",
                application_id,
                transition.operation,
                from_status,
            )
            raise PersistenceError(f"Could not update the application: {exc.__class__.__name__}.") from exc

        if not swapped:
            # Lost the race: someone committed a different transition between
            # our read and our write.
            await session.rollback()
            current = (
                await session.execute(select(Application.current_status).where(Application.id == application_id))
            ).scalar_one_or_none()
            raise InvalidStateError(current, transition.sources)

        logger.info(
            "transition application_id=%s operation=%s from=%s to=%s actor=%s",
            application_id,
            transition.operation,
            from_status,
            transition.target,
            actor_id,
        )

        outcome = TransitionOutcome(
            application_id=application_id,
            operation=transition.operation,
            from_status=from_status,
            to_status=transition.target,
        )

        warning = await self.recorder.record_status_change(
            session,
            StatusChange(
                application_id=application_id,
                from_status=from_status,
                to_status=transition.target,
                comment=comment or transition.default_comment,
                changed_by=actor_id,
            ),
        )
        if warning is not None:
            outcome.warnings.append(warning)

        return outcome

    @staticmethod
    def _validate_deliberation(params: DeliberationInput) -> None:
        if params.meeting_date is None:
            raise WorkflowValidationError("meeting_date is required (YYYY-MM-DD).")
        if params.outcome not in DeliberationOutcome.ALL:
            raise WorkflowValidationError("outcome must be APPROVED or REJECTED.")
        for name in ("votes_for", "votes_against", "votes_abstain"):
            v = getattr(params, name)
            if v is not None and v < 0:
                raise WorkflowValidationError(f"{name} must be >= 0.")
        if params.approved_amount is not None and params.approved_amount < 0:
            raise WorkflowValidationError("approved_amount must be >= 0.")

    async def _notify_deliberation(
        self,
        session: AsyncSession,
        application_id: UUID,
        params: DeliberationInput,
    ) -> WorkflowWarning | None:
        row = (
            await session.execute(
                select(Application.object_title, Application.entity_id, Entity.name)
                .join(Entity, Entity.id == Application.entity_id)
                .where(Application.id == application_id)
            )
        ).one_or_none()
        if row is None:
            return WorkflowWarning(NOTIFICATION_WARNING, "Email not sent: application or entity not found.")
        title, entity_id, entity_name = row

        res = await session.execute(
            select(Profile.email).where(
                Profile.entity_id == entity_id,
                Profile.is_active.is_(True),
                Profile.email.is_not(None),
            )
        )
        recipients = sorted({e.strip() for e in res.scalars().all() if e and e.strip()})
        if not recipients:
            return WorkflowWarning(NOTIFICATION_WARNING, "No email addresses registered for the entity.")

        message = build_deliberation_email(
            entity_name=entity_name or "Entity",
            application_title=title or "Application",
            meeting_date=params.meeting_date,
            outcome=params.outcome,
            votes_for=params.votes_for,
            votes_against=params.votes_against,
            votes_abstain=params.votes_abstain,
            approved_amount=params.approved_amount,
        )
        sent = await self.notifier.send(recipients, message.subject, message.text)
        if not sent.ok:
            return WorkflowWarning(NOTIFICATION_WARNING, sent.warning or "Email delivery failed.")
        return None
