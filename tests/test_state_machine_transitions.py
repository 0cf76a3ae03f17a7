from decimal import Decimal

import pytest

from subsidy_flow.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    UnauthenticatedError,
    WorkflowValidationError,
)
from subsidy_flow.core.statuses import ApplicationStatus as S
from subsidy_flow.crud.decision import get_president_decision
from subsidy_flow.services.state_machine import (
    TRANSITIONS,
    ApplicationStateMachine,
    Operation,
    can_edit_application,
    can_upload_application_docs,
)
from tests._factories import (
    RecordingGateway,
    add_application,
    fetch_application,
    fetch_history,
    load_profile,
)


def _machine() -> ApplicationStateMachine:
    return ApplicationStateMachine(notifier=RecordingGateway())


def _apply(db, operation, app_id, actor_id, **kwargs):
    async def _run(session):
        actor = await load_profile(session, actor_id)
        return await _machine().apply(session, operation, app_id, actor, **kwargs)

    return db.run(_run)


def _status(db, app_id) -> str:
    async def _run(session):
        return (await fetch_application(session, app_id)).current_status

    return db.run(_run)


def test_happy_path_reaches_president_with_one_history_row_per_step(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id))

    steps = [
        (Operation.SUBMIT, actors.entity_user, {}, S.S2_SUBMITTED),
        (Operation.BEGIN_REVIEW, actors.tech, {}, S.S3_IN_REVIEW),
        (Operation.VALIDATE, actors.admin, {}, S.S5_TECH_VALIDATED),
        (Operation.SEND_TO_PRESIDENT, actors.tech, {}, S.S6_READY_FOR_PRESIDENT),
    ]
    previous = S.S1_DRAFT
    for operation, actor_id, kwargs, expected in steps:
        outcome = _apply(db, operation, app_id, actor_id, **kwargs)
        assert outcome.ok is True
        assert outcome.from_status == previous
        assert outcome.to_status == expected
        assert outcome.warnings == []
        previous = expected

    async def _check(session):
        app = await fetch_application(session, app_id)
        history = await fetch_history(session, app_id)
        return app, history

    app, history = db.run(_check)
    assert app.current_status == S.S6_READY_FOR_PRESIDENT
    assert app.submitted_at is not None
    assert app.tech_validated_at is not None
    assert app.sent_to_meeting_at is None

    assert [(h.from_status, h.to_status) for h in history] == [
        (S.S1_DRAFT, S.S2_SUBMITTED),
        (S.S2_SUBMITTED, S.S3_IN_REVIEW),
        (S.S3_IN_REVIEW, S.S5_TECH_VALIDATED),
        (S.S5_TECH_VALIDATED, S.S6_READY_FOR_PRESIDENT),
    ]
    assert [h.changed_by for h in history] == [actors.entity_user, actors.tech, actors.admin, actors.tech]
    assert history[2].comment == "Technically validated."


def test_submit_accepts_zero_requested_amount(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, requested_amount=Decimal("0")))

    outcome = _apply(db, Operation.SUBMIT, app_id, actors.entity_user)

    assert outcome.to_status == S.S2_SUBMITTED
    assert _status(db, app_id) == S.S2_SUBMITTED


def test_resubmit_after_return_is_allowed(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S4_RETURNED))

    outcome = _apply(db, Operation.SUBMIT, app_id, actors.entity_colleague)

    assert outcome.from_status == S.S4_RETURNED
    assert outcome.to_status == S.S2_SUBMITTED


def test_validate_directly_from_returned(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S4_RETURNED))

    outcome = _apply(db, Operation.VALIDATE, app_id, actors.tech, comment="Corrections checked")

    assert outcome.to_status == S.S5_TECH_VALIDATED
    history = db.run(lambda s: fetch_history(s, app_id))
    assert history[-1].comment == "Corrections checked"


def _off_table_cases():
    for operation, transition in TRANSITIONS.items():
        if transition.system_only or transition.needs_payload:
            continue
        for status in S.ALL:
            if status not in transition.sources:
                yield operation, status


@pytest.mark.parametrize("operation,status", list(_off_table_cases()))
def test_off_table_transition_is_rejected_and_leaves_status_unchanged(db, actors, operation, status):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=status))
    actor_id = actors.entity_user if operation == Operation.SUBMIT else actors.tech

    with pytest.raises(InvalidStateError) as exc_info:
        _apply(db, operation, app_id, actor_id, comment="Some comment")

    assert exc_info.value.current == status
    assert exc_info.value.required == TRANSITIONS[operation].sources
    assert _status(db, app_id) == status
    assert db.run(lambda s: fetch_history(s, app_id)) == []


def test_invalid_state_message_names_current_and_expected(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S2_SUBMITTED))

    with pytest.raises(InvalidStateError) as exc_info:
        _apply(db, Operation.VALIDATE, app_id, actors.tech)

    assert exc_info.value.message == (
        "Invalid application state: S2_SUBMITTED. Expected: S3_IN_REVIEW or S4_RETURNED."
    )


@pytest.mark.parametrize("comment", [None, "", "   "])
def test_return_requires_a_comment(db, actors, comment):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S3_IN_REVIEW))

    with pytest.raises(WorkflowValidationError):
        _apply(db, Operation.RETURN, app_id, actors.tech, comment=comment)

    assert _status(db, app_id) == S.S3_IN_REVIEW


def test_return_records_comment_in_history(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S5_TECH_VALIDATED))

    outcome = _apply(db, Operation.RETURN, app_id, actors.tech, comment="  Missing budget breakdown ")

    assert outcome.to_status == S.S4_RETURNED
    history = db.run(lambda s: fetch_history(s, app_id))
    assert history[-1].comment == "Missing budget breakdown"


def test_entity_cannot_run_backoffice_operations(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S2_SUBMITTED))

    with pytest.raises(ForbiddenError):
        _apply(db, Operation.BEGIN_REVIEW, app_id, actors.entity_user)
    assert _status(db, app_id) == S.S2_SUBMITTED


def test_roles_do_not_inherit(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S3_IN_REVIEW))

    with pytest.raises(ForbiddenError):
        _apply(db, Operation.VALIDATE, app_id, actors.validator)
    with pytest.raises(ForbiddenError):
        _apply(db, Operation.VALIDATE, app_id, actors.president)

    draft_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id))
    with pytest.raises(ForbiddenError):
        _apply(db, Operation.SUBMIT, draft_id, actors.admin)


def test_entity_cannot_submit_another_entitys_application(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id))

    with pytest.raises(ForbiddenError):
        _apply(db, Operation.SUBMIT, app_id, actors.other_entity_user)
    assert _status(db, app_id) == S.S1_DRAFT


@pytest.mark.parametrize("who", ["missing", "inactive"])
def test_unauthenticated_actor_is_rejected(db, actors, who):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S2_SUBMITTED))
    actor_id = None if who == "missing" else actors.inactive_tech

    with pytest.raises(UnauthenticatedError):
        _apply(db, Operation.BEGIN_REVIEW, app_id, actor_id)


def test_actor_without_roles_is_forbidden(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S2_SUBMITTED))

    with pytest.raises(ForbiddenError):
        _apply(db, Operation.BEGIN_REVIEW, app_id, actors.no_roles)


def test_system_operations_cannot_be_requested(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S9_DELIBERATED))

    for operation in (Operation.DELIBERATION_APPROVED, Operation.DELIBERATION_REJECTED, Operation.DOCUMENT_REJECTED):
        with pytest.raises(ForbiddenError):
            _apply(db, operation, app_id, actors.admin, comment="x")
    assert _status(db, app_id) == S.S9_DELIBERATED


def test_decision_operations_need_their_dedicated_entry_point(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S6_READY_FOR_PRESIDENT))

    with pytest.raises(WorkflowValidationError):
        _apply(db, Operation.PRESIDENT_APPROVE, app_id, actors.president)
    assert _status(db, app_id) == S.S6_READY_FOR_PRESIDENT


def test_unknown_operation_is_rejected(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S2_SUBMITTED))

    with pytest.raises(WorkflowValidationError):
        _apply(db, "ARCHIVE", app_id, actors.admin)


def test_deleted_application_is_not_found(db, actors):
    from subsidy_flow.core.exceptions import NotFoundError

    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, is_deleted=True))

    with pytest.raises(NotFoundError):
        _apply(db, Operation.SUBMIT, app_id, actors.entity_user)


def test_president_return_for_correction_then_resubmission(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S6_READY_FOR_PRESIDENT))

    async def _decide(session):
        president = await load_profile(session, actors.president)
        return await _machine().president_decide(
            session, app_id, president, "return_for_correction", "Clarify the event dates"
        )

    outcome = db.run(_decide)
    assert outcome.to_status == S.S4_RETURNED

    decision = db.run(lambda s: get_president_decision(s, application_id=app_id))
    assert decision.decision == "RETURN_FOR_CORRECTION"
    assert decision.comment == "Clarify the event dates"
    assert decision.decided_by == actors.president

    resubmitted = _apply(db, Operation.SUBMIT, app_id, actors.entity_user)
    assert resubmitted.to_status == S.S2_SUBMITTED

    history = db.run(lambda s: fetch_history(s, app_id))
    assert [(h.from_status, h.to_status) for h in history] == [
        (S.S6_READY_FOR_PRESIDENT, S.S4_RETURNED),
        (S.S4_RETURNED, S.S2_SUBMITTED),
    ]
    assert history[0].comment == "Clarify the event dates"


def test_president_return_requires_comment(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S6_READY_FOR_PRESIDENT))

    async def _decide(session):
        president = await load_profile(session, actors.president)
        return await _machine().president_decide(session, app_id, president, "RETURN_FOR_CORRECTION", " ")

    with pytest.raises(WorkflowValidationError):
        db.run(_decide)
    assert _status(db, app_id) == S.S6_READY_FOR_PRESIDENT
    assert db.run(lambda s: get_president_decision(s, application_id=app_id)) is None


def test_president_approval_stamps_meeting_date_and_overwrites_decision(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S6_READY_FOR_PRESIDENT))

    async def _decide(session, decision, comment=None):
        president = await load_profile(session, actors.president)
        return await _machine().president_decide(session, app_id, president, decision, comment)

    db.run(lambda s: _decide(s, "RETURN_FOR_CORRECTION", "First pass"))
    _apply(db, Operation.SUBMIT, app_id, actors.entity_user)
    _apply(db, Operation.BEGIN_REVIEW, app_id, actors.tech)
    _apply(db, Operation.VALIDATE, app_id, actors.tech)
    _apply(db, Operation.SEND_TO_PRESIDENT, app_id, actors.tech)
    outcome = db.run(lambda s: _decide(s, "APPROVE_TO_PROCEED"))

    assert outcome.to_status == S.S8_SENT_TO_MEETING
    app = db.run(lambda s: fetch_application(s, app_id))
    assert app.sent_to_meeting_at is not None

    decision = db.run(lambda s: get_president_decision(s, application_id=app_id))
    assert decision.decision == "APPROVE_TO_PROCEED"
    assert decision.comment is None


def test_president_rejects_unknown_decision_and_non_presidents(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id, status=S.S6_READY_FOR_PRESIDENT))

    async def _decide(session, actor_id, decision):
        actor = await load_profile(session, actor_id)
        return await _machine().president_decide(session, app_id, actor, decision)

    with pytest.raises(WorkflowValidationError):
        db.run(lambda s: _decide(s, actors.president, "MAYBE"))
    with pytest.raises(ForbiddenError):
        db.run(lambda s: _decide(s, actors.admin, "APPROVE_TO_PROCEED"))
    assert _status(db, app_id) == S.S6_READY_FOR_PRESIDENT


def test_capability_checks_follow_editable_window(db, actors):
    async def _app(session, status, deleted=False):
        app_id = await add_application(session, entity_id=actors.entity_id, status=status, is_deleted=deleted)
        return await fetch_application(session, app_id)

    for status in S.ALL:
        app = db.run(lambda s: _app(s, status))
        expected = status in {S.S1_DRAFT, S.S2_SUBMITTED, S.S3_IN_REVIEW, S.S4_RETURNED}
        assert can_edit_application(app) is expected
        assert can_upload_application_docs(app) is expected

    deleted = db.run(lambda s: _app(s, S.S1_DRAFT, deleted=True))
    assert can_edit_application(deleted) is False
    assert can_upload_application_docs(deleted) is False


def test_wrappers_delegate_to_table(db, actors):
    app_id = db.run(lambda s: add_application(s, entity_id=actors.entity_id))
    machine = _machine()

    async def _walk(session):
        entity = await load_profile(session, actors.entity_user)
        tech = await load_profile(session, actors.tech)
        await machine.submit(session, app_id, entity)
        await machine.begin_review(session, app_id, tech)
        await machine.return_to_entity(session, app_id, tech, "Fix the budget")
        await machine.submit(session, app_id, entity)
        await machine.begin_review(session, app_id, tech)
        await machine.validate(session, app_id, tech)
        return await machine.send_to_president(session, app_id, tech)

    outcome = db.run(_walk)
    assert outcome.to_status == S.S6_READY_FOR_PRESIDENT
    assert len(db.run(lambda s: fetch_history(s, app_id))) == 7
