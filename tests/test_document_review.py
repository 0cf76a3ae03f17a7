import pytest
from sqlalchemy.exc import OperationalError

from subsidy_flow.core.exceptions import (
    AUDIT_WARNING,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    WorkflowValidationError,
)
from subsidy_flow.core.statuses import ApplicationStatus as S, DocumentStatus
from subsidy_flow.crud.history import list_document_reviews
from subsidy_flow.models.document import Document
from subsidy_flow.services import document_review as document_review_module
from subsidy_flow.services.document_review import DocumentReviewService, normalize_decision
from subsidy_flow.services.history import HistoryRecorder
from subsidy_flow.services.state_machine import ApplicationStateMachine
from tests._factories import (
    RecordingGateway,
    add_application,
    add_document,
    fetch_application,
    fetch_history,
    load_profile,
)


def _service(recorder=None) -> DocumentReviewService:
    machine = ApplicationStateMachine(notifier=RecordingGateway())
    return DocumentReviewService(machine, recorder=recorder)


def _review(db, doc_id, actor_id, decision, comment=None, service=None):
    service = service or _service()

    async def _run(session):
        actor = await load_profile(session, actor_id)
        return await service.review(session, doc_id, actor, decision, comment)

    return db.run(_run)


def _setup(db, actors, status=S.S3_IN_REVIEW, doc_status=DocumentStatus.PENDING):
    async def _run(session):
        app_id = await add_application(session, entity_id=actors.entity_id, status=status)
        doc_id = await add_document(session, application_id=app_id, entity_id=actors.entity_id, status=doc_status)
        return app_id, doc_id

    return db.run(_run)


def _document(db, doc_id) -> Document:
    return db.run(lambda s: s.get(Document, doc_id))


@pytest.mark.parametrize(
    "raw,expected",
    [("approve", "APPROVED"), (" APPROVED ", "APPROVED"), ("Reject", "REJECTED"), ("rejected", "REJECTED")],
)
def test_decision_aliases(raw, expected):
    assert normalize_decision(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "PENDING", "maybe"])
def test_unknown_decisions_are_invalid(raw):
    with pytest.raises(WorkflowValidationError):
        normalize_decision(raw)


@pytest.mark.parametrize("decision", sorted(DocumentStatus.DECISIONS))
def test_every_review_decision_is_accepted_as_is(decision):
    assert normalize_decision(decision.lower()) == decision


def test_approval_records_decision_without_touching_application(db, actors):
    app_id, doc_id = _setup(db, actors)

    outcome = _review(db, doc_id, actors.tech, "APPROVE", "Looks right")

    assert outcome.ok is True
    assert outcome.decision == DocumentStatus.APPROVED
    assert outcome.cascade is None
    assert outcome.warnings == []

    doc = _document(db, doc_id)
    assert doc.status == DocumentStatus.APPROVED
    assert doc.reviewed_by == actors.tech
    assert doc.review_comment == "Looks right"

    reviews = db.run(lambda s: list_document_reviews(s, document_id=doc_id))
    assert [(r.decision, r.comment, r.decided_by) for r in reviews] == [
        (DocumentStatus.APPROVED, "Looks right", actors.tech)
    ]
    assert db.run(lambda s: fetch_application(s, app_id)).current_status == S.S3_IN_REVIEW
    assert db.run(lambda s: fetch_history(s, app_id)) == []


def test_rejection_returns_application_to_entity(db, actors):
    app_id, doc_id = _setup(db, actors)

    outcome = _review(db, doc_id, actors.admin, "REJECTED", "Missing signature")

    assert outcome.cascade is not None
    assert outcome.cascade.from_status == S.S3_IN_REVIEW
    assert outcome.cascade.to_status == S.S4_RETURNED

    assert _document(db, doc_id).status == DocumentStatus.REJECTED
    assert db.run(lambda s: fetch_application(s, app_id)).current_status == S.S4_RETURNED

    history = db.run(lambda s: fetch_history(s, app_id))
    assert len(history) == 1
    assert history[0].comment == "Document rejected: budget.pdf - Missing signature"
    assert history[0].changed_by == actors.admin


def test_rejection_of_already_returned_application_does_not_cascade(db, actors):
    app_id, doc_id = _setup(db, actors, status=S.S4_RETURNED)

    outcome = _review(db, doc_id, actors.tech, "REJECT", "Blurry scan")

    assert outcome.cascade is None
    assert _document(db, doc_id).status == DocumentStatus.REJECTED
    assert db.run(lambda s: fetch_application(s, app_id)).current_status == S.S4_RETURNED
    assert db.run(lambda s: fetch_history(s, app_id)) == []


@pytest.mark.parametrize("status", [s for s in S.ALL if s != S.S4_RETURNED])
def test_rejection_returns_application_from_any_other_status(db, actors, status):
    app_id, doc_id = _setup(db, actors, status=status)

    outcome = _review(db, doc_id, actors.tech, "REJECTED", "Wrong year")

    assert outcome.cascade is not None
    assert (outcome.cascade.from_status, outcome.cascade.to_status) == (status, S.S4_RETURNED)
    assert db.run(lambda s: fetch_application(s, app_id)).current_status == S.S4_RETURNED

    history = db.run(lambda s: fetch_history(s, app_id))
    assert [(h.from_status, h.to_status) for h in history] == [(status, S.S4_RETURNED)]


def test_rejection_requires_comment(db, actors):
    _, doc_id = _setup(db, actors)

    with pytest.raises(WorkflowValidationError):
        _review(db, doc_id, actors.tech, "REJECTED", "  ")

    assert _document(db, doc_id).status == DocumentStatus.PENDING


@pytest.mark.parametrize("doc_status", [DocumentStatus.APPROVED, DocumentStatus.REJECTED])
def test_only_pending_documents_can_be_reviewed(db, actors, doc_status):
    _, doc_id = _setup(db, actors, doc_status=doc_status)

    with pytest.raises(InvalidStateError) as exc_info:
        _review(db, doc_id, actors.tech, "APPROVED")

    assert exc_info.value.current == doc_status
    assert "Invalid document state" in exc_info.value.message
    assert db.run(lambda s: list_document_reviews(s, document_id=doc_id)) == []


def test_entity_and_president_cannot_review(db, actors):
    _, doc_id = _setup(db, actors)

    for actor_id in (actors.entity_user, actors.president):
        with pytest.raises(ForbiddenError):
            _review(db, doc_id, actor_id, "APPROVED")


def test_unknown_document(db, actors):
    import uuid

    with pytest.raises(NotFoundError):
        _review(db, uuid.uuid4(), actors.tech, "APPROVED")


class _FailingReviewRecorder(HistoryRecorder):
    async def _insert(self, session, row) -> None:
        raise OperationalError("INSERT INTO document_review_history", {}, Exception("locked"))


def test_failed_review_record_is_a_warning(db, actors):
    _, doc_id = _setup(db, actors)

    outcome = _review(db, doc_id, actors.tech, "APPROVED", service=_service(recorder=_FailingReviewRecorder()))

    assert [w.kind for w in outcome.warnings] == [AUDIT_WARNING]
    assert _document(db, doc_id).status == DocumentStatus.APPROVED


def test_losing_both_writes_is_a_persistence_failure(db, actors, monkeypatch):
    _, doc_id = _setup(db, actors)

    async def broken_update(session, **kwargs):
        raise OperationalError("UPDATE documents", {}, Exception("locked"))

    monkeypatch.setattr(document_review_module, "record_review_decision", broken_update)

    with pytest.raises(PersistenceError):
        _review(db, doc_id, actors.tech, "APPROVED", service=_service(recorder=_FailingReviewRecorder()))

    assert _document(db, doc_id).status == DocumentStatus.PENDING


def test_failed_status_update_alone_is_a_warning(db, actors, monkeypatch):
    _, doc_id = _setup(db, actors)

    async def broken_update(session, **kwargs):
        raise OperationalError("UPDATE documents", {}, Exception("locked"))

    monkeypatch.setattr(document_review_module, "record_review_decision", broken_update)

    outcome = _review(db, doc_id, actors.tech, "APPROVED")

    assert [w.kind for w in outcome.warnings] == [AUDIT_WARNING]
    assert _document(db, doc_id).status == DocumentStatus.PENDING
    reviews = db.run(lambda s: list_document_reviews(s, document_id=doc_id))
    assert [r.decision for r in reviews] == [DocumentStatus.APPROVED]
