from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subsidy_flow.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    UnauthenticatedError,
    WorkflowValidationError,
    WorkflowWarning,
    join_warnings,
)
from subsidy_flow.core.statuses import ApplicationOrigin, ApplicationStatus as S, DocumentStatus, Role
from subsidy_flow.crud.application import (
    application_crud,
    find_possible_duplicates,
    get_application,
    list_applications,
    soft_delete_drafts,
)
from subsidy_flow.crud.document import document_crud, list_documents_for_application
from subsidy_flow.crud.history import list_status_history
from subsidy_flow.models.application import Application
from subsidy_flow.models.document import Document
from subsidy_flow.models.history import ApplicationStatusHistory
from subsidy_flow.models.profile import Profile
from subsidy_flow.services.history import HistoryRecorder, StatusChange
from subsidy_flow.services.roles import RoleAuthorizer
from subsidy_flow.services.state_machine import BACKOFFICE, ActorRef, can_edit_application, can_upload_application_docs
from subsidy_flow.utils.text import normalize_text

logger = logging.getLogger("subsidy_flow.applications")

STAFF = frozenset({Role.ADMIN, Role.TECH, Role.VALIDATOR, Role.PRESIDENT})
EDITABLE_ORDERED = tuple(s for s in S.ALL if s in S.EDITABLE)

MIN_TITLE_LENGTH = 3
DUPLICATE_LIMIT = 5


@dataclass
class ApplicationResult:
    application: Application
    possible_duplicates: list[Application] = field(default_factory=list)
    warnings: list[WorkflowWarning] = field(default_factory=list)

    ok = True

    @property
    def warning(self) -> str | None:
        return join_warnings(self.warnings)


@dataclass(frozen=True)
class DeleteManyResult:
    deleted: list[UUID]
    skipped: list[UUID]


@dataclass(frozen=True)
class ApplicationPage:
    items: list[Application]
    total: int
    page: int
    page_size: int


def _status_filter(status: str | None) -> tuple[str, ...] | None:
    if status is None:
        return None
    status = status.strip().upper()
    if status not in S.ALL:
        raise WorkflowValidationError(f"Unknown status: {status}.")
    return (status,)


def _validate_title(title: str | None) -> str:
    title = (title or "").strip()
    if len(title) < MIN_TITLE_LENGTH:
        raise WorkflowValidationError(f"object_title must have at least {MIN_TITLE_LENGTH} characters.")
    return title


def _validate_amount(amount: Decimal | None) -> Decimal:
    if amount is None:
        raise WorkflowValidationError("requested_amount is required.")
    amount = Decimal(amount)
    if amount < 0:
        raise WorkflowValidationError("requested_amount must be >= 0.")
    return amount


async def _commit(session: AsyncSession, action: str) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("commit_failed action=%s", action)
        raise PersistenceError(f"Could not {action}: {exc.__class__.__name__}.") from exc


class ApplicationService:
    """Entity-side management of applications and their candidacy documents.

    Everything here acts on applications owned by the actor's entity. Status
    changes are not made here; see ``ApplicationStateMachine``.
    """

    def __init__(self, *, authorizer: RoleAuthorizer | None = None, recorder: HistoryRecorder | None = None) -> None:
        self.authorizer = authorizer or RoleAuthorizer()
        self.recorder = recorder or HistoryRecorder()

    async def create_application(
        self,
        session: AsyncSession,
        actor: Profile | None,
        *,
        category_id: UUID,
        object_title: str,
        requested_amount: Decimal,
    ) -> ApplicationResult:
        ref = await self._require_entity_actor(session, actor)

        title = _validate_title(object_title)
        amount = _validate_amount(requested_amount)
        normalized = normalize_text(title)

        duplicates = await find_possible_duplicates(
            session,
            entity_id=ref.entity_id,
            object_normalized=normalized,
            limit=DUPLICATE_LIMIT,
        )

        now = datetime.now(timezone.utc)
        try:
            app = await application_crud.create(
                session,
                obj_in={
                    "entity_id": ref.entity_id,
                    "category_id": category_id,
                    "object_title": title,
                    "object_normalized": normalized,
                    "requested_amount": amount,
                    "current_status": S.S1_DRAFT,
                    "origin": ApplicationOrigin.SPONTANEOUS,
                    "created_by": ref.id,
                    "created_at": now,
                    "updated_at": now,
                },
            )
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception("create_application_failed entity_id=%s", ref.entity_id)
            raise PersistenceError(f"Could not create the application: {exc.__class__.__name__}.") from exc
        app_id = app.id
        await _commit(session, "create the application")
        await session.refresh(app)

        logger.info(
            "application_created application_id=%s entity_id=%s duplicates=%d",
            app_id,
            ref.entity_id,
            len(duplicates),
        )

        result = ApplicationResult(application=app, possible_duplicates=duplicates)
        warning = await self.recorder.record_status_change(
            session,
            StatusChange(
                application_id=app_id,
                from_status=None,
                to_status=S.S1_DRAFT,
                comment="Application created.",
                changed_by=ref.id,
            ),
        )
        if warning is not None:
            result.warnings.append(warning)
            # The failed append rolled the session back and expired ``app``.
            await session.refresh(app)
            for dup in duplicates:
                await session.refresh(dup)
        return result

    async def update_application(
        self,
        session: AsyncSession,
        actor: Profile | None,
        application_id: UUID,
        *,
        category_id: UUID | None = None,
        object_title: str | None = None,
        requested_amount: Decimal | None = None,
    ) -> ApplicationResult:
        ref = await self._require_entity_actor(session, actor)
        app = await self._owned_application(session, ref, application_id, for_update=True)

        if not can_edit_application(app):
            current = app.current_status
            await session.rollback()
            raise InvalidStateError(current, EDITABLE_ORDERED)

        changes: dict = {}
        if category_id is not None:
            changes["category_id"] = category_id
        if object_title is not None:
            title = _validate_title(object_title)
            changes["object_title"] = title
            changes["object_normalized"] = normalize_text(title)
        if requested_amount is not None:
            changes["requested_amount"] = _validate_amount(requested_amount)

        duplicates: list[Application] = []
        if "object_normalized" in changes:
            duplicates = await find_possible_duplicates(
                session,
                entity_id=ref.entity_id,
                object_normalized=changes["object_normalized"],
                exclude_id=application_id,
                limit=DUPLICATE_LIMIT,
            )

        if changes:
            changes["updated_at"] = datetime.now(timezone.utc)
            try:
                await application_crud.update(session, db_obj=app, obj_in=changes)
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Could not update the application: {exc.__class__.__name__}.") from exc
        await _commit(session, "update the application")

        logger.info("application_updated application_id=%s fields=%s", application_id, ",".join(sorted(changes)))
        return ApplicationResult(application=app, possible_duplicates=duplicates)

    async def delete_application(
        self,
        session: AsyncSession,
        actor: Profile | None,
        application_id: UUID,
        *,
        reason: str | None = None,
    ) -> None:
        """Soft-delete a draft. Anything past S1_DRAFT is part of the record."""

        ref = await self._require_entity_actor(session, actor)
        app = await self._owned_application(session, ref, application_id, for_update=True)

        if app.current_status != S.S1_DRAFT:
            current = app.current_status
            await session.rollback()
            raise InvalidStateError(current, (S.S1_DRAFT,))

        await application_crud.soft_delete(
            session,
            db_obj=app,
            deleted_by=ref.id,
            reason=(reason or "").strip() or "Deleted by the entity.",
            extra={"updated_at": datetime.now(timezone.utc)},
        )
        await _commit(session, "delete the application")
        logger.info("application_deleted application_id=%s actor=%s", application_id, ref.id)

    async def delete_applications(
        self,
        session: AsyncSession,
        actor: Profile | None,
        application_ids: list[UUID],
        *,
        reason: str | None = None,
    ) -> DeleteManyResult:
        ref = await self._require_entity_actor(session, actor)

        requested = list(dict.fromkeys(application_ids))
        if not requested:
            raise WorkflowValidationError("No applications selected.")

        try:
            deleted = await soft_delete_drafts(
                session,
                application_ids=requested,
                entity_id=ref.entity_id,
                deleted_by=ref.id,
                reason=(reason or "").strip() or "Deleted by the entity.",
            )
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError(f"Could not delete the applications: {exc.__class__.__name__}.") from exc
        await _commit(session, "delete the applications")

        done = set(deleted)
        logger.info("applications_deleted count=%d skipped=%d", len(done), len(requested) - len(done))
        return DeleteManyResult(
            deleted=[i for i in requested if i in done],
            skipped=[i for i in requested if i not in done],
        )

    async def attach_document(
        self,
        session: AsyncSession,
        actor: Profile | None,
        application_id: UUID,
        *,
        document_type_id: UUID,
        storage_path: str,
        original_name: str,
        mime_type: str | None = None,
        size_bytes: int | None = None,
    ) -> Document:
        ref = await self._require_entity_actor(session, actor)
        app = await self._owned_application(session, ref, application_id, for_update=True)

        if not can_upload_application_docs(app):
            current = app.current_status
            await session.rollback()
            raise InvalidStateError(current, EDITABLE_ORDERED)

        storage_path = (storage_path or "").strip()
        original_name = (original_name or "").strip()
        if not storage_path:
            raise WorkflowValidationError("storage_path is required.")
        if not original_name:
            raise WorkflowValidationError("original_name is required.")
        if size_bytes is not None and size_bytes < 0:
            raise WorkflowValidationError("size_bytes must be >= 0.")

        try:
            doc = await document_crud.create(
                session,
                obj_in={
                    "application_id": application_id,
                    "entity_id": ref.entity_id,
                    "document_type_id": document_type_id,
                    "storage_path": storage_path,
                    "original_name": original_name,
                    "mime_type": mime_type,
                    "size_bytes": size_bytes,
                    "status": DocumentStatus.PENDING,
                    "uploaded_by": ref.id,
                    "uploaded_at": datetime.now(timezone.utc),
                },
            )
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceError(f"Could not register the document: {exc.__class__.__name__}.") from exc
        await _commit(session, "register the document")
        await session.refresh(doc)

        logger.info("document_attached document_id=%s application_id=%s", doc.id, application_id)
        return doc

    async def delete_document(self, session: AsyncSession, actor: Profile | None, document_id: UUID) -> None:
        ref = await self._require_entity_actor(session, actor)

        doc = await document_crud.get(session, id=document_id, for_update=True)
        if doc is None or doc.entity_id != ref.entity_id:
            await session.rollback()
            raise NotFoundError("Document not found.")
        if doc.status != DocumentStatus.PENDING:
            current = doc.status
            await session.rollback()
            raise InvalidStateError(current, (DocumentStatus.PENDING,), subject="document")

        app = await get_application(session, application_id=doc.application_id)
        if app is None or not can_upload_application_docs(app):
            current = app.current_status if app is not None else None
            await session.rollback()
            raise InvalidStateError(current, EDITABLE_ORDERED)

        await document_crud.soft_delete(session, db_obj=doc, deleted_by=ref.id, reason="Removed by the entity.")
        await _commit(session, "delete the document")
        logger.info("document_deleted document_id=%s actor=%s", document_id, ref.id)

    async def list_for_entity(
        self,
        session: AsyncSession,
        actor: Profile | None,
        *,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ApplicationPage:
        ref = await self._require_entity_actor(session, actor)
        items, total = await list_applications(
            session,
            entity_id=ref.entity_id,
            statuses=_status_filter(status),
            page=page,
            page_size=page_size,
        )
        return ApplicationPage(items=items, total=total, page=page, page_size=page_size)

    async def list_for_backoffice(
        self,
        session: AsyncSession,
        actor: Profile | None,
        *,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ApplicationPage:
        """Every entity's applications except drafts, which the back office never sees."""

        await self.authorizer.require_any(session, actor, BACKOFFICE)
        items, total = await list_applications(
            session,
            statuses=_status_filter(status),
            exclude_statuses=(S.S1_DRAFT,),
            page=page,
            page_size=page_size,
        )
        return ApplicationPage(items=items, total=total, page=page, page_size=page_size)

    async def list_for_president(
        self,
        session: AsyncSession,
        actor: Profile | None,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> ApplicationPage:
        await self.authorizer.require_any(session, actor, {Role.PRESIDENT})
        items, total = await list_applications(
            session,
            statuses=(S.S6_READY_FOR_PRESIDENT,),
            page=page,
            page_size=page_size,
        )
        return ApplicationPage(items=items, total=total, page=page, page_size=page_size)

    async def get_detail(self, session: AsyncSession, actor: Profile | None, application_id: UUID) -> Application:
        app = await get_application(session, application_id=application_id)
        if app is None:
            raise NotFoundError("Application not found.")
        await self._require_read_access(session, actor, app.entity_id)
        return app

    async def get_history(
        self, session: AsyncSession, actor: Profile | None, application_id: UUID
    ) -> list[ApplicationStatusHistory]:
        await self.get_detail(session, actor, application_id)
        return await list_status_history(session, application_id=application_id)

    async def get_documents(self, session: AsyncSession, actor: Profile | None, application_id: UUID) -> list[Document]:
        await self.get_detail(session, actor, application_id)
        return await list_documents_for_application(session, application_id=application_id)

    async def _require_entity_actor(self, session: AsyncSession, actor: Profile | None) -> ActorRef:
        await self.authorizer.require_any(session, actor, {Role.ENTITY})
        if actor.entity_id is None:
            raise ForbiddenError("Profile is not linked to an entity.")
        return ActorRef.of(actor)

    async def _owned_application(
        self,
        session: AsyncSession,
        ref: ActorRef,
        application_id: UUID,
        *,
        for_update: bool = False,
    ) -> Application:
        app = await get_application(session, application_id=application_id, for_update=for_update)
        if app is None:
            await session.rollback()
            raise NotFoundError("Application not found.")
        if app.entity_id != ref.entity_id:
            await session.rollback()
            raise ForbiddenError("Application belongs to another entity.")
        return app

    async def _require_read_access(self, session: AsyncSession, actor: Profile | None, entity_id: UUID) -> None:
        if actor is None or not actor.is_active:
            raise UnauthenticatedError("Not authenticated.")
        roles = await self.authorizer.roles_of(session, actor)
        if roles & STAFF:
            return
        if Role.ENTITY in roles and actor.entity_id == entity_id:
            return
        raise ForbiddenError("Not allowed to read this application.")
