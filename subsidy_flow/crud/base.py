from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


TModel = TypeVar("TModel")


class BaseCRUD(Generic[TModel]):
    """Generic async CRUD helper over one mapped class.

    Notes:
    - Methods never commit. The workflow services own transaction boundaries.
    - Rows are soft-deleted: ``get`` and ``get_multi`` hide ``is_deleted``
      rows unless ``include_deleted`` is set. There is no hard delete.
    """

    def __init__(self, model: type[TModel], *, deleted_field: str = "is_deleted") -> None:
        self.model = model
        self.deleted_field = deleted_field

    def _visible(self, q, include_deleted: bool):
        if not include_deleted and hasattr(self.model, self.deleted_field):
            q = q.where(getattr(self.model, self.deleted_field).is_(False))
        return q

    async def create(self, session: AsyncSession, *, obj_in: dict[str, Any]) -> TModel:
        db_obj = self.model(**obj_in)  # type: ignore[call-arg]
        session.add(db_obj)
        await session.flush()
        return db_obj

    async def get(
        self,
        session: AsyncSession,
        *,
        id: Any,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> TModel | None:
        q = select(self.model).where(getattr(self.model, "id") == id)
        q = self._visible(q, include_deleted)
        if for_update:
            # A locking read must see the committed row, not a stale identity-map copy.
            q = q.with_for_update().execution_options(populate_existing=True)

        r = await session.execute(q)
        return r.scalar_one_or_none()

    async def get_multi(
        self,
        session: AsyncSession,
        *,
        filters: dict[str, Any] | None = None,
        order_by: Any | None = None,
        include_deleted: bool = False,
        limit: int = 100,
    ) -> list[TModel]:
        q = self._visible(select(self.model), include_deleted)

        for key, value in (filters or {}).items():
            q = q.where(getattr(self.model, key) == value)
        if order_by is not None:
            q = q.order_by(order_by)

        r = await session.execute(q.limit(max(1, limit)))
        return list(r.scalars().all())

    async def update(self, session: AsyncSession, *, db_obj: TModel, obj_in: dict[str, Any]) -> TModel:
        for field, value in obj_in.items():
            setattr(db_obj, field, value)
        await session.flush()
        return db_obj

    async def soft_delete(
        self,
        session: AsyncSession,
        *,
        db_obj: TModel,
        deleted_by: UUID | None,
        reason: str,
        extra: dict[str, Any] | None = None,
    ) -> TModel:
        return await self.update(
            session,
            db_obj=db_obj,
            obj_in={
                self.deleted_field: True,
                "deleted_at": datetime.now(timezone.utc),
                "deleted_by": deleted_by,
                "deleted_reason": reason,
                **(extra or {}),
            },
        )
