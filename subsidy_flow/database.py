from __future__ import annotations

from collections.abc import AsyncGenerator
import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from subsidy_flow.config import settings


_engine_kwargs: dict = {"pool_pre_ping": True}

# NOTE: FastAPI's sync TestClient runs requests through an AnyIO portal with
# its own event loop; pooled async connections must not be shared across loops.
# PYTEST_CURRENT_TEST is only set while a test is running, so check sys.modules
# too (collection imports this module early).
if os.getenv("PYTEST_CURRENT_TEST") or ("pytest" in sys.modules):
    _engine_kwargs["poolclass"] = NullPool

engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
