from __future__ import annotations

from celery import Celery

from subsidy_flow.config import settings


def make_celery() -> Celery:
    """Create the Celery app.

    Note: we keep this in a function so tests can import tasks without eagerly
    touching global state beyond settings.
    """

    celery = Celery(
        "subsidy_flow",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["subsidy_flow.worker.tasks"],
    )

    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
    )

    return celery


celery_app = make_celery()
