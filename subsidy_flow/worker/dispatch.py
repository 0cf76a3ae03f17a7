from __future__ import annotations

from subsidy_flow.worker.celery_app import celery_app


def enqueue_send_email(*, recipients: list[str], subject: str, body: str) -> None:
    """Fire-and-forget the email task by name.

    ``send_task`` avoids importing the task module (and its HTTP client) into
    the API process.
    """

    celery_app.send_task("subsidy_flow.send_email", args=[recipients, subject, body])
