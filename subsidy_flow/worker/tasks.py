from __future__ import annotations

import asyncio
import logging

from subsidy_flow.services.notifications import ResendEmailGateway
from subsidy_flow.worker.celery_app import celery_app


logger = logging.getLogger("subsidy_flow.tasks")

SEND_EMAIL_TASK = "subsidy_flow.send_email"


@celery_app.task(name=SEND_EMAIL_TASK)
def send_email(recipients: list[str], subject: str, body: str) -> bool:
    """Deliver an outcome email outside the request that triggered it."""

    outcome = asyncio.run(ResendEmailGateway().send(recipients, subject, body))
    if not outcome.ok:
        logger.warning("send_email task failed recipients=%d warning=%s", len(recipients), outcome.warning)
    return outcome.ok
