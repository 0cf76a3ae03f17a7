"""Best-effort outbound email.

Nothing here raises into the workflow: every failure becomes a
``NotificationOutcome`` with ``ok=False`` and a human readable warning.

Delivery goes straight to a Resend-compatible HTTP API, or, when
``CELERY_ENABLED=1``, through the ``subsidy_flow.send_email`` task so the
request never waits on the provider.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import httpx

from subsidy_flow.config import Settings, settings as default_settings
from subsidy_flow.core.statuses import DeliberationOutcome

logger = logging.getLogger("subsidy_flow.notifications")


@dataclass(frozen=True)
class NotificationOutcome:
    ok: bool
    warning: str | None = None


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    text: str


class NotificationGateway:
    """Delivers a plain-text email to a list of recipients."""

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> NotificationOutcome:
        raise NotImplementedError


class ResendEmailGateway(NotificationGateway):
    def __init__(self, config: Settings | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = config or default_settings
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._settings.resend_api_key and self._settings.from_email)

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> NotificationOutcome:
        if not self.is_configured():
            return NotificationOutcome(False, "Email not sent: RESEND_API_KEY and FROM_EMAIL are not configured.")

        payload = {
            "from": self._settings.from_email,
            "to": list(recipients),
            "subject": subject,
            "text": body,
        }
        headers = {"Authorization": f"Bearer {self._settings.resend_api_key}"}

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.notification_timeout_seconds,
                transport=self._transport,
            ) as client:
                res = await client.post(self._settings.resend_api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("email_send_failed recipients=%d error=%s", len(recipients), exc)
            return NotificationOutcome(False, f"Email not sent: {exc.__class__.__name__}.")

        if res.status_code >= 400:
            logger.warning("email_send_rejected status=%s body=%s", res.status_code, res.text[:200])
            return NotificationOutcome(False, f"Email not sent (provider): {res.status_code} {res.text[:200]}".rstrip())

        logger.info("email_sent recipients=%d subject=%r", len(recipients), subject)
        return NotificationOutcome(True)


class CeleryEmailGateway(NotificationGateway):
    """Hands delivery to the worker; only enqueue failures are reported."""

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> NotificationOutcome:
        from subsidy_flow.worker.dispatch import enqueue_send_email

        try:
            # Publishing blocks while kombu retries an unreachable broker.
            await asyncio.to_thread(enqueue_send_email, recipients=list(recipients), subject=subject, body=body)
        except Exception as exc:  # broker down, misconfigured, ...
            logger.exception("email_enqueue_failed recipients=%d", len(recipients))
            return NotificationOutcome(False, f"Email not queued: {exc.__class__.__name__}.")
        return NotificationOutcome(True)


def get_notification_gateway() -> NotificationGateway:
    if default_settings.celery_enabled:
        return CeleryEmailGateway()
    return ResendEmailGateway()


def _format_votes(votes_for: int | None, votes_against: int | None, votes_abstain: int | None) -> str:
    def fmt(v: int | None) -> str:
        return "-" if v is None else str(v)

    return f"{fmt(votes_for)} in favour, {fmt(votes_against)} against, {fmt(votes_abstain)} abstentions"


def build_deliberation_email(
    *,
    entity_name: str,
    application_title: str,
    meeting_date: date,
    outcome: str,
    votes_for: int | None,
    votes_against: int | None,
    votes_abstain: int | None,
    approved_amount: Decimal | None,
    municipality_name: str | None = None,
) -> EmailMessage:
    approved = outcome == DeliberationOutcome.APPROVED
    verb = "Approved" if approved else "Rejected"
    meeting = meeting_date.isoformat()

    if votes_for or votes_against or votes_abstain:
        voting = f"{verb} at the council meeting of {meeting}, with votes: {_format_votes(votes_for, votes_against, votes_abstain)}."
    else:
        voting = f"{verb} at the council meeting of {meeting}."

    amount_line = ""
    if approved and approved_amount is not None:
        amount_line = f"\n\nApproved amount: {Decimal(approved_amount):.2f} EUR"

    if approved:
        next_step = (
            "\n\nThe process now moves to financial execution and awaits the expense "
            "documentation (invoices, receipts and any other supporting documents) for "
            "technical validation before it is forwarded to the finance department."
        )
        subject = f"Deliberation on the subsidy application - {application_title}"
    else:
        next_step = "\n\nThe process will be closed under the terms of the deliberation."
        subject = f"Deliberation on the application - {application_title}"

    signature = municipality_name or default_settings.municipality_name
    text = f"Dear {entity_name},\n\n{voting}{amount_line}{next_step}\n\nKind regards,\n{signature}"
    return EmailMessage(subject=subject, text=text)
