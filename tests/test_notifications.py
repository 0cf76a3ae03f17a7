import asyncio
import json
import threading
from datetime import date
from decimal import Decimal

import httpx

from subsidy_flow.config import Settings
from subsidy_flow.services import notifications
from subsidy_flow.services.notifications import (
    CeleryEmailGateway,
    ResendEmailGateway,
    build_deliberation_email,
)
from subsidy_flow.worker import dispatch


def _settings(**overrides) -> Settings:
    values = {
        "resend_api_key": "re_test_key",
        "from_email": "noreply@council.example",
        "resend_api_url": "https://mail.test/emails",
    }
    values.update(overrides)
    return Settings(**values)


def test_resend_gateway_posts_plain_text_email():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    gateway = ResendEmailGateway(_settings(), transport=httpx.MockTransport(handler))
    outcome = asyncio.run(gateway.send(["a@example.org", "b@example.org"], "Subject", "Body"))

    assert outcome.ok is True
    assert outcome.warning is None
    assert seen["url"] == "https://mail.test/emails"
    assert seen["auth"] == "Bearer re_test_key"
    assert seen["json"] == {
        "from": "noreply@council.example",
        "to": ["a@example.org", "b@example.org"],
        "subject": "Subject",
        "text": "Body",
    }


def test_resend_gateway_reports_provider_errors():
    transport = httpx.MockTransport(lambda request: httpx.Response(422, text="invalid from address"))
    gateway = ResendEmailGateway(_settings(), transport=transport)

    outcome = asyncio.run(gateway.send(["a@example.org"], "S", "B"))

    assert outcome.ok is False
    assert "422" in outcome.warning
    assert "invalid from address" in outcome.warning


def test_resend_gateway_reports_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = ResendEmailGateway(_settings(), transport=httpx.MockTransport(handler))

    outcome = asyncio.run(gateway.send(["a@example.org"], "S", "B"))

    assert outcome.ok is False
    assert "ConnectError" in outcome.warning


def test_resend_gateway_without_configuration_does_not_send():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    gateway = ResendEmailGateway(_settings(resend_api_key=None), transport=httpx.MockTransport(handler))

    outcome = asyncio.run(gateway.send(["a@example.org"], "S", "B"))

    assert outcome.ok is False
    assert "not configured" in outcome.warning


def test_celery_gateway_enqueues_task_by_name(monkeypatch):
    called: dict = {}

    def fake_send_task(name, args):
        called["name"] = name
        called["args"] = args

    monkeypatch.setattr(dispatch.celery_app, "send_task", fake_send_task)

    outcome = asyncio.run(CeleryEmailGateway().send(("a@example.org",), "S", "B"))

    assert outcome.ok is True
    assert called == {"name": "subsidy_flow.send_email", "args": [["a@example.org"], "S", "B"]}


def test_celery_gateway_publishes_off_the_event_loop(monkeypatch):
    threads: dict = {}

    def fake_send_task(name, args):
        threads["publish"] = threading.get_ident()

    monkeypatch.setattr(dispatch.celery_app, "send_task", fake_send_task)

    async def _send():
        threads["loop"] = threading.get_ident()
        return await CeleryEmailGateway().send(["a@example.org"], "S", "B")

    assert asyncio.run(_send()).ok is True
    assert threads["publish"] != threads["loop"]


def test_celery_gateway_reports_broker_failures(monkeypatch):
    def fake_send_task(name, args):
        raise ConnectionError("redis down")

    monkeypatch.setattr(dispatch.celery_app, "send_task", fake_send_task)

    outcome = asyncio.run(CeleryEmailGateway().send(["a@example.org"], "S", "B"))

    assert outcome.ok is False
    assert "ConnectionError" in outcome.warning


def test_gateway_selection_follows_celery_flag(monkeypatch):
    monkeypatch.setattr(notifications.default_settings, "celery_enabled", True)
    assert isinstance(notifications.get_notification_gateway(), CeleryEmailGateway)

    monkeypatch.setattr(notifications.default_settings, "celery_enabled", False)
    assert isinstance(notifications.get_notification_gateway(), ResendEmailGateway)


def test_approval_email_mentions_votes_amount_and_expenses():
    message = build_deliberation_email(
        entity_name="Folk Music Association",
        application_title="Summer folk festival",
        meeting_date=date(2026, 5, 12),
        outcome="APPROVED",
        votes_for=5,
        votes_against=None,
        votes_abstain=1,
        approved_amount=Decimal("1500"),
        municipality_name="Town Council",
    )

    assert message.subject == "Deliberation on the subsidy application - Summer folk festival"
    assert message.text.startswith("Dear Folk Music Association,")
    assert "council meeting of 2026-05-12, with votes: 5 in favour, - against, 1 abstentions." in message.text
    assert "Approved amount: 1500.00 EUR" in message.text
    assert "expense documentation" in message.text
    assert message.text.endswith("Kind regards,\nTown Council")


def test_rejection_email_without_votes():
    message = build_deliberation_email(
        entity_name="Sports Club",
        application_title="New nets",
        meeting_date=date(2026, 5, 12),
        outcome="REJECTED",
        votes_for=0,
        votes_against=0,
        votes_abstain=None,
        approved_amount=Decimal("10"),
    )

    assert message.subject == "Deliberation on the application - New nets"
    assert "Rejected at the council meeting of 2026-05-12." in message.text
    assert "with votes" not in message.text
    assert "Approved amount" not in message.text
    assert "will be closed" in message.text
