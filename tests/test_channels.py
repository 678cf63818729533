import json

import httpx
import pytest

from fleetcheck.config import settings
from fleetcheck.errors import NotificationError
from fleetcheck.models import NotificationChannel
from fleetcheck.services.channels import (
    EmailSender,
    NotificationMessage,
    SlackSender,
    WebhookSender,
    build_sender,
    parse_recipients,
)

MESSAGE = NotificationMessage(
    subject="CRITICAL - b.example - DOWNTIME",
    body="HTTP request failed",
    event="alert",
    severity="CRITICAL",
    data={"domain": "b.example", "escalation_level": 2},
)


def test_parse_recipients() -> None:
    assert parse_recipients("a@example.com, b@example.com,,") == ["a@example.com", "b@example.com"]
    assert parse_recipients(["ops@example.com", " "]) == ["ops@example.com"]
    assert parse_recipients(None) == []


def test_build_sender_by_type() -> None:
    assert isinstance(build_sender("SLACK", {}), SlackSender)
    assert isinstance(build_sender("WEBHOOK"), WebhookSender)
    with pytest.raises(NotificationError):
        build_sender("PAGER")


@pytest.mark.asyncio
async def test_webhook_sends_json_with_bearer_token(mock_http) -> None:
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(204)

    mock_http(handler)
    sender = WebhookSender({
        "url": "https://hooks.example/alerts",
        "method": "put",
        "headers": {"X-Source": "fleetcheck"},
        "authentication": {"type": "BEARER", "token": "s3cret"},
    })

    await sender.send(MESSAGE, ["ops@example.com"])

    request = captured[0]
    payload = json.loads(request.content)
    assert request.method == "PUT"
    assert request.headers["authorization"] == "Bearer s3cret"
    assert request.headers["x-source"] == "fleetcheck"
    assert payload["event"] == "alert"
    assert payload["data"]["domain"] == "b.example"
    assert payload["recipients"] == ["ops@example.com"]


@pytest.mark.asyncio
async def test_webhook_api_key_header(mock_http) -> None:
    captured = []
    mock_http(lambda request: captured.append(request) or httpx.Response(200))

    await WebhookSender({
        "url": "https://hooks.example/alerts",
        "authentication": {"type": "API_KEY", "api_key_header": "X-Hook-Key", "api_key": "k-1"},
    }).send(MESSAGE)

    assert captured[0].headers["x-hook-key"] == "k-1"


@pytest.mark.asyncio
async def test_webhook_error_status_raises(mock_http) -> None:
    mock_http(lambda request: httpx.Response(500))

    with pytest.raises(NotificationError):
        await WebhookSender({"url": "https://hooks.example/alerts"}).send(MESSAGE)


@pytest.mark.asyncio
async def test_slack_payload(mock_http) -> None:
    captured = []
    mock_http(lambda request: captured.append(request) or httpx.Response(200, text="ok"))

    await SlackSender({"webhook_url": "https://hooks.slack.example/T0/B0", "channel": "#ops"}).send(MESSAGE)

    payload = json.loads(captured[0].content)
    assert payload["channel"] == "#ops"
    assert payload["text"] == MESSAGE.subject
    assert payload["attachments"][0]["color"] == "#d00000"


@pytest.mark.asyncio
async def test_misconfigured_senders_raise() -> None:
    with pytest.raises(NotificationError):
        await SlackSender({}).send(MESSAGE)
    with pytest.raises(NotificationError):
        await WebhookSender({}).send(MESSAGE)


@pytest.mark.asyncio
async def test_email_requires_smtp_host(monkeypatch) -> None:
    monkeypatch.setattr(settings, "smtp_host", "")

    with pytest.raises(NotificationError, match="SMTP host"):
        await EmailSender({"recipients": "ops@example.com"}).send(MESSAGE)


@pytest.mark.asyncio
async def test_email_delivery_uses_recipients(monkeypatch) -> None:
    monkeypatch.setattr(settings, "smtp_host", "smtp.example")
    delivered = []
    monkeypatch.setattr(
        EmailSender, "_deliver", lambda self, sender, to, raw: delivered.append((sender, to, raw))
    )

    await EmailSender({"from_address": "alerts@example.com"}).send(MESSAGE, ["ops@example.com"])

    sender, to, raw = delivered[0]
    assert sender == "alerts@example.com"
    assert to == ["ops@example.com"]
    assert "Subject: CRITICAL - b.example - DOWNTIME" in raw


@pytest.mark.asyncio
async def test_test_channel_records_outcome(session_factory, notifier, outbox) -> None:
    async with session_factory() as session:
        good = NotificationChannel(name="good", type="WEBHOOK", configuration={"url": "https://hooks.example"})
        bad = NotificationChannel(name="bad", type="WEBHOOK", configuration={"fail": True})
        session.add_all([good, bad])
        await session.commit()

        assert await notifier.test_channel(session, good) == (True, None)
        assert await notifier.test_channel(session, bad) == (False, "delivery refused")

    assert good.test_result == "SUCCESS"
    assert bad.test_result == "FAILED"
    assert bad.last_tested is not None
    assert outbox.sent[0]["message"].event == "test"
