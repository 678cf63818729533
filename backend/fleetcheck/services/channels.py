"""Notification channel senders - email via SMTP, Slack and generic webhooks via HTTP."""
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional, Sequence

import httpx

from ..config import settings
from ..enums import ChannelType
from ..errors import NotificationError

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 10
SMTP_TIMEOUT_SECONDS = 30

SEVERITY_COLORS = {
    "CRITICAL": "#d00000",
    "HIGH": "#ff8c00",
    "MEDIUM": "#ffd700",
    "LOW": "#36a64f",
}


@dataclass
class NotificationMessage:
    """A channel-agnostic message; each sender renders it its own way."""
    subject: str
    body: str
    event: str
    severity: Optional[str] = None
    data: Dict = field(default_factory=dict)


def parse_recipients(value) -> List[str]:
    """Accept a list or a comma-separated string of addresses."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [addr.strip() for addr in value if addr and addr.strip()]


class ChannelSender:
    """Delivers a message over one transport. Raises NotificationError on failure."""

    channel_type: ChannelType

    def __init__(self, configuration: Optional[dict] = None):
        self.configuration = configuration or {}

    async def send(self, message: NotificationMessage, recipients: Sequence[str] = ()) -> None:
        raise NotImplementedError


class EmailSender(ChannelSender):
    """Sends plain-text email with the global SMTP settings."""

    channel_type = ChannelType.EMAIL

    async def send(self, message: NotificationMessage, recipients: Sequence[str] = ()) -> None:
        to_addresses = parse_recipients(list(recipients)) or parse_recipients(self.configuration.get("recipients"))
        if not settings.smtp_host:
            raise NotificationError("Email not configured - missing SMTP host")
        if not to_addresses:
            raise NotificationError("No valid email recipients")
        from_address = self.configuration.get("from_address") or settings.smtp_from or settings.smtp_username

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = from_address
        msg["To"] = ", ".join(to_addresses)
        msg.attach(MIMEText(message.body, "plain"))

        # smtplib is blocking
        await asyncio.to_thread(self._deliver, from_address, to_addresses, msg.as_string())
        logger.info(f"Email sent to {len(to_addresses)} recipient(s): {message.subject}")

    def _deliver(self, from_address: str, to_addresses: List[str], raw: str):
        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=SMTP_TIMEOUT_SECONDS) as server:
                if settings.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if settings.smtp_username and settings.smtp_password:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.sendmail(from_address, to_addresses, raw)
        except smtplib.SMTPAuthenticationError as e:
            raise NotificationError(f"SMTP authentication failed for user '{settings.smtp_username}': {e}") from e
        except smtplib.SMTPRecipientsRefused as e:
            raise NotificationError(f"Recipients refused by server: {e}") from e
        except smtplib.SMTPException as e:
            raise NotificationError(f"SMTP error: {type(e).__name__}: {e}") from e
        except (ConnectionRefusedError, TimeoutError, OSError) as e:
            raise NotificationError(f"Failed to connect to {settings.smtp_host}:{settings.smtp_port}: {e}") from e


async def _post_json(url: str, payload: dict, method: str = "POST", headers: Optional[dict] = None, auth=None):
    try:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
            response = await client.request(
                method,
                url,
                json=payload,
                headers={"Content-Type": "application/json", **(headers or {})},
                auth=auth,
            )
    except httpx.HTTPError as e:
        raise NotificationError(f"Request to {url} failed: {e}") from e
    if response.status_code >= 400:
        raise NotificationError(f"{url} returned {response.status_code}")


class SlackSender(ChannelSender):
    """Posts to a Slack incoming webhook."""

    channel_type = ChannelType.SLACK

    async def send(self, message: NotificationMessage, recipients: Sequence[str] = ()) -> None:
        webhook_url = self.configuration.get("webhook_url")
        if not webhook_url:
            raise NotificationError("Slack channel has no webhook_url")

        payload = {
            "text": message.subject,
            "username": self.configuration.get("username", "Fleetcheck"),
            "icon_emoji": self.configuration.get("icon_emoji", ":warning:"),
            "attachments": [{
                "color": SEVERITY_COLORS.get(message.severity or "", "#439fe0"),
                "text": message.body,
                "fields": [
                    {"title": key, "value": str(value), "short": True}
                    for key, value in message.data.items()
                    if isinstance(value, (str, int, float))
                ],
            }],
        }
        if self.configuration.get("channel"):
            payload["channel"] = self.configuration["channel"]

        await _post_json(webhook_url, payload)
        logger.info(f"Slack message sent: {message.subject}")


class WebhookSender(ChannelSender):
    """Sends the message as JSON to an arbitrary HTTP endpoint.

    authentication.type is one of NONE, BASIC, BEARER, API_KEY.
    """

    channel_type = ChannelType.WEBHOOK

    async def send(self, message: NotificationMessage, recipients: Sequence[str] = ()) -> None:
        url = self.configuration.get("url")
        if not url:
            raise NotificationError("Webhook channel has no url")

        headers = dict(self.configuration.get("headers") or {})
        auth = None
        authentication = self.configuration.get("authentication") or {}
        auth_type = str(authentication.get("type", "NONE")).upper()
        if auth_type == "BASIC":
            auth = httpx.BasicAuth(authentication.get("username", ""), authentication.get("password", ""))
        elif auth_type == "BEARER":
            headers["Authorization"] = f"Bearer {authentication.get('token', '')}"
        elif auth_type == "API_KEY":
            headers[authentication.get("api_key_header", "X-API-Key")] = authentication.get("api_key", "")

        payload = {
            "event": message.event,
            "subject": message.subject,
            "message": message.body,
            "severity": message.severity,
            "data": message.data,
            "recipients": list(recipients),
        }
        method = str(self.configuration.get("method", "POST")).upper()
        await _post_json(url, payload, method=method, headers=headers, auth=auth)
        logger.info(f"Webhook sent: {message.event} to {url}")


_SENDERS = {
    ChannelType.EMAIL: EmailSender,
    ChannelType.SLACK: SlackSender,
    ChannelType.WEBHOOK: WebhookSender,
}


def build_sender(channel_type: str, configuration: Optional[dict] = None) -> ChannelSender:
    """Create the sender for a channel type."""
    try:
        sender_cls = _SENDERS[ChannelType(channel_type)]
    except ValueError as e:
        raise NotificationError(f"Unknown channel type: {channel_type}") from e
    return sender_cls(configuration)
