"""Notifier service - delivers messages through stored channels and batch notification settings."""
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import async_session
from ..enums import ChannelType, HealthStatus, OperationStatus
from ..errors import NotificationError
from ..models import BatchOperation, NotificationChannel
from ..schemas.batch import NotificationSettings
from ..utils.db_utils import retry_on_lock
from ..utils.time_utils import utcnow
from .channels import ChannelSender, NotificationMessage, build_sender

logger = logging.getLogger(__name__)

SenderFactory = Callable[[str, Optional[dict]], ChannelSender]


class NotifierService:
    """Sends notifications and keeps per-channel usage bookkeeping."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        sender_factory: SenderFactory = build_sender,
    ):
        self.session_factory = session_factory
        self.sender_factory = sender_factory

    async def deliver(
        self,
        channel: NotificationChannel,
        message: NotificationMessage,
        recipients: Sequence[str] = (),
        overrides: Optional[dict] = None,
    ) -> Optional[str]:
        """Send through a stored channel.

        Updates usage_count/last_used on success and last_error on failure.
        The caller commits. Returns the error text, or None when delivered.
        """
        configuration = {**(channel.configuration or {}), **(overrides or {})}
        try:
            sender = self.sender_factory(channel.type, configuration)
            await sender.send(message, recipients)
        except Exception as e:
            channel.last_error = str(e)
            logger.error(f"Notification via channel '{channel.name}' ({channel.type}) failed: {e}")
            return str(e)

        channel.usage_count = (channel.usage_count or 0) + 1
        channel.last_used = utcnow()
        return None

    async def test_channel(self, session: AsyncSession, channel: NotificationChannel) -> Tuple[bool, Optional[str]]:
        """Send a test message and record the result on the channel."""
        message = NotificationMessage(
            subject="Fleetcheck test notification",
            body=f"This is a test message for channel '{channel.name}'.",
            event="test",
            severity="LOW",
            data={"channel": channel.name, "type": channel.type},
        )
        error = await self.deliver(channel, message)
        channel.last_tested = utcnow()
        channel.test_result = "SUCCESS" if error is None else "FAILED"
        await retry_on_lock(session.commit)
        return error is None, error

    async def notify_operation(self, operation: BatchOperation):
        """Send the run-level notifications configured on a finished operation."""
        if not operation.notifications:
            return
        notifications = NotificationSettings.model_validate(operation.notifications)
        messages = self._operation_messages(operation, notifications)
        if not messages:
            return

        async with self.session_factory() as session:
            channels = await self._matching_channels(session, notifications)
            for message in messages:
                for channel, recipients, overrides in channels:
                    await self.deliver(channel, message, recipients, overrides)
                if notifications.webhook_url:
                    await self._send_adhoc_webhook(notifications.webhook_url, message)
            await retry_on_lock(session.commit)

    async def _send_adhoc_webhook(self, url: str, message: NotificationMessage):
        try:
            await self.sender_factory(ChannelType.WEBHOOK.value, {"url": url}).send(message)
        except NotificationError as e:
            logger.error(f"Operation webhook to {url} failed: {e}")

    async def _matching_channels(
        self, session: AsyncSession, notifications: NotificationSettings
    ) -> List[Tuple[NotificationChannel, List[str], Optional[dict]]]:
        wanted = []
        if notifications.email_recipients:
            wanted.append(ChannelType.EMAIL.value)
        if notifications.slack_channel:
            wanted.append(ChannelType.SLACK.value)
        if not wanted:
            return []

        result = await session.execute(
            select(NotificationChannel).where(
                NotificationChannel.enabled == 1,
                NotificationChannel.type.in_(wanted),
            )
        )
        matched = []
        for channel in result.scalars().all():
            if channel.type == ChannelType.EMAIL.value:
                matched.append((channel, list(notifications.email_recipients), None))
            else:
                matched.append((channel, [], {"channel": notifications.slack_channel}))
        return matched

    def _operation_messages(
        self, operation: BatchOperation, notifications: NotificationSettings
    ) -> List[NotificationMessage]:
        results = operation.results or {}
        summary = results.get("summary", {})
        messages = []

        if operation.status == OperationStatus.FAILED.value:
            if notifications.on_failure:
                errors = results.get("errors", [])
                reason = errors[0]["error"] if errors else "unknown error"
                messages.append(NotificationMessage(
                    subject=f"Batch health check #{operation.id} failed",
                    body=f"Batch health check #{operation.id} failed: {reason}",
                    event="batch_failed",
                    severity="CRITICAL",
                    data={"operation_id": operation.id, "error": reason},
                ))
            return messages

        data = {
            "operation_id": operation.id,
            "status": operation.status,
            "total_checked": results.get("total_checked", 0),
            "healthy": summary.get("healthy_count", 0),
            "warning": summary.get("warning_count", 0),
            "critical": summary.get("critical_count", 0),
            "unknown": summary.get("unknown_count", 0),
            "average_response_time": summary.get("average_response_time", 0),
        }

        if notifications.on_completion:
            lines = [
                f"Fleetcheck batch #{operation.id} {operation.status.lower()}",
                "=" * 40,
                "",
                f"Domains checked: {data['total_checked']}",
                f"Healthy: {data['healthy']}",
                f"Warning: {data['warning']}",
                f"Critical: {data['critical']}",
                f"Unknown: {data['unknown']}",
                f"Average response time: {data['average_response_time']}ms",
                f"Duration: {operation.duration_ms or 0}ms",
            ]
            messages.append(NotificationMessage(
                subject=f"Batch health check #{operation.id} {operation.status.lower()}",
                body="\n".join(lines),
                event="batch_completed",
                severity="LOW",
                data=data,
            ))

        if notifications.on_critical_issues and data["critical"]:
            critical = [
                check for check in results.get("health_checks", [])
                if check.get("status") == HealthStatus.CRITICAL.value
            ]
            lines = [f"{len(critical)} domain(s) are CRITICAL in batch #{operation.id}:", ""]
            for check in critical:
                first = next(iter(check.get("issues", [])), {})
                lines.append(f"- {check['domain']}: {first.get('message', 'no details')}")
            messages.append(NotificationMessage(
                subject=f"CRITICAL - {len(critical)} domain(s) failing in batch #{operation.id}",
                body="\n".join(lines),
                event="critical_issues",
                severity="CRITICAL",
                data=data,
            ))

        return messages


# Global instance
notifier_service = NotifierService()
