"""Alert manager - deduplicated incidents, rule throttling, escalation and channel fan-out."""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..database import async_session
from ..enums import AlertAction, AlertStatus, AlertType, IssueSeverity
from ..errors import AlertNotFoundError, InvalidTransitionError
from ..models import AlertRule, HealthAlert, NotificationChannel
from ..utils.db_utils import retry_on_lock
from ..utils.keyed_lock import KeyedLock
from ..utils.time_utils import to_naive_utc, utcnow
from .channels import NotificationMessage
from .notifier import NotifierService, notifier_service

logger = logging.getLogger(__name__)

OPEN_STATUSES = (AlertStatus.ACTIVE.value, AlertStatus.ACKNOWLEDGED.value, AlertStatus.SUPPRESSED.value)

# (action, allowed source statuses, target status)
TRANSITIONS = {
    AlertAction.ACKNOWLEDGED: ((AlertStatus.ACTIVE,), AlertStatus.ACKNOWLEDGED),
    AlertAction.UNACKNOWLEDGED: ((AlertStatus.ACKNOWLEDGED,), AlertStatus.ACTIVE),
    AlertAction.RESOLVED: (
        (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED, AlertStatus.SUPPRESSED),
        AlertStatus.RESOLVED,
    ),
    AlertAction.SUPPRESSED: ((AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED), AlertStatus.SUPPRESSED),
}

ACTION_VERBS = {
    AlertAction.ACKNOWLEDGED: "acknowledge",
    AlertAction.UNACKNOWLEDGED: "unacknowledge",
    AlertAction.RESOLVED: "resolve",
    AlertAction.SUPPRESSED: "suppress",
}


class AlertManager:
    """Raises and transitions health alerts.

    Work on one (domain, alert type) pair is serialized with a keyed lock,
    so concurrent raises for the same pair never produce duplicate records.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        notifier: Optional[NotifierService] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or notifier_service
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def raise_alert(
        self,
        domain: str,
        alert_type: AlertType,
        severity: IssueSeverity,
        message: str,
        details: Optional[dict] = None,
        operation_id: Optional[int] = None,
    ) -> HealthAlert:
        """Record a detection for (domain, alert_type) and notify matching rules.

        An open ACTIVE/ACKNOWLEDGED alert is updated in place with its
        escalation level bumped. A SUPPRESSED alert records the detection
        silently until suppression expires, then is reactivated.
        """
        async with self._locks.acquire((domain, alert_type.value)):
            async with self.session_factory() as session:
                alert, should_notify = await self._record_detection(
                    session, domain, alert_type, severity, message, details, operation_id
                )
                await retry_on_lock(session.commit)

                if should_notify:
                    await self._fan_out(session, alert)
                    await retry_on_lock(session.commit)
                return alert

    async def _record_detection(
        self,
        session: AsyncSession,
        domain: str,
        alert_type: AlertType,
        severity: IssueSeverity,
        message: str,
        details: Optional[dict],
        operation_id: Optional[int],
    ) -> Tuple[HealthAlert, bool]:
        now = utcnow()
        result = await session.execute(
            select(HealthAlert)
            .where(
                HealthAlert.domain == domain,
                HealthAlert.alert_type == alert_type.value,
                HealthAlert.status.in_(OPEN_STATUSES),
            )
            .order_by(HealthAlert.id.desc())
            .limit(1)
        )
        alert = result.scalar_one_or_none()

        if alert is None:
            alert = HealthAlert(
                domain=domain,
                alert_type=alert_type.value,
                severity=severity.value,
                status=AlertStatus.ACTIVE.value,
                message=message,
                details=details,
                operation_id=operation_id,
                first_detected=now,
                last_detected=now,
                escalation_level=0,
                notifications_sent=0,
                history=[],
            )
            session.add(alert)
            self._append_history(alert, AlertAction.DETECTED, now, details={"message": message})
            logger.info(f"Alert created for {domain} ({alert_type.value}): {message}")
            return alert, True

        alert.last_detected = now
        alert.message = message
        alert.details = details
        alert.operation_id = operation_id
        alert.severity = severity.value
        alert.escalation_level = (alert.escalation_level or 0) + 1

        if alert.status == AlertStatus.SUPPRESSED.value:
            if alert.suppressed_until and alert.suppressed_until > now:
                self._append_history(alert, AlertAction.DETECTED, now, details={"suppressed": True})
                logger.info(f"Alert {alert.id} for {domain} is suppressed until {alert.suppressed_until}")
                return alert, False
            alert.status = AlertStatus.ACTIVE.value
            alert.suppressed_until = None
            self._append_history(alert, AlertAction.REACTIVATED, now, details={"message": message})
            logger.info(f"Alert {alert.id} for {domain} reactivated after suppression expired")
            return alert, True

        self._append_history(alert, AlertAction.DETECTED, now, details={"message": message})
        logger.info(f"Alert {alert.id} for {domain} detected again (escalation level {alert.escalation_level})")
        return alert, True

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _fan_out(self, session: AsyncSession, alert: HealthAlert):
        rules = (await session.execute(select(AlertRule).where(AlertRule.enabled == 1))).scalars().all()
        matching = [rule for rule in rules if self.rule_matches(rule, alert)]
        if not matching:
            logger.debug(f"No alert rules match {alert.client_key}")
            return

        channels = (
            await session.execute(select(NotificationChannel).where(NotificationChannel.enabled == 1))
        ).scalars().all()
        channels_by_type: Dict[str, List[NotificationChannel]] = {}
        for channel in channels:
            channels_by_type.setdefault(channel.type, []).append(channel)

        message = self._build_message(alert)
        now = utcnow()

        for rule in matching:
            if self.is_throttled(alert, rule, now):
                self._append_history(alert, AlertAction.THROTTLED, now, rule_id=rule.id)
                logger.warning(f"Notification for alert {alert.id} throttled by rule '{rule.name}'")
                continue

            channel_types, recipients = self.notification_targets(rule, alert, now)
            delivered = 0
            for channel_type in channel_types:
                for channel in channels_by_type.get(channel_type, []):
                    error = await self.notifier.deliver(channel, message, recipients)
                    if error is None:
                        delivered += 1
                    else:
                        self._append_history(
                            alert,
                            AlertAction.NOTIFICATION_FAILED,
                            now,
                            rule_id=rule.id,
                            details={"channel_id": channel.id, "error": error},
                        )

            alert.notifications_sent = (alert.notifications_sent or 0) + delivered
            if delivered:
                alert.last_notified_at = now
            rule.trigger_count = (rule.trigger_count or 0) + 1
            rule.last_triggered = now
            self._append_history(alert, AlertAction.TRIGGERED, now, rule_id=rule.id, details={"delivered": delivered})
            logger.info(f"Alert {alert.id} triggered rule '{rule.name}': {delivered} notification(s) sent")

    @staticmethod
    def rule_matches(rule: AlertRule, alert: HealthAlert) -> bool:
        """Rule applies when enabled, its type matches and its targets include the domain."""
        if not rule.enabled:
            return False
        if rule.alert_type and rule.alert_type != alert.alert_type:
            return False
        targets = rule.targets or {}
        if targets.get("all", True):
            return True
        return any(pattern and pattern in alert.domain for pattern in targets.get("domains", []))

    @staticmethod
    def is_throttled(alert: HealthAlert, rule: AlertRule, now: datetime) -> bool:
        """Count this rule's TRIGGERED entries in the rolling hour/day windows."""
        throttling = rule.throttling or {}
        if not throttling.get("enabled"):
            return False

        hour_ago = now - timedelta(hours=1)
        day_ago = now - timedelta(days=1)
        last_hour = last_day = 0
        for entry in alert.history or []:
            if entry.get("action") != AlertAction.TRIGGERED.value or entry.get("rule_id") != rule.id:
                continue
            timestamp = datetime.fromisoformat(entry["timestamp"])
            if timestamp >= day_ago:
                last_day += 1
                if timestamp >= hour_ago:
                    last_hour += 1

        max_per_hour = throttling.get("max_per_hour")
        max_per_day = throttling.get("max_per_day")
        if max_per_hour is not None and last_hour >= max_per_hour:
            return True
        if max_per_day is not None and last_day >= max_per_day:
            return True
        return False

    @staticmethod
    def notification_targets(rule: AlertRule, alert: HealthAlert, now: datetime) -> Tuple[List[str], List[str]]:
        """Channel types and recipients for a rule, including reached escalation steps."""
        channel_types = list(rule.channels or [])
        recipients = list(rule.recipients or [])

        escalation = rule.escalation or {}
        if escalation.get("enabled"):
            elapsed = now - (alert.first_detected or now)
            for step in escalation.get("steps", []):
                if step.get("level", 1) > (alert.escalation_level or 0):
                    continue
                if elapsed < timedelta(minutes=step.get("delay_minutes", 0)):
                    continue
                channel_types.extend(c for c in step.get("channels", []) if c not in channel_types)
                recipients.extend(r for r in step.get("recipients", []) if r not in recipients)
        return channel_types, recipients

    def _build_message(self, alert: HealthAlert) -> NotificationMessage:
        lines = [
            f"Fleetcheck {alert.severity} Alert",
            "=" * 40,
            "",
            f"Domain: {alert.domain}",
            f"Type: {alert.alert_type}",
            f"Severity: {alert.severity}",
            f"Status: {alert.status}",
            f"Message: {alert.message}",
            f"First detected: {alert.first_detected.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            f"Last detected: {alert.last_detected.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            f"Escalation level: {alert.escalation_level}",
        ]
        return NotificationMessage(
            subject=f"{alert.severity} - {alert.domain} - {alert.alert_type}",
            body="\n".join(lines),
            event="alert",
            severity=alert.severity,
            data={
                "alert_id": alert.id,
                "domain": alert.domain,
                "alert_type": alert.alert_type,
                "message": alert.message,
                "escalation_level": alert.escalation_level,
            },
        )

    @staticmethod
    def _append_history(
        alert: HealthAlert,
        action: AlertAction,
        now: datetime,
        rule_id: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        entry = {"timestamp": now.isoformat(), "action": action.value}
        if rule_id is not None:
            entry["rule_id"] = rule_id
        if details:
            entry["details"] = details
        # Reassign so the JSON column is flagged dirty
        alert.history = AlertManager.trim_history([*(alert.history or []), entry], now)

    @staticmethod
    def trim_history(history: List[dict], now: datetime) -> List[dict]:
        """Drop the oldest entries beyond alert_history_limit.

        TRIGGERED entries from the last day are kept even past the limit:
        the daily throttle counts them.
        """
        excess = len(history) - settings.alert_history_limit
        if excess <= 0:
            return history

        day_ago = now - timedelta(days=1)
        kept = []
        for entry in history:
            recent_trigger = (
                entry.get("action") == AlertAction.TRIGGERED.value
                and datetime.fromisoformat(entry["timestamp"]) >= day_ago
            )
            if excess > 0 and not recent_trigger:
                excess -= 1
                continue
            kept.append(entry)
        return kept

    # ------------------------------------------------------------------
    # Explicit transitions
    # ------------------------------------------------------------------

    async def acknowledge(self, alert_id: int, by: str) -> HealthAlert:
        return await self._transition(alert_id, AlertAction.ACKNOWLEDGED, by)

    async def unacknowledge(self, alert_id: int, by: str) -> HealthAlert:
        return await self._transition(alert_id, AlertAction.UNACKNOWLEDGED, by)

    async def resolve(self, alert_id: int, note: Optional[str], by: str) -> HealthAlert:
        return await self._transition(alert_id, AlertAction.RESOLVED, by, note=note)

    async def suppress(self, alert_id: int, until: datetime, by: str) -> HealthAlert:
        until = to_naive_utc(until)
        if until <= utcnow():
            raise InvalidTransitionError("Suppression end must be in the future")
        return await self._transition(alert_id, AlertAction.SUPPRESSED, by, until=until)

    async def _transition(
        self,
        alert_id: int,
        action: AlertAction,
        by: str,
        note: Optional[str] = None,
        until: Optional[datetime] = None,
    ) -> HealthAlert:
        async with self.session_factory() as session:
            alert = await session.get(HealthAlert, alert_id)
            if alert is None:
                raise AlertNotFoundError(f"Alert {alert_id} not found")

            async with self._locks.acquire((alert.domain, alert.alert_type)):
                await session.refresh(alert)
                sources, target = TRANSITIONS[action]
                if alert.status not in {s.value for s in sources}:
                    raise InvalidTransitionError(
                        f"Cannot {ACTION_VERBS[action]} an alert that is {alert.status}"
                    )

                now = utcnow()
                alert.status = target.value
                details = {"by": by}
                if action == AlertAction.ACKNOWLEDGED:
                    alert.acknowledged_by = by
                    alert.acknowledged_at = now
                elif action == AlertAction.UNACKNOWLEDGED:
                    alert.acknowledged_by = None
                    alert.acknowledged_at = None
                elif action == AlertAction.RESOLVED:
                    alert.resolved_at = now
                    alert.resolution_note = note
                    alert.suppressed_until = None
                    details["note"] = note
                elif action == AlertAction.SUPPRESSED:
                    alert.suppressed_until = until
                    details["until"] = until.isoformat()

                self._append_history(alert, action, now, details=details)
                await retry_on_lock(session.commit)
                logger.info(f"Alert {alert.id} for {alert.domain} {action.value.lower()} by {by}")
                return alert

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_alert(self, session: AsyncSession, alert_id: int) -> HealthAlert:
        alert = await session.get(HealthAlert, alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert {alert_id} not found")
        return alert

    async def list_alerts(
        self,
        session: AsyncSession,
        status: Optional[Sequence[str]] = None,
        severity: Optional[Sequence[str]] = None,
        alert_type: Optional[str] = None,
        domain: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[HealthAlert], int]:
        """Filtered, newest-first page of alerts and the total match count."""
        conditions = []
        if status:
            conditions.append(HealthAlert.status.in_(list(status)))
        if severity:
            conditions.append(HealthAlert.severity.in_(list(severity)))
        if alert_type:
            conditions.append(HealthAlert.alert_type == alert_type)
        if domain:
            conditions.append(HealthAlert.domain.contains(domain))

        total = (
            await session.execute(select(func.count()).select_from(HealthAlert).where(*conditions))
        ).scalar_one()
        result = await session.execute(
            select(HealthAlert)
            .where(*conditions)
            .order_by(HealthAlert.last_detected.desc(), HealthAlert.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total


# Global instance
alert_manager = AlertManager()
