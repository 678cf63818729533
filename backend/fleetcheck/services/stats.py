"""Statistics service - uptime, SSL and response-time aggregates over recent checks."""
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..enums import AlertStatus, HealthStatus
from ..models import HealthAlert, HealthCheckRecord
from ..schemas.stats import HealthStats, SslStatus, StatusDistribution
from ..utils.time_utils import utcnow

RECENT_CHECKS_LIMIT = 1000
SSL_EXPIRING_DAYS = 30


async def get_stats(session: AsyncSession, domain: Optional[str] = None) -> HealthStats:
    """Aggregate the latest check records, optionally for domains containing `domain`."""
    query = select(HealthCheckRecord)
    if domain:
        query = query.where(HealthCheckRecord.domain.contains(domain))
    result = await session.execute(
        query.order_by(HealthCheckRecord.checked_at.desc(), HealthCheckRecord.id.desc()).limit(RECENT_CHECKS_LIMIT)
    )
    records = list(result.scalars().all())

    distribution = StatusDistribution()
    ssl = SslStatus()
    response_times = []
    expiring_cutoff = utcnow() + timedelta(days=SSL_EXPIRING_DAYS)

    for record in records:
        status = HealthStatus(record.status)
        setattr(distribution, status.value.lower(), getattr(distribution, status.value.lower()) + 1)
        if record.response_time_ms:
            response_times.append(record.response_time_ms)
        if record.ssl_valid:
            ssl.valid += 1
            if record.ssl_expiry and record.ssl_expiry <= expiring_cutoff:
                ssl.expiring_soon += 1
        else:
            ssl.invalid += 1

    alert_query = (
        select(HealthAlert.severity, func.count())
        .where(HealthAlert.status == AlertStatus.ACTIVE.value)
        .group_by(HealthAlert.severity)
    )
    if domain:
        alert_query = alert_query.where(HealthAlert.domain.contains(domain))
    active_alerts = {severity: count for severity, count in (await session.execute(alert_query)).all()}

    total = len(records)
    return HealthStats(
        total_checks=total,
        status_distribution=distribution,
        average_response_time=round(sum(response_times) / len(response_times)) if response_times else 0,
        uptime_percentage=round(distribution.healthy * 100 / total, 2) if total else 0,
        ssl_status=ssl,
        active_alerts=active_alerts,
    )
