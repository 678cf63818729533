"""Statistics schemas for the dashboard."""
from typing import Dict
from pydantic import BaseModel


class StatusDistribution(BaseModel):
    healthy: int = 0
    warning: int = 0
    critical: int = 0
    unknown: int = 0


class SslStatus(BaseModel):
    valid: int = 0
    invalid: int = 0
    expiring_soon: int = 0


class HealthStats(BaseModel):
    """Aggregate uptime/SSL/response-time statistics."""
    total_checks: int = 0
    status_distribution: StatusDistribution = StatusDistribution()
    average_response_time: float = 0
    uptime_percentage: float = 0
    ssl_status: SslStatus = SslStatus()
    active_alerts: Dict[str, int] = {}
