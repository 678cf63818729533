"""Database models."""
from .domain import Domain
from .template import HealthCheckTemplate
from .batch_operation import BatchOperation
from .health_check_record import HealthCheckRecord
from .alert import HealthAlert
from .alert_rule import AlertRule
from .notification_channel import NotificationChannel

__all__ = [
    "Domain",
    "HealthCheckTemplate",
    "BatchOperation",
    "HealthCheckRecord",
    "HealthAlert",
    "AlertRule",
    "NotificationChannel",
]
