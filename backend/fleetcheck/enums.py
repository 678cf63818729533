"""Tagged variants shared by models, services and schemas."""
from enum import Enum


class OperationKind(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    SCHEDULED = "SCHEDULED"
    RECURRING = "RECURRING"


class OperationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED, OperationStatus.CANCELLED)


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"


class IssueSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    IssueSeverity.LOW: 0,
    IssueSeverity.MEDIUM: 1,
    IssueSeverity.HIGH: 2,
    IssueSeverity.CRITICAL: 3,
}


class IssueType(str, Enum):
    SSL = "SSL"
    DNS = "DNS"
    HTTP = "HTTP"
    CONTENT = "CONTENT"
    SECURITY = "SECURITY"
    PERFORMANCE = "PERFORMANCE"
    SYSTEM = "SYSTEM"


class ProbeKind(str, Enum):
    DNS = "dns"
    HTTP = "http"
    TLS = "tls"


class AlertType(str, Enum):
    DOWNTIME = "DOWNTIME"
    SSL_EXPIRY = "SSL_EXPIRY"
    PERFORMANCE = "PERFORMANCE"
    SECURITY = "SECURITY"
    DNS_FAILURE = "DNS_FAILURE"

    @classmethod
    def for_issue(cls, issue_type: IssueType) -> "AlertType":
        """Alert type raised for a CRITICAL issue of the given type."""
        return _ALERT_TYPE_BY_ISSUE.get(issue_type, cls.DOWNTIME)


_ALERT_TYPE_BY_ISSUE = {
    IssueType.DNS: AlertType.DNS_FAILURE,
    IssueType.SSL: AlertType.SSL_EXPIRY,
    IssueType.PERFORMANCE: AlertType.PERFORMANCE,
    IssueType.SECURITY: AlertType.SECURITY,
}


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    SUPPRESSED = "SUPPRESSED"


class AlertAction(str, Enum):
    """Entries recorded in an alert's history."""
    TRIGGERED = "TRIGGERED"
    DETECTED = "DETECTED"
    THROTTLED = "THROTTLED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    UNACKNOWLEDGED = "UNACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    SUPPRESSED = "SUPPRESSED"
    REACTIVATED = "REACTIVATED"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"


class ChannelType(str, Enum):
    EMAIL = "EMAIL"
    SLACK = "SLACK"
    WEBHOOK = "WEBHOOK"


class Frequency(str, Enum):
    ONCE = "ONCE"
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    CUSTOM = "CUSTOM"
