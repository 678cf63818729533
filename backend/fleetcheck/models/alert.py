"""HealthAlert model - deduplicated incident records."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Index

from ..database import Base
from ..utils.time_utils import utcnow


class HealthAlert(Base):
    """An incident for one (domain, alert type) pair.

    Repeated detections update the open record instead of adding rows;
    a RESOLVED record is closed and the next detection opens a new one.
    """

    __tablename__ = "health_alerts"
    __table_args__ = (Index("ix_health_alerts_identity", "domain", "alert_type", "status"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String, nullable=False)
    alert_type = Column(String, nullable=False)  # DOWNTIME, SSL_EXPIRY, PERFORMANCE, SECURITY, DNS_FAILURE
    severity = Column(String, nullable=False)
    status = Column(String, nullable=False, default="ACTIVE")  # ACTIVE, ACKNOWLEDGED, RESOLVED, SUPPRESSED
    message = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    operation_id = Column(Integer, nullable=True)

    first_detected = Column(DateTime, default=utcnow)
    last_detected = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)
    resolution_note = Column(String, nullable=True)
    acknowledged_by = Column(String, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    suppressed_until = Column(DateTime, nullable=True)

    escalation_level = Column(Integer, default=0)
    notifications_sent = Column(Integer, default=0)
    last_notified_at = Column(DateTime, nullable=True)
    history = Column(JSON, default=list)  # [{"timestamp", "action", "rule_id", "details"}]

    @property
    def client_key(self) -> str:
        return f"{self.domain}:{self.alert_type}"
