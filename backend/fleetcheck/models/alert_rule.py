"""AlertRule model - routing, throttling and escalation for alert notifications."""
from sqlalchemy import Column, Integer, String, DateTime, JSON

from ..database import Base
from ..utils.time_utils import utcnow


class AlertRule(Base):
    """Which alerts notify whom, over which channel types, how often."""

    __tablename__ = "alert_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    enabled = Column(Integer, default=1)
    alert_type = Column(String, nullable=True)  # NULL matches every alert type
    targets = Column(JSON, default=dict)  # {"all": bool, "domains": [substring, ...]}
    channels = Column(JSON, default=list)  # ["EMAIL", "SLACK", "WEBHOOK"]
    recipients = Column(JSON, default=list)
    throttling = Column(JSON, default=dict)  # {"enabled", "max_per_hour", "max_per_day"}
    escalation = Column(JSON, default=dict)  # {"enabled", "steps": [{level, delay_minutes, recipients, channels}]}
    trigger_count = Column(Integer, default=0)
    last_triggered = Column(DateTime, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
