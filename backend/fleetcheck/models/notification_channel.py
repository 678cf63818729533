"""NotificationChannel model - configured delivery endpoints."""
from sqlalchemy import Column, Integer, String, DateTime, JSON

from ..database import Base
from ..utils.time_utils import utcnow


class NotificationChannel(Base):
    """An email, Slack or webhook endpoint that alerts fan out to."""

    __tablename__ = "notification_channels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, index=True)  # EMAIL, SLACK, WEBHOOK
    enabled = Column(Integer, default=1)
    configuration = Column(JSON, default=dict)
    usage_count = Column(Integer, default=0)
    last_used = Column(DateTime, nullable=True)
    last_error = Column(String, nullable=True)
    last_tested = Column(DateTime, nullable=True)
    test_result = Column(String, nullable=True)  # SUCCESS, FAILED
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
