"""HealthCheckTemplate model - reusable batch presets."""
from sqlalchemy import Column, Integer, String, DateTime, JSON

from ..database import Base
from ..utils.time_utils import utcnow


class HealthCheckTemplate(Base):
    """Named check types + configuration that batch requests can reference."""

    __tablename__ = "health_check_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(String, nullable=True)
    check_types = Column(JSON, nullable=False)
    configuration = Column(JSON, nullable=False)
    schedule = Column(JSON, nullable=True)
    notifications = Column(JSON, nullable=True)
    is_default = Column(Integer, default=0)
    usage_count = Column(Integer, default=0)
    last_used = Column(DateTime, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
