"""Domain model - target registry for batch health checks."""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.time_utils import utcnow


class Domain(Base):
    """A client domain that batch runs can target."""

    __tablename__ = "domains"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True, index=True)
    client_name = Column(String, nullable=True)
    tags = Column(JSON, default=list)
    enabled = Column(Integer, default=1)
    last_status = Column(String, nullable=True)  # HEALTHY, WARNING, CRITICAL, UNKNOWN
    last_checked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    records = relationship("HealthCheckRecord", back_populates="domain_ref", cascade="all, delete-orphan")
