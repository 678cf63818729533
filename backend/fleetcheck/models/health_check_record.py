"""HealthCheckRecord model - per-domain check history used by statistics."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Boolean
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.time_utils import utcnow


class HealthCheckRecord(Base):
    """Outcome of one domain within one batch run."""

    __tablename__ = "health_check_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation_id = Column(Integer, ForeignKey("batch_operations.id", ondelete="CASCADE"), nullable=False)
    domain_id = Column(Integer, ForeignKey("domains.id", ondelete="CASCADE"), nullable=True)
    domain = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)  # HEALTHY, WARNING, CRITICAL, UNKNOWN
    response_time_ms = Column(Integer, nullable=True)
    http_status = Column(Integer, nullable=True)
    ssl_valid = Column(Boolean, default=False)
    ssl_expiry = Column(DateTime, nullable=True)
    details = Column(JSON, nullable=True)  # issues + performance metrics
    checked_at = Column(DateTime, default=utcnow, index=True)

    # Relationship
    domain_ref = relationship("Domain", back_populates="records")
