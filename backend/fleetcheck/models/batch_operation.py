"""BatchOperation model - one fleet-wide health check run or schedule definition."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON

from ..database import Base
from ..utils.time_utils import utcnow


class BatchOperation(Base):
    """A batch run (IMMEDIATE/RECURRING) or a schedule definition (SCHEDULED).

    Configuration columns hold the validated, frozen request models as JSON.
    `results` holds the aggregate written at completion.
    """

    __tablename__ = "batch_operations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String, nullable=False)  # IMMEDIATE, SCHEDULED, RECURRING
    status = Column(String, nullable=False, default="PENDING", index=True)
    parent_id = Column(Integer, ForeignKey("batch_operations.id"), nullable=True)
    template_id = Column(Integer, ForeignKey("health_check_templates.id"), nullable=True)

    targets = Column(JSON, default=list)  # [{"id": 1, "domain": "example.com"}]
    filters = Column(JSON, nullable=True)
    check_types = Column(JSON, nullable=False)
    configuration = Column(JSON, nullable=False)
    notifications = Column(JSON, nullable=True)
    schedule = Column(JSON, nullable=True)
    results = Column(JSON, nullable=True)

    next_run = Column(DateTime, nullable=True, index=True)
    last_run = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    performed_by = Column(String, nullable=True)
