"""Batch operation schemas: run configuration, requests and responses."""
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..config import settings
from ..enums import Frequency, HealthStatus


class CheckTypes(BaseModel):
    """Which probes run for each domain."""
    model_config = ConfigDict(frozen=True)

    website_uptime: bool = True
    ssl_certificate: bool = True
    dns_resolution: bool = True
    response_time: bool = True
    http_status: bool = True
    content_validation: bool = False
    security_headers: bool = False

    @property
    def needs_http(self) -> bool:
        return (
            self.website_uptime
            or self.http_status
            or self.response_time
            or self.content_validation
            or self.security_headers
        )

    @model_validator(mode="after")
    def _at_least_one(self) -> "CheckTypes":
        if not any(self.model_dump().values()):
            raise ValueError("At least one check type must be enabled")
        return self


class PerformanceThresholds(BaseModel):
    """Upper bounds in milliseconds; unset bounds are not checked."""
    model_config = ConfigDict(frozen=True)

    response_time: Optional[int] = Field(None, ge=1)
    first_byte_time: Optional[int] = Field(None, ge=1)
    domain_lookup_time: Optional[int] = Field(None, ge=1)


class CheckConfiguration(BaseModel):
    """Probe configuration, validated once at submission and frozen for the run."""
    model_config = ConfigDict(frozen=True)

    timeout: int = Field(default_factory=lambda: settings.default_timeout_ms, ge=100, le=300000)  # ms
    retry_attempts: int = Field(3, ge=0, le=10)
    retry_delay: int = Field(1000, ge=0, le=60000)  # ms
    user_agent: str = Field(default_factory=lambda: settings.default_user_agent)
    follow_redirects: bool = True
    max_redirects: int = Field(5, ge=0, le=20)
    validate_ssl: bool = True
    custom_headers: Dict[str, str] = Field(default_factory=dict)
    expected_status_codes: Tuple[int, ...] = (200, 301, 302)
    expected_content: Tuple[str, ...] = ()
    performance_thresholds: Optional[PerformanceThresholds] = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay / 1000

    @property
    def domain_budget_seconds(self) -> float:
        """Wall-clock ceiling for one domain: every probe at full timeout plus retries."""
        http = self.timeout_seconds * (self.retry_attempts + 1) + self.retry_delay_seconds * self.retry_attempts
        return http + 2 * self.timeout_seconds + 5


class NotificationSettings(BaseModel):
    """Run-level notifications for a batch operation."""
    model_config = ConfigDict(frozen=True)

    on_completion: bool = False
    on_failure: bool = False
    on_critical_issues: bool = False
    email_recipients: Tuple[str, ...] = ()
    webhook_url: Optional[str] = None
    slack_channel: Optional[str] = None


class ScheduleSpec(BaseModel):
    """Recurrence of a scheduled batch definition."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    frequency: Frequency
    interval: int = Field(1, ge=1, le=1000)
    time: Optional[str] = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")  # HH:MM
    day_of_week: Optional[int] = Field(None, ge=0, le=6)  # 0 = Sunday
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    timezone: str = "UTC"
    expression: Optional[str] = None  # CUSTOM only
    end_date: Optional[datetime] = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value


class TargetFilter(BaseModel):
    """Selects target domains when no explicit ids are given."""
    domain_ids: List[int] = Field(default_factory=list)
    domain_patterns: List[str] = Field(default_factory=list)
    health_statuses: List[HealthStatus] = Field(default_factory=list)
    last_checked_before: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)


class StartBatchRequest(BaseModel):
    """Request body for an immediate batch run."""
    domain_ids: Optional[List[int]] = None
    filters: Optional[TargetFilter] = None
    template_id: Optional[int] = None
    check_types: Optional[CheckTypes] = None
    configuration: Optional[CheckConfiguration] = None
    notifications: Optional[NotificationSettings] = None


class ScheduleBatchRequest(StartBatchRequest):
    """Request body for a recurring batch definition."""
    schedule: ScheduleSpec


class BatchStartResponse(BaseModel):
    success: bool = True
    message: str
    operation_id: int
    target_count: int


class BatchScheduleResponse(BaseModel):
    success: bool = True
    message: str
    operation_id: int
    target_count: int
    next_run: Optional[datetime] = None


class OperationResponse(BaseModel):
    """A batch operation as returned by the API."""
    id: int
    kind: str
    status: str
    parent_id: Optional[int] = None
    template_id: Optional[int] = None
    targets: list
    filters: Optional[dict] = None
    check_types: dict
    configuration: dict
    notifications: Optional[dict] = None
    schedule: Optional[dict] = None
    results: Optional[dict] = None
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    performed_by: Optional[str] = None

    class Config:
        from_attributes = True


class OperationPage(BaseModel):
    items: List[OperationResponse]
    total: int
    page: int
    per_page: int
    total_pages: int
