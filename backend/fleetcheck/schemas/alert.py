"""Alert, alert rule and notification channel schemas for API."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..enums import AlertType, ChannelType


class AlertResponse(BaseModel):
    """Schema for an alert in API responses."""
    id: int
    domain: str
    alert_type: str
    client_key: str
    severity: str
    status: str
    message: str
    details: Optional[dict] = None
    operation_id: Optional[int] = None
    first_detected: datetime
    last_detected: datetime
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    suppressed_until: Optional[datetime] = None
    escalation_level: int
    notifications_sent: int
    last_notified_at: Optional[datetime] = None
    history: List[dict] = Field(default_factory=list)

    class Config:
        from_attributes = True


class AlertPage(BaseModel):
    items: List[AlertResponse]
    total: int
    page: int
    per_page: int
    total_pages: int


class AlertResolve(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class AlertSuppress(BaseModel):
    until: datetime


class ThrottlingConfig(BaseModel):
    enabled: bool = False
    max_per_hour: int = Field(10, ge=0)
    max_per_day: int = Field(50, ge=0)


class EscalationStep(BaseModel):
    """Extra recipients/channels once an alert reaches `level` and `delay_minutes` have passed."""
    level: int = Field(..., ge=1)
    delay_minutes: int = Field(0, ge=0)
    recipients: List[str] = Field(default_factory=list)
    channels: List[ChannelType] = Field(default_factory=list)


class EscalationConfig(BaseModel):
    enabled: bool = False
    steps: List[EscalationStep] = Field(default_factory=list)


class RuleTargets(BaseModel):
    all: bool = True
    domains: List[str] = Field(default_factory=list)  # substring match


class AlertRuleCreate(BaseModel):
    """Schema for creating an alert rule."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    enabled: bool = True
    alert_type: Optional[AlertType] = None
    targets: RuleTargets = Field(default_factory=RuleTargets)
    channels: List[ChannelType] = Field(default_factory=list)
    recipients: List[str] = Field(default_factory=list)
    throttling: ThrottlingConfig = Field(default_factory=ThrottlingConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)


class AlertRuleResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    enabled: bool
    alert_type: Optional[str] = None
    targets: dict
    channels: List[str]
    recipients: List[str]
    throttling: dict
    escalation: dict
    trigger_count: int
    last_triggered: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ChannelCreate(BaseModel):
    """Schema for creating a notification channel.

    configuration keys by type:
    - SLACK: webhook_url, channel, username, icon_emoji
    - WEBHOOK: url, method, headers, authentication {type, username, password, token, api_key, api_key_header}
    - EMAIL: recipients (falls back to rule recipients), from_address
    """
    name: str = Field(..., min_length=1, max_length=255)
    type: ChannelType
    enabled: bool = True
    configuration: Dict[str, Any] = Field(default_factory=dict)


class ChannelResponse(BaseModel):
    id: int
    name: str
    type: str
    enabled: bool
    configuration: dict
    usage_count: int
    last_used: Optional[datetime] = None
    last_error: Optional[str] = None
    last_tested: Optional[datetime] = None
    test_result: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ChannelTestResponse(BaseModel):
    success: bool
    error: Optional[str] = None
