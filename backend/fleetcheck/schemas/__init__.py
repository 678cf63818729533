"""Pydantic schemas for API request/response models."""
from .batch import (
    CheckTypes,
    PerformanceThresholds,
    CheckConfiguration,
    NotificationSettings,
    ScheduleSpec,
    TargetFilter,
    StartBatchRequest,
    ScheduleBatchRequest,
    BatchStartResponse,
    BatchScheduleResponse,
    OperationResponse,
    OperationPage,
)
from .alert import (
    AlertResponse,
    AlertPage,
    AlertResolve,
    AlertSuppress,
    AlertRuleCreate,
    AlertRuleResponse,
    ChannelCreate,
    ChannelResponse,
    ChannelTestResponse,
)
from .domain import DomainCreate, DomainResponse
from .template import TemplateCreate, TemplateResponse
from .stats import HealthStats

__all__ = [
    "CheckTypes",
    "PerformanceThresholds",
    "CheckConfiguration",
    "NotificationSettings",
    "ScheduleSpec",
    "TargetFilter",
    "StartBatchRequest",
    "ScheduleBatchRequest",
    "BatchStartResponse",
    "BatchScheduleResponse",
    "OperationResponse",
    "OperationPage",
    "AlertResponse",
    "AlertPage",
    "AlertResolve",
    "AlertSuppress",
    "AlertRuleCreate",
    "AlertRuleResponse",
    "ChannelCreate",
    "ChannelResponse",
    "ChannelTestResponse",
    "DomainCreate",
    "DomainResponse",
    "TemplateCreate",
    "TemplateResponse",
    "HealthStats",
]
