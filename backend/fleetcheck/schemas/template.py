"""Health check template schemas for API."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from .batch import CheckConfiguration, CheckTypes, NotificationSettings, ScheduleSpec


class TemplateCreate(BaseModel):
    """Schema for creating a template."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=500)
    check_types: CheckTypes = Field(default_factory=CheckTypes)
    configuration: CheckConfiguration = Field(default_factory=CheckConfiguration)
    schedule: Optional[ScheduleSpec] = None
    notifications: Optional[NotificationSettings] = None
    is_default: bool = False


class TemplateResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    check_types: dict
    configuration: dict
    schedule: Optional[dict] = None
    notifications: Optional[dict] = None
    is_default: bool
    usage_count: int
    last_used: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
