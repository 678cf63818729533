"""Domain schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class DomainCreate(BaseModel):
    """Schema for registering a target domain."""
    name: str = Field(..., min_length=1, max_length=253, pattern=r"^[A-Za-z0-9.-]+$")
    client_name: Optional[str] = Field(None, max_length=255)
    tags: List[str] = Field(default_factory=list)
    enabled: bool = True


class DomainResponse(BaseModel):
    """Schema for domain in API responses."""
    id: int
    name: str
    client_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    enabled: bool
    last_status: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
