"""Monitor schemas for API."""
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from ..models import MonitorState


def validate_http_url(value: str) -> str:
    """Accept absolute http(s) URLs only; returns the URL stripped of whitespace."""
    value = value.strip()
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError("Please enter a valid URL")
    return value


class MonitorCreate(BaseModel):
    """Schema for creating a new monitor."""
    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., min_length=1)
    interval: int = Field(default=5, ge=1, le=60)  # minutes
    # bcrypt only considers the first 72 bytes
    password: str = Field(..., min_length=4, max_length=72)

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        return validate_http_url(v)


class MonitorUpdate(BaseModel):
    """Schema for updating a monitor."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    url: Optional[str] = Field(None, min_length=1)
    interval: Optional[int] = Field(None, ge=1, le=60)

    @field_validator("url")
    @classmethod
    def check_url(cls, v: Optional[str]) -> Optional[str]:
        return validate_http_url(v) if v is not None else v


class MonitorDelete(BaseModel):
    """Deletion is authorized by the password given at creation."""
    password: str = Field(..., min_length=1, max_length=72)


class MonitorResponse(BaseModel):
    """Schema for monitor in API responses."""
    id: str
    name: str
    url: str
    interval: int
    status: MonitorState
    last_checked: Optional[datetime] = None
    response_time: Optional[int] = None
    uptime_percentage: int
    total_checks: int
    successful_checks: int

    class Config:
        from_attributes = True


class PingResultResponse(BaseModel):
    """One entry of a monitor's ping history."""
    id: int
    monitor_id: str
    status: MonitorState
    response_time: Optional[int] = None
    timestamp: datetime

    class Config:
        from_attributes = True
