"""Pydantic schemas for API request/response models."""
from .monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorDelete,
    MonitorResponse,
    PingResultResponse,
)
from .site_test import (
    SiteTestRequest,
    SiteReportResponse,
)
from .status import StatusOverview

__all__ = [
    "MonitorCreate",
    "MonitorUpdate",
    "MonitorDelete",
    "MonitorResponse",
    "PingResultResponse",
    "SiteTestRequest",
    "SiteReportResponse",
    "StatusOverview",
]
