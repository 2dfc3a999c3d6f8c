"""Status overview schemas for dashboard."""
from typing import Optional
from pydantic import BaseModel


class StatusOverview(BaseModel):
    """Dashboard overview data."""
    total_monitors: int
    monitors_up: int
    monitors_down: int
    monitors_checking: int
    average_uptime: int  # Mean uptime percentage across monitors, 100 when none
    average_response_time: Optional[int] = None  # Mean of latest response times (ms)
