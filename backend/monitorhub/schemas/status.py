"""Status overview schemas for dashboard."""
from typing import List, Optional
from pydantic import BaseModel


class MonitorSummary(BaseModel):
    """Summary of a monitor for dashboard."""
    id: int
    name: str
    url: str
    status: str  # UP, DOWN, SLOW
    uptime_24h: Optional[float] = None  # Percentage, None without checks
    last_check: Optional[str] = None
    last_response_time: Optional[int] = None


class StatusOverview(BaseModel):
    """Dashboard overview data."""
    total_monitors: int
    active_monitors: int
    monitors_up: int
    monitors_down: int
    monitors_slow: int
    ongoing_incidents: int
    incidents_24h: int
    avg_response_time_ms: int  # over all stored health logs, 0 without any
    overall_uptime_24h: float  # 100 when nothing was checked
    monitors: List[MonitorSummary]
