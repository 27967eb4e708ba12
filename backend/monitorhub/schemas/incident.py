"""Incident schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class IncidentResponse(BaseModel):
    """Incident in API responses. Narrative fields fill in after creation."""
    id: int
    monitor_id: int
    user_id: int
    started_at: datetime
    resolved_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    status: str  # ONGOING, RESOLVED
    severity: Optional[str] = None  # LOW, MEDIUM, HIGH
    narrative: Optional[str] = None
    suggested_fix: Optional[str] = None
    failure_count: int

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    total: int
    limit: int
    skip: int
    has_more: bool


class IncidentList(BaseModel):
    incidents: List[IncidentResponse]
    pagination: Pagination


class IncidentStats(BaseModel):
    ongoing_count: int
    last_24h_count: int
