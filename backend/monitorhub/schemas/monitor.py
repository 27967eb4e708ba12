"""Monitor schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from ..models.monitor import MIN_INTERVAL_SECONDS, MAX_INTERVAL_SECONDS


class MonitorCreate(BaseModel):
    """Schema for registering a new monitor."""
    user_id: int
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, pattern=r"^https?://")
    interval: int = Field(default=60, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS)
    is_active: bool = True


class MonitorUpdate(BaseModel):
    """Schema for updating a monitor. Status columns are sweep-owned."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    url: Optional[str] = Field(None, min_length=1, pattern=r"^https?://")
    interval: Optional[int] = Field(None, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS)
    is_active: Optional[bool] = None


class MonitorResponse(BaseModel):
    """Schema for monitor in API responses."""
    id: int
    user_id: int
    name: str
    url: str
    interval: int
    is_active: bool
    created_at: datetime
    status: str  # UP, DOWN, SLOW
    consecutive_failures: int
    last_checked_at: Optional[datetime] = None
    last_status_code: Optional[int] = None
    last_response_time: Optional[int] = None

    class Config:
        from_attributes = True


class HealthLogResponse(BaseModel):
    """One probe outcome."""
    id: int
    checked_at: datetime
    is_up: bool
    status_code: Optional[int] = None
    response_time: Optional[int] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class HealthLogPage(BaseModel):
    """Paginated health log response."""
    items: List[HealthLogResponse]
    total: int
    page: int
    per_page: int
    total_pages: int
