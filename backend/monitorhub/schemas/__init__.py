"""Pydantic schemas for API request/response models."""
from .monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorResponse,
    HealthLogResponse,
    HealthLogPage,
)
from .incident import (
    IncidentResponse,
    IncidentList,
    Pagination,
    IncidentStats,
)
from .cron import (
    SweepCompleted,
    SweepSkipped,
    SchedulerStatus,
    LastRun,
)
from .status import (
    StatusOverview,
    MonitorSummary,
)

__all__ = [
    "MonitorCreate",
    "MonitorUpdate",
    "MonitorResponse",
    "HealthLogResponse",
    "HealthLogPage",
    "IncidentResponse",
    "IncidentList",
    "Pagination",
    "IncidentStats",
    "SweepCompleted",
    "SweepSkipped",
    "SchedulerStatus",
    "LastRun",
    "StatusOverview",
    "MonitorSummary",
]
