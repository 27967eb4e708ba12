"""Database models."""
from .user import User
from .monitor import Monitor, MonitorState
from .health_log import HealthLog
from .incident import Incident, IncidentStatus, Severity
from .alert import Alert

__all__ = ["User", "Monitor", "MonitorState", "HealthLog", "Incident", "IncidentStatus", "Severity", "Alert"]
