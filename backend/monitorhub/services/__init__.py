"""Services for probing, incident tracking, alerting and scheduling."""
from .prober import ProberService, ProbeResult
from .kv_store import KeyValueStore, RunLock, AlertCooldown, ResultCache
from .narrator import NarratorService
from .incidents import IncidentService
from .alerter import AlerterService
from .email_sender import EmailSenderService, EmailConfig
from .scheduler import SchedulerService, SweepOutcome, SweepResult
from .factory import MonitoringServices, build_services

__all__ = [
    "ProberService",
    "ProbeResult",
    "KeyValueStore",
    "RunLock",
    "AlertCooldown",
    "ResultCache",
    "NarratorService",
    "IncidentService",
    "AlerterService",
    "EmailSenderService",
    "EmailConfig",
    "SchedulerService",
    "SweepOutcome",
    "SweepResult",
    "MonitoringServices",
    "build_services",
]
