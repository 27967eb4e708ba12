"""Incident model - downtime episodes per monitor."""
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from ..database import Base


class IncidentStatus(str, enum.Enum):
    ONGOING = "ONGOING"
    RESOLVED = "RESOLVED"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Incident(Base):
    """A downtime episode, opened on the second consecutive failure.

    The partial unique index keeps at most one ONGOING row per monitor even
    when two detector calls race.
    """

    __tablename__ = "incidents"
    __table_args__ = (
        Index(
            "uq_incidents_one_ongoing_per_monitor",
            "monitor_id",
            unique=True,
            sqlite_where=text("status = 'ONGOING'"),
            postgresql_where=text("status = 'ONGOING'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # copied from monitor owner
    started_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    status = Column(String, default=IncidentStatus.ONGOING.value, nullable=False)
    severity = Column(String, nullable=True)  # LOW, MEDIUM, HIGH
    narrative = Column(String, nullable=True)
    suggested_fix = Column(String, nullable=True)
    failure_count = Column(Integer, default=2, nullable=False)

    monitor = relationship("Monitor", back_populates="incidents")
