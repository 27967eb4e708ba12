"""Monitor model - user-owned URLs polled by the sweep."""
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.db_utils import utcnow


class MonitorState(str, enum.Enum):
    """Current health of a monitor as seen by the last probe."""
    UP = "UP"
    DOWN = "DOWN"
    SLOW = "SLOW"


MIN_INTERVAL_SECONDS = 60
MAX_INTERVAL_SECONDS = 3600


class Monitor(Base):
    """A monitored HTTP(S) endpoint.

    User edits touch name/url/interval/is_active; the sweep only touches the
    status columns (status, last_*, consecutive_failures).
    """

    __tablename__ = "monitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    interval = Column(Integer, default=60)  # seconds, 60-3600
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    # Written by the sweep
    status = Column(String, default=MonitorState.UP.value, nullable=False)
    consecutive_failures = Column(Integer, default=0, nullable=False)
    last_checked_at = Column(DateTime, nullable=True)
    last_status_code = Column(Integer, nullable=True)
    last_response_time = Column(Integer, nullable=True)  # ms

    # Relationships
    user = relationship("User", back_populates="monitors")
    health_logs = relationship("HealthLog", back_populates="monitor", cascade="all, delete-orphan")
    incidents = relationship("Incident", back_populates="monitor", cascade="all, delete-orphan")
    alerts = relationship("Alert", back_populates="monitor", cascade="all, delete-orphan")
