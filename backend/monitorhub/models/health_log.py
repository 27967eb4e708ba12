"""HealthLog model - append-only probe history."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Index
from sqlalchemy.orm import relationship

from ..database import Base


class HealthLog(Base):
    """Outcome of one probe. Never updated; expired by the retention job."""

    __tablename__ = "health_logs"
    __table_args__ = (
        Index("ix_health_logs_monitor_checked", "monitor_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    checked_at = Column(DateTime, nullable=False)
    is_up = Column(Boolean, nullable=False)
    status_code = Column(Integer, nullable=True)
    response_time = Column(Integer, nullable=True)  # ms
    error_message = Column(String, nullable=True)

    monitor = relationship("Monitor", back_populates="health_logs")
