"""Alert model - log of notification attempts."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.db_utils import utcnow


class Alert(Base):
    """Record of a downtime or recovery notification attempt."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(String, nullable=False)  # down, recovered
    channel = Column(String, default="email")
    sent_at = Column(DateTime, default=utcnow)
    payload = Column(String, nullable=True)  # JSON summary of the message
    success = Column(Integer, nullable=True)  # 1=success, 0=failed

    # Relationship
    monitor = relationship("Monitor", back_populates="alerts")
