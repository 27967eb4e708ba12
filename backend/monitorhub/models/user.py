"""User model - monitor owners and their alert preferences."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.db_utils import utcnow


class User(Base):
    """Account that owns monitors. Managed outside this service; read-only here."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    email_alerts = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    monitors = relationship("Monitor", back_populates="user")
