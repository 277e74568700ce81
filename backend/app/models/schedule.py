"""Schedule model for periodic sync configuration."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from app.database import Base


class Schedule(Base):
    """Cron schedule for the periodic batch sync of enabled mappings."""

    __tablename__ = "gl_sync_schedules"

    id = Column(Integer, primary_key=True, index=True)
    cron = Column(String(100), nullable=False)
    timezone = Column(String(50), nullable=False, default='UTC')
    enabled = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Schedule(id={self.id}, cron='{self.cron}', enabled={self.enabled})>"
