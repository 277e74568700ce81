"""Connection model for Glide application credentials."""

from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base, JSONType


class Connection(Base):
    """Credentials and identity of one Glide application."""

    __tablename__ = "gl_connections"

    id = Column(Integer, primary_key=True, index=True)
    app_id = Column(String(255), nullable=False, index=True)
    api_key = Column(Text, nullable=False)  # Encrypted
    app_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default='unknown')  # 'active', 'error', 'unknown'
    status_message = Column(Text, nullable=True)
    last_sync = Column(DateTime(timezone=True), nullable=True)
    settings = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    mappings = relationship("Mapping", back_populates="connection", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Connection(id={self.id}, app_id='{self.app_id}', status='{self.status}')>"
