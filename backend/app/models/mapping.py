"""Mapping model binding a Glide table to a destination table."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base, JSONType


class Mapping(Base):
    """Sync configuration for one Glide table and one destination table."""

    __tablename__ = "gl_mappings"

    id = Column(Integer, primary_key=True, index=True)
    connection_id = Column(Integer, ForeignKey("gl_connections.id", ondelete="CASCADE"), nullable=False)
    glide_table = Column(String(255), nullable=False)
    glide_table_display_name = Column(String(255), nullable=True)
    target_table = Column(String(255), nullable=False)

    # {glide_column_id: {glide_column_name, target_column, data_type, required}}
    column_mappings = Column(JSONType, nullable=False, default=dict)

    sync_direction = Column(String(20), nullable=False, default='to_destination')  # 'to_destination', 'to_source', 'both'
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    connection = relationship("Connection", back_populates="mappings")
    sync_logs = relationship("SyncLog", back_populates="mapping", cascade="all, delete-orphan")
    sync_errors = relationship("SyncError", back_populates="mapping", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_gl_mappings_connection_table', 'connection_id', 'glide_table'),
    )

    def __repr__(self):
        return f"<Mapping(id={self.id}, glide_table='{self.glide_table}', target='{self.target_table}', enabled={self.enabled})>"
