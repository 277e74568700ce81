"""Sync error model for failed records within a run."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base, JSONType


class SyncError(Base):
    """One failed record, page or push batch of a sync run."""

    __tablename__ = "gl_sync_errors"

    id = Column(Integer, primary_key=True, index=True)
    mapping_id = Column(Integer, ForeignKey("gl_mappings.id", ondelete="CASCADE"), nullable=False, index=True)
    sync_log_id = Column(Integer, ForeignKey("gl_sync_logs.id", ondelete="SET NULL"), nullable=True)

    error_type = Column(String(50), nullable=False)
    error_message = Column(Text, nullable=False)
    record_data = Column(JSONType, nullable=True)
    glide_row_id = Column(String(255), nullable=True, index=True)
    retryable = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    mapping = relationship("Mapping", back_populates="sync_errors")

    __table_args__ = (
        Index('ix_gl_sync_errors_unresolved', 'mapping_id', 'resolved_at'),
    )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def __repr__(self):
        return f"<SyncError(id={self.id}, type='{self.error_type}', row='{self.glide_row_id}', retryable={self.retryable})>"
