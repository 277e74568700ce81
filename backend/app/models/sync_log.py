"""Sync log model for tracking synchronization executions."""

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base

NON_TERMINAL_STATUSES = ('started', 'processing')
TERMINAL_STATUSES = ('completed', 'failed')


class SyncLog(Base):
    """Sync execution history and status tracking."""

    __tablename__ = "gl_sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    mapping_id = Column(Integer, ForeignKey("gl_mappings.id", ondelete="CASCADE"), nullable=False, index=True)

    # Execution details
    trigger_type = Column(String(50), nullable=False, default='manual')  # 'manual', 'scheduled', 'batch', 'retry'
    direction = Column(String(20), nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default='started')  # 'started', 'processing', 'completed', 'failed'
    message = Column(Text, nullable=True)

    # Statistics
    records_processed = Column(Integer, default=0, nullable=False)
    failed_records = Column(Integer, default=0, nullable=False)
    pushed_records = Column(Integer, default=0, nullable=False)

    mapping = relationship("Mapping", back_populates="sync_logs")

    __table_args__ = (
        Index('ix_gl_sync_logs_mapping_status', 'mapping_id', 'status'),
        # at most one non-terminal run per mapping
        Index(
            'uq_gl_sync_logs_active_run',
            'mapping_id',
            unique=True,
            postgresql_where=text("status IN ('started', 'processing')"),
            sqlite_where=text("status IN ('started', 'processing')"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<SyncLog(id={self.id}, mapping={self.mapping_id}, status='{self.status}', processed={self.records_processed})>"
