"""Relationship models for rowid_* cross-table references."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Index, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base


class RelationshipMapping(Base):
    """Declared relationship from a source column to a target table."""

    __tablename__ = "gl_relationship_mappings"

    id = Column(Integer, primary_key=True, index=True)
    source_table = Column(String(255), nullable=False)
    source_column = Column(String(255), nullable=False)
    target_table = Column(String(255), nullable=False)
    target_column = Column(String(255), nullable=False, default='glide_row_id')
    link_column = Column(String(255), nullable=True)  # receives the target primary key
    relationship_type = Column(String(50), nullable=False, default='many_to_one')
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('source_table', 'source_column', name='uq_gl_relationship_source'),
    )

    def __repr__(self):
        return f"<RelationshipMapping({self.source_table}.{self.source_column} -> {self.target_table}.{self.target_column})>"


class RelationshipCandidate(Base):
    """Pending or resolved reference found in a synced row."""

    __tablename__ = "gl_relationship_candidates"

    id = Column(Integer, primary_key=True, index=True)
    source_table = Column(String(255), nullable=False)
    source_row_id = Column(String(255), nullable=False)
    source_column = Column(String(255), nullable=False)
    target_table = Column(String(255), nullable=False, index=True)
    reference_value = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False, default='pending')  # 'pending', 'resolved', 'failed'
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('source_table', 'source_row_id', 'source_column', name='uq_gl_relationship_candidate'),
        Index('ix_gl_relationship_candidates_status', 'status', 'source_table'),
    )

    def __repr__(self):
        return f"<RelationshipCandidate({self.source_table}.{self.source_column}={self.reference_value}, status='{self.status}')>"
