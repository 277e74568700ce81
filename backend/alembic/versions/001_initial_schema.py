"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql import func

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')
ACTIVE_RUN = sa.text("status IN ('started', 'processing')")


def upgrade() -> None:
    # Glide applications
    op.create_table('gl_connections',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('app_id', sa.String(255), nullable=False),
    sa.Column('api_key', sa.Text(), nullable=False),
    sa.Column('app_name', sa.String(255), nullable=True),
    sa.Column('status', sa.String(20), nullable=False, server_default='unknown'),
    sa.Column('status_message', sa.Text(), nullable=True),
    sa.Column('last_sync', sa.DateTime(timezone=True), nullable=True),
    sa.Column('settings', JSONType, nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_gl_connections_id'), 'gl_connections', ['id'], unique=False)
    op.create_index(op.f('ix_gl_connections_app_id'), 'gl_connections', ['app_id'], unique=False)

    # Table mappings
    op.create_table('gl_mappings',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('connection_id', sa.Integer(), nullable=False),
    sa.Column('glide_table', sa.String(255), nullable=False),
    sa.Column('glide_table_display_name', sa.String(255), nullable=True),
    sa.Column('target_table', sa.String(255), nullable=False),
    sa.Column('column_mappings', JSONType, nullable=False),
    sa.Column('sync_direction', sa.String(20), nullable=False, server_default='to_destination'),
    sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.ForeignKeyConstraint(['connection_id'], ['gl_connections.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_gl_mappings_id'), 'gl_mappings', ['id'], unique=False)
    op.create_index('ix_gl_mappings_connection_table', 'gl_mappings', ['connection_id', 'glide_table'], unique=False)

    # Sync runs
    op.create_table('gl_sync_logs',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('mapping_id', sa.Integer(), nullable=False),
    sa.Column('trigger_type', sa.String(50), nullable=False, server_default='manual'),
    sa.Column('direction', sa.String(20), nullable=True),
    sa.Column('started_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('status', sa.String(20), nullable=False, server_default='started'),
    sa.Column('message', sa.Text(), nullable=True),
    sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('failed_records', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('pushed_records', sa.Integer(), nullable=False, server_default='0'),
    sa.ForeignKeyConstraint(['mapping_id'], ['gl_mappings.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_gl_sync_logs_id'), 'gl_sync_logs', ['id'], unique=False)
    op.create_index(op.f('ix_gl_sync_logs_mapping_id'), 'gl_sync_logs', ['mapping_id'], unique=False)
    op.create_index('ix_gl_sync_logs_mapping_status', 'gl_sync_logs', ['mapping_id', 'status'], unique=False)
    op.create_index(
        'uq_gl_sync_logs_active_run', 'gl_sync_logs', ['mapping_id'], unique=True,
        postgresql_where=ACTIVE_RUN, sqlite_where=ACTIVE_RUN
    )

    # Failed records
    op.create_table('gl_sync_errors',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('mapping_id', sa.Integer(), nullable=False),
    sa.Column('sync_log_id', sa.Integer(), nullable=True),
    sa.Column('error_type', sa.String(50), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=False),
    sa.Column('record_data', JSONType, nullable=True),
    sa.Column('glide_row_id', sa.String(255), nullable=True),
    sa.Column('retryable', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('resolution_notes', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['mapping_id'], ['gl_mappings.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['sync_log_id'], ['gl_sync_logs.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_gl_sync_errors_id'), 'gl_sync_errors', ['id'], unique=False)
    op.create_index(op.f('ix_gl_sync_errors_mapping_id'), 'gl_sync_errors', ['mapping_id'], unique=False)
    op.create_index(op.f('ix_gl_sync_errors_glide_row_id'), 'gl_sync_errors', ['glide_row_id'], unique=False)
    op.create_index('ix_gl_sync_errors_unresolved', 'gl_sync_errors', ['mapping_id', 'resolved_at'], unique=False)

    # Cross-table references
    op.create_table('gl_relationship_mappings',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('source_table', sa.String(255), nullable=False),
    sa.Column('source_column', sa.String(255), nullable=False),
    sa.Column('target_table', sa.String(255), nullable=False),
    sa.Column('target_column', sa.String(255), nullable=False, server_default='glide_row_id'),
    sa.Column('link_column', sa.String(255), nullable=True),
    sa.Column('relationship_type', sa.String(50), nullable=False, server_default='many_to_one'),
    sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('source_table', 'source_column', name='uq_gl_relationship_source')
    )
    op.create_index(op.f('ix_gl_relationship_mappings_id'), 'gl_relationship_mappings', ['id'], unique=False)

    op.create_table('gl_relationship_candidates',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('source_table', sa.String(255), nullable=False),
    sa.Column('source_row_id', sa.String(255), nullable=False),
    sa.Column('source_column', sa.String(255), nullable=False),
    sa.Column('target_table', sa.String(255), nullable=False),
    sa.Column('reference_value', sa.String(255), nullable=False),
    sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
    sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('last_error', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('source_table', 'source_row_id', 'source_column', name='uq_gl_relationship_candidate')
    )
    op.create_index(op.f('ix_gl_relationship_candidates_id'), 'gl_relationship_candidates', ['id'], unique=False)
    op.create_index(op.f('ix_gl_relationship_candidates_target_table'), 'gl_relationship_candidates', ['target_table'], unique=False)
    op.create_index('ix_gl_relationship_candidates_status', 'gl_relationship_candidates', ['status', 'source_table'], unique=False)

    # Periodic sync
    op.create_table('gl_sync_schedules',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('cron', sa.String(100), nullable=False),
    sa.Column('timezone', sa.String(50), nullable=False, server_default='UTC'),
    sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=func.now()),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=func.now(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_gl_sync_schedules_id'), 'gl_sync_schedules', ['id'], unique=False)


def downgrade() -> None:
    op.drop_table('gl_sync_schedules')
    op.drop_table('gl_relationship_candidates')
    op.drop_table('gl_relationship_mappings')
    op.drop_table('gl_sync_errors')
    op.drop_table('gl_sync_logs')
    op.drop_table('gl_mappings')
    op.drop_table('gl_connections')
