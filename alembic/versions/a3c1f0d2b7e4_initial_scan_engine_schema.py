"""Initial scan engine schema

Revision ID: a3c1f0d2b7e4
Revises:
Create Date: 2026-10-18 09:12:44.201583

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3c1f0d2b7e4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ACTIVE_SCAN_CONDITION = "status IN ('pending', 'in_progress')"


def upgrade() -> None:
    """Create domains, cookie_records and scan_jobs."""
    # Create domains table
    op.create_table(
        'domains',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('scan_config', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('domain')
    )

    # Create cookie_records table
    op.create_table(
        'cookie_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('domain_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('path', sa.String(length=1024), nullable=False),
        sa.Column('cookie_domain', sa.String(length=255), nullable=True),
        sa.Column('provider', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('description', sa.JSON(), nullable=False),
        sa.Column('purpose', sa.JSON(), nullable=False),
        sa.Column('attributes', sa.JSON(), nullable=False),
        sa.Column('detection', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['domain_id'], ['domains.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('domain_id', 'name', 'path', name='uq_cookie_records_domain_name_path')
    )
    op.create_index('ix_cookie_records_domain_status', 'cookie_records', ['domain_id', 'status'])
    op.create_index(op.f('ix_cookie_records_domain_id'), 'cookie_records', ['domain_id'])
    op.create_index(op.f('ix_cookie_records_status'), 'cookie_records', ['status'])

    # Create scan_jobs table
    op.create_table(
        'scan_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('domain_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('scan_config', sa.JSON(), nullable=False),
        sa.Column('progress', sa.JSON(), nullable=False),
        sa.Column('findings', sa.JSON(), nullable=True),
        sa.Column('stats', sa.JSON(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['domain_id'], ['domains.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scan_jobs_domain_status', 'scan_jobs', ['domain_id', 'status'])
    op.create_index(op.f('ix_scan_jobs_domain_id'), 'scan_jobs', ['domain_id'])
    op.create_index(op.f('ix_scan_jobs_status'), 'scan_jobs', ['status'])

    # At most one pending or in-progress scan per domain
    op.create_index(
        'uq_scan_jobs_active_domain',
        'scan_jobs',
        ['domain_id'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_SCAN_CONDITION),
        postgresql_where=sa.text(ACTIVE_SCAN_CONDITION)
    )


def downgrade() -> None:
    """Drop the scan engine schema."""
    op.drop_index('uq_scan_jobs_active_domain', table_name='scan_jobs')
    op.drop_index(op.f('ix_scan_jobs_status'), table_name='scan_jobs')
    op.drop_index(op.f('ix_scan_jobs_domain_id'), table_name='scan_jobs')
    op.drop_index('ix_scan_jobs_domain_status', table_name='scan_jobs')
    op.drop_table('scan_jobs')

    op.drop_index(op.f('ix_cookie_records_status'), table_name='cookie_records')
    op.drop_index(op.f('ix_cookie_records_domain_id'), table_name='cookie_records')
    op.drop_index('ix_cookie_records_domain_status', table_name='cookie_records')
    op.drop_table('cookie_records')

    op.drop_table('domains')
