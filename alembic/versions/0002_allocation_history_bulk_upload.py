"""allocation_history_bulk_upload

Adds numbered allocation versions (``allocation_history``) and the log of
allocation spreadsheet uploads (``bulk_upload_log``).

Revision ID: 0002_allocation_history_bulk_upload
Revises: 0001_initial_schema
Create Date: 2026-10-19 15:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0002_allocation_history_bulk_upload'
down_revision: Union[str, None] = '0001_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'allocation_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('allocation_id', sa.Integer(), sa.ForeignKey('allocation.id'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('change_type', sa.String(20), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('previous_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('new_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('previous_remarks', sa.Text(), nullable=True),
        sa.Column('new_remarks', sa.Text(), nullable=True),
        sa.Column('change_reason', sa.Text(), nullable=True),
        sa.Column('changed_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('changed_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('allocation_id', 'version', name='uq_allocation_history_version'),
    )
    op.create_index('ix_allocation_history_allocation_id', 'allocation_history', ['allocation_id'])

    op.create_table(
        'bulk_upload_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('upload_type', sa.String(30), nullable=False, server_default='allocation'),
        sa.Column('uploaded_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('total_rows', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('processing_ms', sa.Integer(), nullable=True),
        sa.Column('financial_year', sa.String(9), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_bulk_upload_log_upload_type', 'bulk_upload_log', ['upload_type'])
    op.create_index('ix_bulk_upload_log_created_at', 'bulk_upload_log', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_bulk_upload_log_created_at', table_name='bulk_upload_log')
    op.drop_index('ix_bulk_upload_log_upload_type', table_name='bulk_upload_log')
    op.drop_table('bulk_upload_log')
    op.drop_index('ix_allocation_history_allocation_id', table_name='allocation_history')
    op.drop_table('allocation_history')
