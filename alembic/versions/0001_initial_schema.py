"""initial_schema

Creates every CBMS table: organisation, master data, financial years,
proposals, allocations, expenditures, income and the cross-cutting tables
(settings, audit log, notifications).

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), nullable=nullable)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # -- Organisation ---------------------------------------------------------
    op.create_table(
        'department',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(20), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('hod_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('name', name='uq_department_name'),
        sa.UniqueConstraint('code', name='uq_department_code'),
    )
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(200), nullable=False),
        sa.Column('password_hash', sa.String(200), nullable=False),
        sa.Column('role', sa.String(30), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('department.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('email', name='uq_user_email'),
    )
    with op.batch_alter_table('department') as batch:
        batch.create_foreign_key('fk_department_hod_id_user', 'user', ['hod_id'], ['id'])

    # -- Master data ----------------------------------------------------------
    op.create_table(
        'budget_head',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(30), nullable=False),
        sa.Column('category', sa.String(50), nullable=False, server_default='other'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('department.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('code', name='uq_budget_head_code'),
    )
    op.create_table(
        'category',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('name', name='uq_category_name'),
        sa.UniqueConstraint('code', name='uq_category_code'),
    )
    op.create_table(
        'financial_year',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('year', sa.String(9), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='planning'),
        _money('total_income_expected'),
        _money('total_income_received'),
        _money('total_allocated'),
        _money('total_spent'),
        _money('carryforward_amount'),
        sa.Column('carryforward_allowed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('locked_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('lock_remarks', sa.Text(), nullable=True),
        sa.Column('closed_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('closure_remarks', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('year', name='uq_financial_year_year'),
    )

    # -- Planning chain -------------------------------------------------------
    op.create_table(
        'budget_proposal',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('financial_year', sa.String(9), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('department.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        _money('total_proposed_amount'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('submitted_date', sa.DateTime(), nullable=True),
        sa.Column('approved_date', sa.DateTime(), nullable=True),
        sa.Column('approved_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('submitted_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('last_modified_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column(
            'original_proposal_id', sa.Integer(), sa.ForeignKey('budget_proposal.id'), nullable=True
        ),
        *_timestamps(),
    )
    op.create_index('ix_budget_proposal_financial_year', 'budget_proposal', ['financial_year'])

    op.create_table(
        'allocation',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('financial_year', sa.String(9), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('department.id'), nullable=False),
        sa.Column('budget_head_id', sa.Integer(), sa.ForeignKey('budget_head.id'), nullable=False),
        _money('allocated_amount'),
        _money('spent_amount'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column(
            'source_proposal_id', sa.Integer(), sa.ForeignKey('budget_proposal.id'), nullable=True
        ),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('last_modified_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            'financial_year', 'department_id', 'budget_head_id',
            name='uq_allocation_year_department_head',
        ),
    )
    op.create_index('ix_allocation_financial_year', 'allocation', ['financial_year'])

    op.create_table(
        'proposal_item',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('proposal_id', sa.Integer(), sa.ForeignKey('budget_proposal.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('budget_head_id', sa.Integer(), sa.ForeignKey('budget_head.id'), nullable=True),
        _money('proposed_amount'),
        sa.Column('justification', sa.Text(), nullable=True),
        _money('previous_year_utilization'),
        sa.Column('allocation_id', sa.Integer(), sa.ForeignKey('allocation.id'), nullable=True),
    )
    op.create_table(
        'proposal_approval_step',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('proposal_id', sa.Integer(), sa.ForeignKey('budget_proposal.id'), nullable=False),
        sa.Column('actor_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('role', sa.String(30), nullable=False),
        sa.Column('decision', sa.String(20), nullable=False),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        'allocation_amendment',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('allocation_id', sa.Integer(), sa.ForeignKey('allocation.id'), nullable=False),
        _money('original_amount'),
        _money('requested_amount'),
        _money('change_amount'),
        sa.Column('change_percent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('change_reason', sa.Text(), nullable=False),
        sa.Column('requested_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('approved_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('approval_remarks', sa.Text(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )

    # -- Execution chain ------------------------------------------------------
    op.create_table(
        'expenditure',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('department.id'), nullable=False),
        sa.Column('budget_head_id', sa.Integer(), sa.ForeignKey('budget_head.id'), nullable=False),
        sa.Column('financial_year', sa.String(9), nullable=False),
        sa.Column('bill_number', sa.String(100), nullable=False),
        sa.Column('bill_date', sa.Date(), nullable=False),
        _money('bill_amount'),
        sa.Column('party_name', sa.String(300), nullable=False),
        sa.Column('expense_details', sa.Text(), nullable=False),
        sa.Column('reference_budget_register_no', sa.String(100), nullable=True),
        sa.Column('attachments', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('submitted_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('is_resubmission', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            'original_expenditure_id', sa.Integer(), sa.ForeignKey('expenditure.id'), nullable=True
        ),
        sa.Column('resubmission_remarks', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_expenditure_financial_year', 'expenditure', ['financial_year'])

    op.create_table(
        'expenditure_approval_step',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('expenditure_id', sa.Integer(), sa.ForeignKey('expenditure.id'), nullable=False),
        sa.Column('actor_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('role', sa.String(30), nullable=False),
        sa.Column('decision', sa.String(20), nullable=False),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        'budget_override',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('expenditure_id', sa.Integer(), sa.ForeignKey('expenditure.id'), nullable=False),
        sa.Column('allocation_id', sa.Integer(), sa.ForeignKey('allocation.id'), nullable=False),
        _money('allocation_amount'),
        _money('allocation_spent'),
        _money('expense_amount'),
        _money('overrun_amount'),
        sa.Column('justification', sa.Text(), nullable=False),
        sa.Column('requested_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('approved_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('approval_remarks', sa.Text(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        'income',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('financial_year', sa.String(9), nullable=False),
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('category', sa.String(20), nullable=False, server_default='recurring'),
        _money('amount'),
        sa.Column('expected_date', sa.Date(), nullable=True),
        sa.Column('received_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='expected'),
        sa.Column('reference_number', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('verified_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_income_financial_year', 'income', ['financial_year'])

    # -- Cross-cutting --------------------------------------------------------
    op.create_table(
        'setting',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('value', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(50), nullable=False, server_default='general'),
        sa.Column('updated_by_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('key', name='uq_setting_key'),
    )
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('actor_role', sa.String(30), nullable=True),
        sa.Column('target_entity', sa.String(50), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('previous_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_log_event_type', 'audit_log', ['event_type'])
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'])

    op.create_table(
        'notification',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(30), nullable=False, server_default='system'),
        sa.Column('link', sa.String(300), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_notification_user_id', 'notification', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_notification_user_id', table_name='notification')
    op.drop_table('notification')
    op.drop_index('ix_audit_log_created_at', table_name='audit_log')
    op.drop_index('ix_audit_log_event_type', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_table('setting')
    op.drop_index('ix_income_financial_year', table_name='income')
    op.drop_table('income')
    op.drop_table('budget_override')
    op.drop_table('expenditure_approval_step')
    op.drop_index('ix_expenditure_financial_year', table_name='expenditure')
    op.drop_table('expenditure')
    op.drop_table('allocation_amendment')
    op.drop_table('proposal_approval_step')
    op.drop_table('proposal_item')
    op.drop_index('ix_allocation_financial_year', table_name='allocation')
    op.drop_table('allocation')
    op.drop_index('ix_budget_proposal_financial_year', table_name='budget_proposal')
    op.drop_table('budget_proposal')
    op.drop_table('financial_year')
    op.drop_table('category')
    op.drop_table('budget_head')
    with op.batch_alter_table('department') as batch:
        batch.drop_constraint('fk_department_hod_id_user', type_='foreignkey')
    op.drop_table('user')
    op.drop_table('department')
