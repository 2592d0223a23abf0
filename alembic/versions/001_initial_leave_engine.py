"""Initial leave engine schema

Revision ID: 001_initial_leave_engine
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_leave_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    'role': ('EMPLOYEE', 'DEPT_HEAD', 'HR_ADMIN', 'HR_HEAD', 'CEO', 'SYSTEM_ADMIN'),
    'leavetype': (
        'EARNED', 'CASUAL', 'MEDICAL', 'MATERNITY', 'PATERNITY', 'STUDY',
        'EXTRAWITHPAY', 'EXTRAWITHOUTPAY', 'SPECIAL_DISABILITY', 'QUARANTINE', 'SPECIAL',
    ),
    'leavestatus': (
        'SUBMITTED', 'PENDING', 'APPROVED', 'REJECTED', 'RETURNED',
        'CANCELLED', 'CANCELLATION_REQUESTED', 'RECALLED',
    ),
    'dutyreturnstatus': ('NOT_REQUIRED', 'AWAITING_CERTIFICATE', 'UNDER_REVIEW', 'ACCEPTED', 'REJECTED'),
    'approvalkind': ('LEAVE', 'CANCELLATION', 'DUTY_RETURN'),
    'approvaldecision': ('PENDING', 'FORWARDED', 'APPROVED', 'REJECTED', 'RETURNED', 'CANCELLED'),
    'encashmentstatus': ('PENDING', 'APPROVED', 'REJECTED', 'PAID'),
    'balanceaction': ('RESERVE', 'RELEASE', 'ACCRUAL', 'OVERFLOW_OUT', 'OVERFLOW_IN'),
    'conversionkind': ('MEDICAL_EXCESS', 'CASUAL_EXCESS', 'EL_OVERFLOW'),
}


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == 'postgresql'


def _enum(name: str):
    # Postgres types are created once up front; several columns share them
    if _is_postgres():
        return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)
    return sa.Enum(*ENUMS[name], name=name)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text('CURRENT_TIMESTAMP'),
        nullable=nullable,
    )


def upgrade() -> None:
    if _is_postgres():
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).create(op.get_bind(), checkfirst=True)

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('emp_code', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('role', _enum('role'), nullable=False),
        sa.Column('department', sa.String(), nullable=True),
        sa.Column('join_date', sa.Date(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_employees_id'), 'employees', ['id'], unique=False)
    op.create_index(op.f('ix_employees_emp_code'), 'employees', ['emp_code'], unique=True)
    op.create_index(op.f('ix_employees_department'), 'employees', ['department'], unique=False)

    op.create_table(
        'holidays',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_holidays_id'), 'holidays', ['id'], unique=False)
    op.create_index(op.f('ix_holidays_year'), 'holidays', ['year'], unique=False)
    op.create_index(op.f('ix_holidays_date'), 'holidays', ['date'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('meta_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['actor_id'], ['employees.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_logs_id'), 'audit_logs', ['id'], unique=False)

    op.create_table(
        'leave_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('requester_id', sa.Integer(), nullable=False),
        sa.Column('type', _enum('leavetype'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('working_days', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', _enum('leavestatus'), nullable=False, server_default='SUBMITTED'),
        sa.Column('certificate_url', sa.String(), nullable=True),
        sa.Column('fitness_certificate_url', sa.String(), nullable=True),
        sa.Column('current_step', sa.Integer(), nullable=True),
        sa.Column('cycle', sa.Integer(), nullable=False),
        sa.Column('recall_date', sa.Date(), nullable=True),
        sa.Column(
            'duty_return_status',
            _enum('dutyreturnstatus'),
            nullable=False,
        ),
        sa.Column('certificate_cycle', sa.Integer(), nullable=False),
        sa.Column('returned_to_duty_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['requester_id'], ['employees.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('start_date <= end_date', name='check_start_date_le_end_date'),
    )
    op.create_index(op.f('ix_leave_requests_id'), 'leave_requests', ['id'], unique=False)
    op.create_index(op.f('ix_leave_requests_requester_id'), 'leave_requests', ['requester_id'], unique=False)
    op.create_index(
        'ix_leave_requests_requester_dates', 'leave_requests', ['requester_id', 'start_date', 'end_date'], unique=False
    )

    op.create_table(
        'approvals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('leave_id', sa.Integer(), nullable=False),
        sa.Column('kind', _enum('approvalkind'), nullable=False),
        sa.Column('cycle', sa.Integer(), nullable=False),
        sa.Column('step', sa.Integer(), nullable=False),
        sa.Column('approver_role', _enum('role'), nullable=True),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column(
            'decision',
            _enum('approvaldecision'),
            nullable=False,
        ),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('to_role', _enum('role'), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['leave_id'], ['leave_requests.id'], ),
        sa.ForeignKeyConstraint(['approver_id'], ['employees.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_approvals_id'), 'approvals', ['id'], unique=False)
    op.create_index(op.f('ix_approvals_leave_id'), 'approvals', ['leave_id'], unique=False)
    op.create_index(op.f('ix_approvals_approver_id'), 'approvals', ['approver_id'], unique=False)
    op.create_index('ix_approvals_leave_kind_cycle', 'approvals', ['leave_id', 'kind', 'cycle'], unique=False)

    op.create_table(
        'balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', _enum('leavetype'), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('opening', sa.Integer(), nullable=False),
        sa.Column('accrued', sa.Integer(), nullable=False),
        sa.Column('used', sa.Integer(), nullable=False),
        sa.Column('closing', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['user_id'], ['employees.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'type', 'year', name='uq_balances_user_type_year'),
        sa.CheckConstraint('used >= 0', name='check_balance_used_non_negative'),
        sa.CheckConstraint('closing >= 0', name='check_balance_closing_non_negative'),
    )
    op.create_index(op.f('ix_balances_id'), 'balances', ['id'], unique=False)
    op.create_index(op.f('ix_balances_user_id'), 'balances', ['user_id'], unique=False)
    op.create_index(op.f('ix_balances_year'), 'balances', ['year'], unique=False)

    op.create_table(
        'encashment_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('employee_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('days_requested', sa.Integer(), nullable=False),
        sa.Column('balance_at_request', sa.Integer(), nullable=False),
        sa.Column(
            'status',
            _enum('encashmentstatus'),
            nullable=False,
        ),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by_id', sa.Integer(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['employee_id'], ['employees.id'], ),
        sa.ForeignKeyConstraint(['approved_by_id'], ['employees.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('days_requested > 0', name='check_encashment_days_positive'),
    )
    op.create_index(op.f('ix_encashment_requests_id'), 'encashment_requests', ['id'], unique=False)
    op.create_index(op.f('ix_encashment_requests_employee_id'), 'encashment_requests', ['employee_id'], unique=False)
    op.create_index(op.f('ix_encashment_requests_year'), 'encashment_requests', ['year'], unique=False)

    op.create_table(
        'balance_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('leave_id', sa.Integer(), nullable=True),
        sa.Column('encashment_id', sa.Integer(), nullable=True),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('type', _enum('leavetype'), nullable=False),
        sa.Column('delta_days', sa.Integer(), nullable=False),
        sa.Column(
            'action',
            _enum('balanceaction'),
            nullable=False,
        ),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('action_by_id', sa.Integer(), nullable=True),
        _timestamp('action_at'),
        sa.ForeignKeyConstraint(['user_id'], ['employees.id'], ),
        sa.ForeignKeyConstraint(['leave_id'], ['leave_requests.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['encashment_id'], ['encashment_requests.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['action_by_id'], ['employees.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_balance_transactions_id'), 'balance_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_balance_transactions_user_id'), 'balance_transactions', ['user_id'], unique=False)
    op.create_index(op.f('ix_balance_transactions_leave_id'), 'balance_transactions', ['leave_id'], unique=False)
    op.create_index(
        op.f('ix_balance_transactions_encashment_id'), 'balance_transactions', ['encashment_id'], unique=False
    )
    op.create_index(op.f('ix_balance_transactions_year'), 'balance_transactions', ['year'], unique=False)
    op.create_index(
        op.f('ix_balance_transactions_action_by_id'), 'balance_transactions', ['action_by_id'], unique=False
    )

    op.create_table(
        'conversion_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('leave_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column(
            'kind',
            _enum('conversionkind'),
            nullable=False,
        ),
        sa.Column('original_type', _enum('leavetype'), nullable=False),
        sa.Column('original_days', sa.Integer(), nullable=False),
        sa.Column('policy_reference', sa.String(length=50), nullable=False),
        sa.Column('applied_by_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['leave_id'], ['leave_requests.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['employees.id'], ),
        sa.ForeignKeyConstraint(['applied_by_id'], ['employees.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_conversion_records_id'), 'conversion_records', ['id'], unique=False)
    op.create_index(op.f('ix_conversion_records_leave_id'), 'conversion_records', ['leave_id'], unique=False)
    op.create_index(op.f('ix_conversion_records_user_id'), 'conversion_records', ['user_id'], unique=False)

    op.create_table(
        'conversion_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('type', _enum('leavetype'), nullable=False),
        sa.Column('days', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['record_id'], ['conversion_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('record_id', 'position', name='uq_conversion_lines_record_position'),
    )
    op.create_index(op.f('ix_conversion_lines_id'), 'conversion_lines', ['id'], unique=False)
    op.create_index(op.f('ix_conversion_lines_record_id'), 'conversion_lines', ['record_id'], unique=False)


def downgrade() -> None:
    for table in (
        'conversion_lines',
        'conversion_records',
        'balance_transactions',
        'encashment_requests',
        'balances',
        'approvals',
        'leave_requests',
        'audit_logs',
        'holidays',
        'employees',
    ):
        op.drop_table(table)

    if _is_postgres():
        for name in reversed(list(ENUMS)):
            postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
