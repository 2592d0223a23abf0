"""Add extension link columns to leave_requests

Revision ID: 002_add_leave_extensions
Revises: 001_initial_leave_engine
Create Date: 2026-10-17

An extension is a separate leave request that continues an approved leave
from the day after its end date.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002_add_leave_extensions'
down_revision: Union[str, None] = '001_initial_leave_engine'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    is_sqlite = bind.dialect.name == 'sqlite'

    inspector = sa.inspect(bind)
    existing_columns = [col['name'] for col in inspector.get_columns('leave_requests')]

    if 'parent_leave_id' not in existing_columns:
        if is_sqlite:
            # SQLite cannot add a foreign key with ALTER TABLE
            op.add_column('leave_requests', sa.Column('parent_leave_id', sa.Integer(), nullable=True))
        else:
            op.add_column(
                'leave_requests',
                sa.Column('parent_leave_id', sa.Integer(), sa.ForeignKey('leave_requests.id'), nullable=True),
            )
        op.create_index(op.f('ix_leave_requests_parent_leave_id'), 'leave_requests', ['parent_leave_id'])

    if 'is_extension' not in existing_columns:
        op.add_column(
            'leave_requests',
            sa.Column('is_extension', sa.Boolean(), nullable=False, server_default=sa.false()),
        )


def downgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    existing_columns = [col['name'] for col in inspector.get_columns('leave_requests')]

    if 'is_extension' in existing_columns:
        op.drop_column('leave_requests', 'is_extension')
    if 'parent_leave_id' in existing_columns:
        op.drop_index(op.f('ix_leave_requests_parent_leave_id'), 'leave_requests')
        op.drop_column('leave_requests', 'parent_leave_id')
