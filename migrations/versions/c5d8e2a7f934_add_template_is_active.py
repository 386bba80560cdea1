"""add daytemplate is_active

Revision ID: c5d8e2a7f934
Revises: 8b3e5d2f6a41
Create Date: 2025-10-20 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = 'c5d8e2a7f934'
down_revision: Union[str, Sequence[str], None] = '8b3e5d2f6a41'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'daytemplate',
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )


def downgrade() -> None:
    with op.batch_alter_table('daytemplate') as batch_op:
        batch_op.drop_column('is_active')
