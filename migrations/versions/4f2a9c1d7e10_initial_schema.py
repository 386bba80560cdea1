"""initial schema

Revision ID: 4f2a9c1d7e10
Revises:
Create Date: 2025-10-06 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'daytemplate',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('description', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('start_time', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('time_blocks', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_daytemplate_owner', 'daytemplate', ['owner'])

    op.create_table(
        'plannedday',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('template_id', sa.Integer(), nullable=False),
        sa.Column('owner', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('anchor_date', sa.Date(), nullable=True),
        sa.Column('recurrence', sa.JSON(), nullable=True),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('previous_series', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('next_series', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['template_id'], ['daytemplate.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_plannedday_owner', 'plannedday', ['owner'])
    op.create_index('ix_plannedday_start_date', 'plannedday', ['start_date'])

    op.create_table(
        'planneddayexception',
        sa.Column(
            'series_id',
            sa.String(),
            sa.ForeignKey('plannedday.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column('original_date', sa.Date(), primary_key=True),
        sa.Column('action', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('modified_template_id', sa.Integer(), nullable=True),
        sa.Column('reason', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('planneddayexception')
    op.drop_index('ix_plannedday_start_date', table_name='plannedday')
    op.drop_index('ix_plannedday_owner', table_name='plannedday')
    op.drop_table('plannedday')
    op.drop_index('ix_daytemplate_owner', table_name='daytemplate')
    op.drop_table('daytemplate')
