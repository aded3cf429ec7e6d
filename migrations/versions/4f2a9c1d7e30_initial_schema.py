"""initial schema

Revision ID: 4f2a9c1d7e30
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'family',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'familymember',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('family_id', sa.Integer(), sa.ForeignKey('family.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('role', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_familymember_family_id', 'familymember', ['family_id'])
    op.create_table(
        'calendarevent',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('family_id', sa.Integer(), sa.ForeignKey('family.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('title', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('description', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('start_datetime', sa.DateTime(), nullable=False),
        sa.Column('end_datetime', sa.DateTime(), nullable=True),
        sa.Column('is_all_day', sa.Boolean(), nullable=False),
        sa.Column('location', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('familymember.id', ondelete='SET NULL'), nullable=True),
        sa.Column(
            'recurring_type',
            sa.Enum('DAILY', 'WEEKLY', 'MONTHLY', 'YEARLY', name='recurringtype'),
            nullable=True,
        ),
        sa.Column('recurring_interval', sa.Integer(), nullable=True),
        sa.Column('recurring_end_date', sa.Date(), nullable=True),
        sa.Column('recurring_end_count', sa.Integer(), nullable=True),
        sa.Column('is_task', sa.Boolean(), nullable=False),
        sa.Column('xp_points', sa.Integer(), nullable=True),
        sa.Column('is_required', sa.Boolean(), nullable=False),
        sa.Column('participant_ids', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_calendarevent_family_id', 'calendarevent', ['family_id'])
    op.create_index('ix_calendarevent_start_datetime', 'calendarevent', ['start_datetime'])
    op.create_table(
        'eventexception',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('calendarevent.id', ondelete='CASCADE'), nullable=False),
        sa.Column('occurrence_date', sa.Date(), nullable=False),
        sa.Column('modified_event_id', sa.Integer(), sa.ForeignKey('calendarevent.id', ondelete='CASCADE'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'occurrence_date', name='uq_eventexception_occurrence'),
    )
    op.create_index('ix_eventexception_event_id', 'eventexception', ['event_id'])
    op.create_table(
        'taskcompletion',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('calendarevent.id', ondelete='CASCADE'), nullable=False),
        sa.Column('member_id', sa.Integer(), sa.ForeignKey('familymember.id', ondelete='CASCADE'), nullable=False),
        sa.Column('occurrence_date', sa.Date(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'member_id', 'occurrence_date', name='uq_taskcompletion_member'),
    )
    op.create_index('ix_taskcompletion_event_id', 'taskcompletion', ['event_id'])
    op.create_index('ix_taskcompletion_member_id', 'taskcompletion', ['member_id'])
    op.create_table(
        'collectedfood',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), sa.ForeignKey('familymember.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('calendarevent.id', ondelete='SET NULL'), nullable=True),
        sa.Column('xp_amount', sa.Integer(), nullable=False),
        sa.Column('is_fed', sa.Boolean(), nullable=False),
        sa.Column('collected_at', sa.DateTime(), nullable=False),
        sa.Column('fed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_collectedfood_member_id', 'collectedfood', ['member_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('collectedfood')
    op.drop_table('taskcompletion')
    op.drop_table('eventexception')
    op.drop_table('calendarevent')
    op.drop_table('familymember')
    op.drop_table('family')
