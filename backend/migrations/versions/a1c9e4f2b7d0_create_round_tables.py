"""create team, flavor, round, sequence and production item tables

Revision ID: a1c9e4f2b7d0
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c9e4f2b7d0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'team',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('color', sa.String(length=16), nullable=True),
        sa.Column('emblem', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_team_name', 'team', ['name'], unique=True)

    op.create_table(
        'flavor',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('available', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'round',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('open_slot', sa.Boolean(), nullable=True),
        sa.Column('time_limit_seconds', sa.Integer(), nullable=False),
        sa.Column('planned_items', sa.Integer(), nullable=False),
        sa.Column('item_quota', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.Float(), nullable=True),
        sa.Column('finished_at', sa.Float(), nullable=True),
        sa.Column('paused_at', sa.Float(), nullable=True),
        sa.Column('paused_total', sa.Float(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.CheckConstraint('time_limit_seconds > 0', name='ck_round_time_limit_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('open_slot'),
    )
    op.create_index('ix_round_number', 'round', ['number'], unique=True)
    op.create_index('ix_round_status', 'round', ['status'], unique=False)

    op.create_table(
        'flavor_sequence_entry',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('round_id', sa.Integer(), nullable=False),
        sa.Column('flavor_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['flavor_id'], ['flavor.id']),
        sa.ForeignKeyConstraint(['round_id'], ['round.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('round_id', 'position', name='uq_sequence_round_position'),
    )
    op.create_index('ix_flavor_sequence_entry_round_id', 'flavor_sequence_entry', ['round_id'], unique=False)

    op.create_table(
        'production_item',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('round_id', sa.Integer(), nullable=False),
        sa.Column('flavor_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('result', sa.String(length=16), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('evaluated_by', sa.String(length=64), nullable=True),
        sa.Column('evaluated_at', sa.Float(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['flavor_id'], ['flavor.id']),
        sa.ForeignKeyConstraint(['round_id'], ['round.id']),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_production_item_team_id', 'production_item', ['team_id'], unique=False)
    op.create_index('ix_production_item_round_status', 'production_item', ['round_id', 'status'], unique=False)


def downgrade():
    op.drop_index('ix_production_item_round_status', table_name='production_item')
    op.drop_index('ix_production_item_team_id', table_name='production_item')
    op.drop_table('production_item')
    op.drop_index('ix_flavor_sequence_entry_round_id', table_name='flavor_sequence_entry')
    op.drop_table('flavor_sequence_entry')
    op.drop_index('ix_round_status', table_name='round')
    op.drop_index('ix_round_number', table_name='round')
    op.drop_table('round')
    op.drop_table('flavor')
    op.drop_index('ix_team_name', table_name='team')
    op.drop_table('team')
