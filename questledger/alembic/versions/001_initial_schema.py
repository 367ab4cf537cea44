"""Initial ledger schema

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Create completion_events table; the dedup key is unique
    op.create_table(
        'completion_events',
        sa.Column('event_id', sa.String(64), nullable=False),
        sa.Column('learner_id', sa.String(255), nullable=False),
        sa.Column('source_unit_id', sa.String(255), nullable=False),
        sa.Column('origin', sa.String(32), nullable=False),
        sa.Column('title', sa.String(500), nullable=False, server_default=''),
        sa.Column('category', sa.String(32), nullable=False),
        sa.Column('difficulty', sa.String(16), nullable=False),
        sa.Column('was_correct', sa.Boolean(), nullable=False),
        sa.Column('coins_awarded', sa.Integer(), nullable=False),
        sa.Column('xp_awarded', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('credited_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('event_id', name='pk_completion_events'),
        sa.UniqueConstraint('learner_id', 'source_unit_id', 'origin', name='completion_events_dedup_key'),
        sa.CheckConstraint('coins_awarded >= 0', name='ck_completion_events_coins_non_negative'),
        sa.CheckConstraint('xp_awarded >= 0', name='ck_completion_events_xp_non_negative'),
    )
    op.create_index('idx_completion_events_learner_occurred', 'completion_events', ['learner_id', 'occurred_at'])

    # Create completion_attempts audit table
    op.create_table(
        'completion_attempts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(64), nullable=False),
        sa.Column('learner_id', sa.String(255), nullable=False),
        sa.Column('source_unit_id', sa.String(255), nullable=False),
        sa.Column('origin', sa.String(32), nullable=False),
        sa.Column('outcome', sa.String(32), nullable=False),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id', name='pk_completion_attempts'),
    )
    op.create_index('ix_completion_attempts_learner_id', 'completion_attempts', ['learner_id'])

    # Create ledger_accounts table
    op.create_table(
        'ledger_accounts',
        sa.Column('learner_id', sa.String(255), nullable=False),
        sa.Column('coins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('xp', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('learner_id', name='pk_ledger_accounts'),
        sa.CheckConstraint('coins >= 0', name='ck_ledger_accounts_coins_non_negative'),
        sa.CheckConstraint('xp >= 0', name='ck_ledger_accounts_xp_non_negative'),
    )

    # Create learner_summaries cache table
    op.create_table(
        'learner_summaries',
        sa.Column('learner_id', sa.String(255), nullable=False),
        sa.Column('total_quests_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_xp', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_coins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('correct_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quests_by_category', sa.JSON(), nullable=False),
        sa.Column('quests_by_difficulty', sa.JSON(), nullable=False),
        sa.Column('accuracy_rate', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('longest_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unlocked_badges', sa.JSON(), nullable=False),
        sa.Column('unlocked_trophies', sa.JSON(), nullable=False),
        sa.Column('active_days', sa.JSON(), nullable=False),
        sa.Column('completed_missions', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('learner_id', name='pk_learner_summaries'),
    )


def downgrade():
    op.drop_table('learner_summaries')
    op.drop_table('ledger_accounts')
    op.drop_index('ix_completion_attempts_learner_id', table_name='completion_attempts')
    op.drop_table('completion_attempts')
    op.drop_index('idx_completion_events_learner_occurred', table_name='completion_events')
    op.drop_table('completion_events')
