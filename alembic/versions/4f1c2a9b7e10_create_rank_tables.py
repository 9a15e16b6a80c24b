"""create rank tables

Revision ID: 4f1c2a9b7e10
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9b7e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TIERS = ('NOVICE', 'AMATEUR', 'ANALYST', 'PROFESSIONAL', 'EXPERT', 'MASTER')
TRIGGERS = ('RECALCULATION', 'AUTO_PROMOTION', 'MANUAL_OVERRIDE')


def upgrade() -> None:
    tier = sa.Enum(*TIERS, name='tier')
    trigger = sa.Enum(*TRIGGERS, name='promotiontrigger')

    op.create_table(
        'users',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('avatar_url', sa.String(1024), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('is_system_user', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
    )

    op.create_table(
        'user_stats',
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('account_created_at', sa.DateTime(), nullable=False),
        sa.Column('current_tier', tier, nullable=False, server_default='NOVICE'),
        sa.Column('rank_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('rank_breakdown', sa.JSON(), nullable=True),
        sa.Column('current_tier_start_date', sa.DateTime(), nullable=True),
        sa.Column('total_predictions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_resolved_predictions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('correct_predictions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accuracy_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('contrarian_wins_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('weekly_activity_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_active_at', sa.DateTime(), nullable=True),
        sa.Column('inactivity_streaks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_inactivity_check_at', sa.DateTime(), nullable=True),
        sa.Column('reengagement_flagged_at', sa.DateTime(), nullable=True),
        sa.Column('last_rank_update_at', sa.DateTime(), nullable=True),
        sa.Column('last_recalculation_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_user_stats_user_id_users', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', name='pk_user_stats'),
        sa.CheckConstraint('rank_percentage >= 0 AND rank_percentage <= 100',
                           name='ck_user_stats_check_rank_percentage_range'),
        sa.CheckConstraint('inactivity_streaks >= 0', name='ck_user_stats_check_inactivity_streaks_non_negative'),
    )
    op.create_index('ix_user_stats_current_tier', 'user_stats', ['current_tier'])
    op.create_index('ix_user_stats_last_active_at', 'user_stats', ['last_active_at'])
    op.create_index('ix_user_stats_tier_percentage', 'user_stats', ['current_tier', 'rank_percentage'])

    op.create_table(
        'rank_upgrade_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('previous_tier', tier, nullable=False),
        sa.Column('new_tier', tier, nullable=False),
        sa.Column('achieved_at', sa.DateTime(), nullable=False),
        sa.Column('percentage_at_upgrade', sa.Float(), nullable=False),
        sa.Column('days_in_previous_tier', sa.Integer(), nullable=False),
        sa.Column('trigger', trigger, nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['user_stats.user_id'],
                                name='fk_rank_upgrade_history_user_id_user_stats', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_rank_upgrade_history'),
    )
    op.create_index('ix_rank_upgrade_history_user_id', 'rank_upgrade_history', ['user_id'])

    op.create_table(
        'leaderboard_cache',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('tier', tier, nullable=False),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('entries', sa.JSON(), nullable=False),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_leaderboard_cache'),
    )
    op.create_index('ix_leaderboard_cache_tier', 'leaderboard_cache', ['tier'])


def downgrade() -> None:
    op.drop_index('ix_leaderboard_cache_tier', table_name='leaderboard_cache')
    op.drop_table('leaderboard_cache')
    op.drop_index('ix_rank_upgrade_history_user_id', table_name='rank_upgrade_history')
    op.drop_table('rank_upgrade_history')
    op.drop_index('ix_user_stats_tier_percentage', table_name='user_stats')
    op.drop_index('ix_user_stats_last_active_at', table_name='user_stats')
    op.drop_index('ix_user_stats_current_tier', table_name='user_stats')
    op.drop_table('user_stats')
    op.drop_table('users')
    sa.Enum(name='promotiontrigger').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='tier').drop(op.get_bind(), checkfirst=True)
