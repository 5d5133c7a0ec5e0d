"""intervals sync schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names):
    return [
        sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)
        for name in names
    ]


def upgrade() -> None:
    op.create_table(
        'intervals_athlete_profile',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('intervals_athlete_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('sex', sa.Text(), nullable=True),
        sa.Column('city', sa.Text(), nullable=True),
        sa.Column('state', sa.Text(), nullable=True),
        sa.Column('country', sa.Text(), nullable=True),
        sa.Column('timezone', sa.Text(), nullable=True),
        sa.Column('locale', sa.Text(), nullable=True),
        sa.Column('measurement_preference', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=True),
        sa.Column('visibility', sa.Text(), nullable=True),
        sa.Column('weight_kg', sa.Integer(), nullable=True),
        sa.Column('icu_weight_kg', sa.Integer(), nullable=True),
        sa.Column('icu_last_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('icu_activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('strava_id', sa.Text(), nullable=True),
        sa.Column('strava_authorized', sa.Boolean(), nullable=True),
        sa.Column('raw_data', postgresql.JSONB(), nullable=False),
        *_timestamps('created_at', 'updated_at'),
        sa.UniqueConstraint('user_id', 'intervals_athlete_id', name='uq_intervals_athlete_profile_user_athlete'),
    )
    op.create_index('ix_intervals_athlete_profile_user_id', 'intervals_athlete_profile', ['user_id'])

    op.create_table(
        'intervals_sync_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('intervals_athlete_id', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        *_timestamps('started_at'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fetched_activity_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.CheckConstraint("status IN ('started', 'success', 'failed')", name='ck_intervals_sync_log_status'),
    )
    op.create_index('ix_intervals_sync_log_user_started', 'intervals_sync_log', ['user_id', 'started_at'])
    op.create_index('ix_intervals_sync_log_user_status', 'intervals_sync_log', ['user_id', 'status'])

    op.create_table(
        'intervals_activity',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('intervals_athlete_id', sa.Text(), nullable=False),
        sa.Column('intervals_activity_id', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('external_id', sa.Text(), nullable=True),
        sa.Column('device_name', sa.Text(), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('start_date_local', sa.DateTime(timezone=True), nullable=True),
        sa.Column('analyzed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('distance', sa.Float(), nullable=True),
        sa.Column('moving_time', sa.Integer(), nullable=True),
        sa.Column('elapsed_time', sa.Integer(), nullable=True),
        sa.Column('total_elevation_gain', sa.Float(), nullable=True),
        sa.Column('total_elevation_loss', sa.Float(), nullable=True),
        sa.Column('average_speed', sa.Float(), nullable=True),
        sa.Column('max_speed', sa.Float(), nullable=True),
        sa.Column('average_heartrate', sa.Float(), nullable=True),
        sa.Column('max_heartrate', sa.Float(), nullable=True),
        sa.Column('average_cadence', sa.Float(), nullable=True),
        sa.Column('average_stride', sa.Float(), nullable=True),
        sa.Column('calories', sa.Float(), nullable=True),
        sa.Column('training_load', sa.Integer(), nullable=True),
        sa.Column('hr_load', sa.Integer(), nullable=True),
        sa.Column('intensity', sa.Float(), nullable=True),
        sa.Column('lthr', sa.Integer(), nullable=True),
        sa.Column('athlete_max_hr', sa.Integer(), nullable=True),
        sa.Column('map_data', postgresql.JSONB(), nullable=True),
        sa.Column('heart_rate_zones_bpm', postgresql.JSONB(), nullable=True),
        sa.Column('heart_rate_zone_durations_seconds', postgresql.JSONB(), nullable=True),
        sa.Column('one_km_split_times_seconds', postgresql.JSONB(), nullable=True),
        sa.Column('interval_summary', postgresql.JSONB(), nullable=True),
        sa.Column('raw_data', postgresql.JSONB(), nullable=False),
        *_timestamps('created_at', 'updated_at'),
        sa.UniqueConstraint('user_id', 'intervals_activity_id', name='uq_intervals_activity_user_activity'),
    )
    op.create_index('ix_intervals_activity_user_id', 'intervals_activity', ['user_id'])
    op.create_index('ix_intervals_activity_user_start', 'intervals_activity', ['user_id', 'start_date'])

    op.create_table(
        'intervals_activity_interval',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('intervals_activity.id', ondelete='CASCADE'), nullable=False),
        sa.Column('interval_id', sa.Text(), nullable=False),
        sa.Column('interval_type', sa.Text(), nullable=True),
        sa.Column('group_id', sa.Text(), nullable=True),
        sa.Column('zone', sa.Integer(), nullable=True),
        sa.Column('intensity', sa.Float(), nullable=True),
        sa.Column('distance', sa.Float(), nullable=True),
        sa.Column('moving_time', sa.Integer(), nullable=True),
        sa.Column('elapsed_time', sa.Integer(), nullable=True),
        sa.Column('start_time', sa.Integer(), nullable=True),
        sa.Column('end_time', sa.Integer(), nullable=True),
        sa.Column('average_speed', sa.Float(), nullable=True),
        sa.Column('max_speed', sa.Float(), nullable=True),
        sa.Column('average_heartrate', sa.Float(), nullable=True),
        sa.Column('max_heartrate', sa.Float(), nullable=True),
        sa.Column('average_cadence', sa.Float(), nullable=True),
        sa.Column('average_stride', sa.Float(), nullable=True),
        sa.Column('total_elevation_gain', sa.Float(), nullable=True),
        sa.Column('raw_data', postgresql.JSONB(), nullable=False),
        *_timestamps('created_at'),
        sa.UniqueConstraint('activity_id', 'interval_id', name='uq_intervals_activity_interval'),
    )
    op.create_index('ix_intervals_activity_interval_activity_id', 'intervals_activity_interval', ['activity_id'])

    op.create_table(
        'intervals_activity_stream',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('intervals_activity.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stream_type', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('data', postgresql.JSONB(), nullable=False),
        sa.Column('data2', postgresql.JSONB(), nullable=True),
        sa.Column('value_type_is_array', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('anomalies', postgresql.JSONB(), nullable=True),
        sa.Column('custom', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('all_null', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps('created_at'),
        sa.UniqueConstraint('activity_id', 'stream_type', name='uq_intervals_activity_stream_type'),
    )
    op.create_index('ix_intervals_activity_stream_activity_id', 'intervals_activity_stream', ['activity_id'])

    op.create_table(
        'intervals_activity_best_effort',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('intervals_activity.id', ondelete='CASCADE'), nullable=False),
        sa.Column('target_distance_meters', sa.Float(), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=False),
        sa.Column('start_index', sa.Integer(), nullable=False),
        sa.Column('end_index', sa.Integer(), nullable=False),
        *_timestamps('created_at'),
        sa.UniqueConstraint('activity_id', 'target_distance_meters', name='uq_intervals_best_effort_target'),
    )
    op.create_index('ix_intervals_best_effort_activity_id', 'intervals_activity_best_effort', ['activity_id'])
    op.create_index('ix_intervals_best_effort_target', 'intervals_activity_best_effort', ['target_distance_meters'])

    for table, period_column in (('run_rollup_weekly', 'week_start'), ('run_rollup_monthly', 'month_start')):
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('user_id', sa.Text(), nullable=False),
            sa.Column(period_column, sa.Date(), nullable=False),
            sa.Column('run_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_distance_m', sa.Float(), nullable=False, server_default='0'),
            sa.Column('total_elapsed_s', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_moving_s', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('avg_pace_sec_per_km', sa.Float(), nullable=True),
            *_timestamps('created_at'),
        )
    op.create_unique_constraint('uq_run_rollup_weekly_user_week', 'run_rollup_weekly', ['user_id', 'week_start'])
    op.create_unique_constraint('uq_run_rollup_monthly_user_month', 'run_rollup_monthly', ['user_id', 'month_start'])

    op.create_table(
        'run_personal_record',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('pr_type', sa.Text(), nullable=False),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('intervals_activity.id', ondelete='SET NULL'), nullable=True),
        sa.Column('value_seconds', sa.Integer(), nullable=True),
        sa.Column('value_distance_m', sa.Float(), nullable=True),
        sa.Column('activity_start_date', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at'),
        sa.UniqueConstraint('user_id', 'pr_type', name='uq_run_personal_record_user_type'),
    )
    op.create_index('ix_run_personal_record_user_id', 'run_personal_record', ['user_id'])

    op.create_table(
        'goal',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('goal_type', sa.Text(), nullable=False),
        sa.Column('cadence', sa.Text(), nullable=False),
        sa.Column('target_value', sa.Float(), nullable=False),
        sa.Column('abandoned_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.UniqueConstraint('user_id', 'goal_type', 'cadence', name='uq_goal_user_type_cadence'),
        sa.CheckConstraint("goal_type IN ('distance', 'frequency', 'pace')", name='ck_goal_type'),
        sa.CheckConstraint("cadence IN ('weekly', 'monthly')", name='ck_goal_cadence'),
        sa.CheckConstraint('target_value > 0', name='ck_goal_target_positive'),
    )

    op.create_table(
        'goal_progress',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('goal_id', sa.Integer(), sa.ForeignKey('goal.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('cadence', sa.Text(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('current_value', sa.Float(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at'),
        sa.UniqueConstraint('goal_id', 'period_start', name='uq_goal_progress_goal_period'),
    )
    op.create_index('ix_goal_progress_user_period', 'goal_progress', ['user_id', 'period_start'])

    op.create_table(
        'goal_streak',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('goal_id', sa.Integer(), sa.ForeignKey('goal.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        *_timestamps('started_at'),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('updated_at'),
        sa.UniqueConstraint('goal_id', name='uq_goal_streak_goal'),
    )
    op.create_index('ix_goal_streak_user_id', 'goal_streak', ['user_id'])
    # At most one active streak per user.
    op.create_index(
        'uq_goal_streak_user_active',
        'goal_streak',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text('ended_at IS NULL'),
    )


def downgrade() -> None:
    op.drop_index('uq_goal_streak_user_active', table_name='goal_streak')
    op.drop_index('ix_goal_streak_user_id', table_name='goal_streak')
    op.drop_table('goal_streak')
    op.drop_index('ix_goal_progress_user_period', table_name='goal_progress')
    op.drop_table('goal_progress')
    op.drop_table('goal')
    op.drop_index('ix_run_personal_record_user_id', table_name='run_personal_record')
    op.drop_table('run_personal_record')
    op.drop_table('run_rollup_monthly')
    op.drop_table('run_rollup_weekly')
    op.drop_index('ix_intervals_best_effort_target', table_name='intervals_activity_best_effort')
    op.drop_index('ix_intervals_best_effort_activity_id', table_name='intervals_activity_best_effort')
    op.drop_table('intervals_activity_best_effort')
    op.drop_index('ix_intervals_activity_stream_activity_id', table_name='intervals_activity_stream')
    op.drop_table('intervals_activity_stream')
    op.drop_index('ix_intervals_activity_interval_activity_id', table_name='intervals_activity_interval')
    op.drop_table('intervals_activity_interval')
    op.drop_index('ix_intervals_activity_user_start', table_name='intervals_activity')
    op.drop_index('ix_intervals_activity_user_id', table_name='intervals_activity')
    op.drop_table('intervals_activity')
    op.drop_index('ix_intervals_sync_log_user_status', table_name='intervals_sync_log')
    op.drop_index('ix_intervals_sync_log_user_started', table_name='intervals_sync_log')
    op.drop_table('intervals_sync_log')
    op.drop_index('ix_intervals_athlete_profile_user_id', table_name='intervals_athlete_profile')
    op.drop_table('intervals_athlete_profile')
