from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Float, Date, DateTime, ForeignKey, JSON, Text, Index, UniqueConstraint, text
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests/tooling).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class IntervalsAthleteProfile(Base):
    """
    Intervals.icu athlete linked to a user.

    One row per (user, intervals athlete). The "connected athlete" for a user
    is the most recently updated profile row.
    """
    __tablename__ = "intervals_athlete_profile"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    intervals_athlete_id = Column(Text, nullable=False)
    name = Column(Text, nullable=True)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    sex = Column(Text, nullable=True)
    city = Column(Text, nullable=True)
    state = Column(Text, nullable=True)
    country = Column(Text, nullable=True)
    timezone = Column(Text, nullable=True)
    locale = Column(Text, nullable=True)
    measurement_preference = Column(Text, nullable=True)
    status = Column(Text, nullable=True)
    visibility = Column(Text, nullable=True)
    weight_kg = Column(Integer, nullable=True)
    icu_weight_kg = Column(Integer, nullable=True)
    icu_last_seen_at = Column(DateTime(timezone=True), nullable=True)
    icu_activated_at = Column(DateTime(timezone=True), nullable=True)
    strava_id = Column(Text, nullable=True)
    strava_authorized = Column(Boolean, nullable=True)
    raw_data = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "intervals_athlete_id", name="uq_intervals_athlete_profile_user_athlete"),
        Index("ix_intervals_athlete_profile_user_id", "user_id"),
    )


class IntervalsSyncLog(Base):
    """
    Append-only record of one sync attempt.

    Created as 'started' before any upstream call and finalized exactly once
    to 'success' or 'failed'. The latest 'success' row anchors incremental
    sync windows.
    """
    __tablename__ = "intervals_sync_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    intervals_athlete_id = Column(Text, nullable=True)
    # 'started' | 'success' | 'failed'
    status = Column(Text, nullable=False)
    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    fetched_activity_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('started', 'success', 'failed')", name="ck_intervals_sync_log_status"),
        Index("ix_intervals_sync_log_user_started", "user_id", "started_at"),
        Index("ix_intervals_sync_log_user_status", "user_id", "status"),
    )


class IntervalsActivity(Base):
    __tablename__ = "intervals_activity"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    intervals_athlete_id = Column(Text, nullable=False)
    intervals_activity_id = Column(Text, nullable=False)
    type = Column(Text, nullable=True)  # Provider type, e.g. 'Run', 'TrailRun', 'Ride'
    name = Column(Text, nullable=True)
    source = Column(Text, nullable=True)
    external_id = Column(Text, nullable=True)
    device_name = Column(Text, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    start_date_local = Column(DateTime(timezone=True), nullable=True)
    analyzed_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    # --- TIMING / DISTANCE ---
    distance = Column(Float, nullable=True)  # meters
    moving_time = Column(Integer, nullable=True)  # seconds
    elapsed_time = Column(Integer, nullable=True)  # seconds
    total_elevation_gain = Column(Float, nullable=True)
    total_elevation_loss = Column(Float, nullable=True)
    average_speed = Column(Float, nullable=True)  # m/s
    max_speed = Column(Float, nullable=True)

    # --- PHYSIOLOGY ---
    average_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    average_cadence = Column(Float, nullable=True)
    average_stride = Column(Float, nullable=True)
    calories = Column(Float, nullable=True)

    # --- LOAD ---
    training_load = Column(Integer, nullable=True)
    hr_load = Column(Integer, nullable=True)
    intensity = Column(Float, nullable=True)
    lthr = Column(Integer, nullable=True)
    athlete_max_hr = Column(Integer, nullable=True)

    # --- JSON BLOBS ---
    map_data = Column(JSONType, nullable=True)
    heart_rate_zones_bpm = Column(JSONType, nullable=True)
    heart_rate_zone_durations_seconds = Column(JSONType, nullable=True)
    one_km_split_times_seconds = Column(JSONType, nullable=True)
    interval_summary = Column(JSONType, nullable=True)
    raw_data = Column(JSONType, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # --- THE ARMOR: one row per provider activity per user ---
    __table_args__ = (
        UniqueConstraint("user_id", "intervals_activity_id", name="uq_intervals_activity_user_activity"),
        Index("ix_intervals_activity_user_id", "user_id"),
        Index("ix_intervals_activity_user_start", "user_id", "start_date"),
    )

    # --- RELATIONSHIPS ---
    # Children are derived state: replaced as a full set on every upsert.
    intervals = relationship(
        "IntervalsActivityInterval",
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="IntervalsActivityInterval.start_time",
    )
    streams = relationship(
        "IntervalsActivityStream",
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="IntervalsActivityStream.stream_type",
    )
    best_efforts = relationship(
        "IntervalsActivityBestEffort",
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="IntervalsActivityBestEffort.target_distance_meters",
    )


class IntervalsActivityInterval(Base):
    __tablename__ = "intervals_activity_interval"

    id = Column(Integer, primary_key=True, autoincrement=True)
    activity_id = Column(Integer, ForeignKey("intervals_activity.id", ondelete="CASCADE"), nullable=False)
    interval_id = Column(Text, nullable=False)
    interval_type = Column(Text, nullable=True)
    group_id = Column(Text, nullable=True)
    zone = Column(Integer, nullable=True)
    intensity = Column(Float, nullable=True)
    distance = Column(Float, nullable=True)
    moving_time = Column(Integer, nullable=True)
    elapsed_time = Column(Integer, nullable=True)
    start_time = Column(Integer, nullable=True)  # seconds from activity start
    end_time = Column(Integer, nullable=True)
    average_speed = Column(Float, nullable=True)
    max_speed = Column(Float, nullable=True)
    average_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    average_cadence = Column(Float, nullable=True)
    average_stride = Column(Float, nullable=True)
    total_elevation_gain = Column(Float, nullable=True)
    raw_data = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    activity = relationship("IntervalsActivity", back_populates="intervals")

    __table_args__ = (
        UniqueConstraint("activity_id", "interval_id", name="uq_intervals_activity_interval"),
        Index("ix_intervals_activity_interval_activity_id", "activity_id"),
    )


class IntervalsActivityStream(Base):
    """
    One sensor channel for an activity (heartrate, distance, cadence, ...).

    `data` holds the per-sample values; `data2` the second dimension for
    array-valued streams.
    """
    __tablename__ = "intervals_activity_stream"

    id = Column(Integer, primary_key=True, autoincrement=True)
    activity_id = Column(Integer, ForeignKey("intervals_activity.id", ondelete="CASCADE"), nullable=False)
    stream_type = Column(Text, nullable=False)
    name = Column(Text, nullable=True)
    data = Column(JSONType, nullable=False)
    data2 = Column(JSONType, nullable=True)
    value_type_is_array = Column(Boolean, nullable=False, default=False)
    anomalies = Column(JSONType, nullable=True)
    custom = Column(Boolean, nullable=False, default=False)
    all_null = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    activity = relationship("IntervalsActivity", back_populates="streams")

    __table_args__ = (
        UniqueConstraint("activity_id", "stream_type", name="uq_intervals_activity_stream_type"),
        Index("ix_intervals_activity_stream_activity_id", "activity_id"),
    )


class IntervalsActivityBestEffort(Base):
    """
    Fastest contiguous duration covering a fixed target distance within one
    activity, derived from the distance stream.
    """
    __tablename__ = "intervals_activity_best_effort"

    id = Column(Integer, primary_key=True, autoincrement=True)
    activity_id = Column(Integer, ForeignKey("intervals_activity.id", ondelete="CASCADE"), nullable=False)
    target_distance_meters = Column(Float, nullable=False)
    duration_seconds = Column(Integer, nullable=False)
    start_index = Column(Integer, nullable=False)
    end_index = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    activity = relationship("IntervalsActivity", back_populates="best_efforts")

    __table_args__ = (
        UniqueConstraint("activity_id", "target_distance_meters", name="uq_intervals_best_effort_target"),
        Index("ix_intervals_best_effort_activity_id", "activity_id"),
        Index("ix_intervals_best_effort_target", "target_distance_meters"),
    )


class RunRollupWeekly(Base):
    """Derived: exists iff at least one run falls in the ISO week."""
    __tablename__ = "run_rollup_weekly"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    week_start = Column(Date, nullable=False)  # Monday
    run_count = Column(Integer, nullable=False, default=0)
    total_distance_m = Column(Float, nullable=False, default=0)
    total_elapsed_s = Column(Integer, nullable=False, default=0)
    total_moving_s = Column(Integer, nullable=False, default=0)
    avg_pace_sec_per_km = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_run_rollup_weekly_user_week"),
    )


class RunRollupMonthly(Base):
    """Derived: exists iff at least one run falls in the calendar month."""
    __tablename__ = "run_rollup_monthly"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    month_start = Column(Date, nullable=False)
    run_count = Column(Integer, nullable=False, default=0)
    total_distance_m = Column(Float, nullable=False, default=0)
    total_elapsed_s = Column(Integer, nullable=False, default=0)
    total_moving_s = Column(Integer, nullable=False, default=0)
    avg_pace_sec_per_km = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "month_start", name="uq_run_rollup_monthly_user_month"),
    )


class RunPersonalRecord(Base):
    """
    Derived personal records: five-plus fixed-distance fastest efforts and the
    longest run. Fully replaced per user on every recomputation.
    """
    __tablename__ = "run_personal_record"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    pr_type = Column(Text, nullable=False)  # 'fastest_5k', ..., 'longest_run'
    activity_id = Column(Integer, ForeignKey("intervals_activity.id", ondelete="SET NULL"), nullable=True)
    value_seconds = Column(Integer, nullable=True)
    value_distance_m = Column(Float, nullable=True)
    activity_start_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "pr_type", name="uq_run_personal_record_user_type"),
        Index("ix_run_personal_record_user_id", "user_id"),
    )


class Goal(Base):
    """
    User-defined training target. At most one row per (user, type, cadence);
    archiving sets abandoned_at, re-creating reactivates the same row.
    """
    __tablename__ = "goal"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    goal_type = Column(Text, nullable=False)  # 'distance' | 'frequency' | 'pace'
    cadence = Column(Text, nullable=False)  # 'weekly' | 'monthly'
    target_value = Column(Float, nullable=False)
    abandoned_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    progress = relationship("GoalProgress", back_populates="goal", cascade="all, delete-orphan")
    streak = relationship("GoalStreak", back_populates="goal", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("user_id", "goal_type", "cadence", name="uq_goal_user_type_cadence"),
        CheckConstraint("goal_type IN ('distance', 'frequency', 'pace')", name="ck_goal_type"),
        CheckConstraint("cadence IN ('weekly', 'monthly')", name="ck_goal_cadence"),
        CheckConstraint("target_value > 0", name="ck_goal_target_positive"),
    )


class GoalProgress(Base):
    """Derived metric value for one goal in one period."""
    __tablename__ = "goal_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    goal_id = Column(Integer, ForeignKey("goal.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Text, nullable=False)
    cadence = Column(Text, nullable=False)
    period_start = Column(Date, nullable=False)
    current_value = Column(Float, nullable=False, default=0)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    goal = relationship("Goal", back_populates="progress")

    __table_args__ = (
        UniqueConstraint("goal_id", "period_start", name="uq_goal_progress_goal_period"),
        Index("ix_goal_progress_user_period", "user_id", "period_start"),
    )


class GoalStreak(Base):
    """Weekly-frequency streak tracking; ended_at IS NULL means active."""
    __tablename__ = "goal_streak"

    id = Column(Integer, primary_key=True, autoincrement=True)
    goal_id = Column(Integer, ForeignKey("goal.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Text, nullable=False)
    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    goal = relationship("Goal", back_populates="streak")

    __table_args__ = (
        UniqueConstraint("goal_id", name="uq_goal_streak_goal"),
        Index("ix_goal_streak_user_id", "user_id"),
        # At most one active streak per user.
        Index(
            "uq_goal_streak_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
    )
