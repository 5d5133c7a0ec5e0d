"""
Goal Progress Engine

Derives per-period goal progress from run-typed activities and persists it as
GoalProgress rows, one per (goal, period start). Rows are never patched: each
recomputation deletes the (goal, period) row and writes a fresh one.

Metrics per period [period_start, period_end):
    distance   sum of meters
    frequency  number of runs
    pace       total elapsed seconds / total km (0 when there is no distance)

Pace is "lower is better", so its completion and ratio rules are inverted.
"""
import logging
import math
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from models import Goal, GoalProgress, IntervalsActivity
from services.activity_types import is_run_activity_type
from services.dates import add_weeks, period_end_for, period_start_for, start_of_day_utc, utc_date, utc_now

logger = logging.getLogger(__name__)

GOAL_TYPES = ("distance", "frequency", "pace")
GOAL_CADENCES = ("weekly", "monthly")

# Upper bound on the weekly streak walk (three years).
MAX_STREAK_WEEKS = 156


def compute_period_goal_metrics(db: Session, user_id: str, period_start: date, cadence: str) -> Dict[str, float]:
    period_end = period_end_for(period_start, cadence)
    rows = (
        db.query(IntervalsActivity.type, IntervalsActivity.distance, IntervalsActivity.elapsed_time)
        .filter(
            IntervalsActivity.user_id == user_id,
            IntervalsActivity.start_date.isnot(None),
            IntervalsActivity.start_date >= start_of_day_utc(period_start),
            IntervalsActivity.start_date < start_of_day_utc(period_end),
        )
        .all()
    )

    distance_m = 0.0
    elapsed_s = 0
    run_count = 0
    for activity_type, distance, elapsed_time in rows:
        if not is_run_activity_type(activity_type):
            continue
        run_count += 1
        distance_m += distance or 0.0
        elapsed_s += elapsed_time or 0

    pace = elapsed_s / (distance_m / 1000.0) if distance_m > 0 and elapsed_s > 0 else 0.0
    return {"distance": distance_m, "frequency": float(run_count), "pace": pace}


def is_goal_completed(goal_type: str, current_value: float, target_value: float) -> bool:
    if goal_type == "pace":
        return 0 < current_value <= target_value
    return current_value >= target_value


def get_goal_progress_ratio(goal_type: str, current_value: float, target_value: float) -> float:
    """Unclamped progress ratio; callers clamp to [0, 1] for display."""
    if target_value <= 0:
        return 0.0
    if goal_type == "pace":
        if current_value <= 0:
            return 0.0
        return target_value / current_value
    return current_value / target_value


def clamp_ratio(ratio: float) -> float:
    if not math.isfinite(ratio):
        return 0.0
    return max(0.0, min(1.0, ratio))


def recompute_goal_progress_for_period(
    db: Session,
    goal: Goal,
    period_start: date,
    *,
    now: Optional[datetime] = None,
    metrics: Optional[Dict[str, float]] = None,
    previous_completed_at: Optional[datetime] = None,
) -> GoalProgress:
    """
    Replace the (goal, period) progress row.

    A period that was already complete and still is keeps its original
    completed_at; a newly completed period is stamped with `now`. When the
    old row is already gone, `previous_completed_at` stands in for it.
    """
    now = now or utc_now()
    if metrics is None:
        metrics = compute_period_goal_metrics(db, goal.user_id, period_start, goal.cadence)
    current_value = metrics.get(goal.goal_type, 0.0)

    existing = (
        db.query(GoalProgress)
        .filter(GoalProgress.goal_id == goal.id, GoalProgress.period_start == period_start)
        .first()
    )
    if existing is not None:
        previous_completed_at = existing.completed_at
        db.delete(existing)
        db.flush()

    completed_at = None
    if is_goal_completed(goal.goal_type, current_value, goal.target_value):
        completed_at = previous_completed_at or now

    row = GoalProgress(
        goal_id=goal.id,
        user_id=goal.user_id,
        cadence=goal.cadence,
        period_start=period_start,
        current_value=current_value,
        completed_at=completed_at,
        created_at=now,
    )
    db.add(row)
    db.flush()
    return row


def _active_goals(db: Session, user_id: str) -> List[Goal]:
    return (
        db.query(Goal)
        .filter(Goal.user_id == user_id, Goal.abandoned_at.is_(None))
        .order_by(Goal.id.asc())
        .all()
    )


def recompute_goal_progress_for_dates(
    db: Session,
    user_id: str,
    affected_dates: Iterable[date],
    *,
    now: Optional[datetime] = None,
    previous_completions: Optional[Dict[Tuple[int, date], datetime]] = None,
) -> int:
    """Recompute every active goal for the periods touched by `affected_dates`. Returns rows written."""
    now = now or utc_now()
    previous_completions = previous_completions or {}
    goals = _active_goals(db, user_id)
    if not goals:
        return 0

    dates = set(affected_dates)
    period_starts: Dict[str, Set[date]] = {
        cadence: {period_start_for(day, cadence) for day in dates} for cadence in GOAL_CADENCES
    }

    # Metrics are shared by every goal with the same cadence and period.
    metrics_cache: Dict[tuple, Dict[str, float]] = {}
    written = 0
    for goal in goals:
        for period_start in sorted(period_starts.get(goal.cadence, ())):
            key = (goal.cadence, period_start)
            if key not in metrics_cache:
                metrics_cache[key] = compute_period_goal_metrics(db, user_id, period_start, goal.cadence)
            recompute_goal_progress_for_period(
                db,
                goal,
                period_start,
                now=now,
                metrics=metrics_cache[key],
                previous_completed_at=previous_completions.get((goal.id, period_start)),
            )
            written += 1
    return written


def recompute_goal_progress_for_user(db: Session, user_id: str, *, now: Optional[datetime] = None) -> int:
    """
    Rebuild goal progress for the user's whole history.

    Progress rows of active goals are dropped first, then every period that
    contains an activity (plus the current period) is recomputed. Completion
    times of periods that stay complete survive the rebuild.
    """
    now = now or utc_now()
    goals = _active_goals(db, user_id)
    goal_ids = [g.id for g in goals]
    previous_completions: Dict[Tuple[int, date], datetime] = {}
    if goal_ids:
        completed_rows = (
            db.query(GoalProgress.goal_id, GoalProgress.period_start, GoalProgress.completed_at)
            .filter(GoalProgress.goal_id.in_(goal_ids), GoalProgress.completed_at.isnot(None))
            .all()
        )
        previous_completions = {(goal_id, start): done for goal_id, start, done in completed_rows}
        db.query(GoalProgress).filter(GoalProgress.goal_id.in_(goal_ids)).delete()
        db.flush()

    start_dates = (
        db.query(IntervalsActivity.start_date)
        .filter(IntervalsActivity.user_id == user_id, IntervalsActivity.start_date.isnot(None))
        .all()
    )
    dates = {utc_date(row[0]) for row in start_dates}
    dates.add(utc_date(now))
    return recompute_goal_progress_for_dates(db, user_id, dates, now=now, previous_completions=previous_completions)


def compute_current_weekly_streak_weeks(
    db: Session,
    goal_id: int,
    current_week_start: date,
    include_current_week: bool,
) -> int:
    """
    Consecutive completed weeks ending at the current (or previous) week.

    The walk starts at the current week when it is already complete or
    `include_current_week` is set, otherwise at the week before. It stops at
    the first missing or incomplete week.
    """
    rows = (
        db.query(GoalProgress.period_start, GoalProgress.completed_at)
        .filter(
            GoalProgress.goal_id == goal_id,
            GoalProgress.cadence == "weekly",
            GoalProgress.period_start <= current_week_start,
        )
        .order_by(GoalProgress.period_start.desc())
        .limit(MAX_STREAK_WEEKS)
        .all()
    )
    completed_by_week = {period_start: completed_at is not None for period_start, completed_at in rows}

    if completed_by_week.get(current_week_start) or include_current_week:
        scan_week = current_week_start
    else:
        scan_week = add_weeks(current_week_start, -1)

    streak_weeks = 0
    while streak_weeks < MAX_STREAK_WEEKS:
        if not completed_by_week.get(scan_week):
            break
        streak_weeks += 1
        scan_week = add_weeks(scan_week, -1)
    return streak_weeks
