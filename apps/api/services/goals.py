"""
Goal service.

User-facing goal operations on top of the goal progress engine:
create (or reactivate), update target, archive, and list with progress,
streak and history.

One goal per (user, goal_type, cadence). Archiving sets abandoned_at and
ends the goal's streak; creating the same key again reactivates the row.
Only weekly frequency goals can carry a streak, and a user has at most one
active streak.
"""
import logging
import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.exceptions import GoalNotFoundError, GoalValidationError
from models import Goal, GoalProgress, GoalStreak
from services.dates import ensure_utc, start_of_iso_week, start_of_month, utc_date, utc_now
from services.goal_progress import (
    GOAL_CADENCES,
    GOAL_TYPES,
    clamp_ratio,
    compute_current_weekly_streak_weeks,
    compute_period_goal_metrics,
    get_goal_progress_ratio,
    is_goal_completed,
    recompute_goal_progress_for_period,
)

logger = logging.getLogger(__name__)

MAX_WEEKLY_FREQUENCY = 31
HISTORY_PROGRESS_LIMIT = 200
HISTORY_ARCHIVED_LIMIT = 50


def validate_goal_target_value(goal_type: str, target_value: float) -> float:
    if isinstance(target_value, bool) or not isinstance(target_value, (int, float)):
        raise GoalValidationError("Target value must be a number.")
    if not math.isfinite(target_value) or target_value <= 0:
        raise GoalValidationError("Target value must be a positive number.")
    if goal_type == "frequency":
        if float(target_value) != int(target_value):
            raise GoalValidationError("Frequency target must be a whole number of runs.")
        if not 1 <= int(target_value) <= MAX_WEEKLY_FREQUENCY:
            raise GoalValidationError(f"Frequency target must be between 1 and {MAX_WEEKLY_FREQUENCY}.")
    return float(target_value)


def _validate_key(goal_type: str, cadence: str) -> None:
    if goal_type not in GOAL_TYPES:
        raise GoalValidationError(f"Unknown goal type '{goal_type}'.")
    if cadence not in GOAL_CADENCES:
        raise GoalValidationError(f"Unknown goal cadence '{cadence}'.")


def _current_period_start(cadence: str, now: datetime) -> date:
    today = utc_date(now)
    return start_of_iso_week(today) if cadence == "weekly" else start_of_month(today)


def _get_owned_goal(db: Session, user_id: str, goal_id: int) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id, Goal.user_id == user_id).first()
    if goal is None:
        raise GoalNotFoundError()
    return goal


# --- Streaks ---

def load_active_streak_goal_id(db: Session, user_id: str) -> Optional[int]:
    """Goal id of the user's active weekly-frequency streak, if its goal is still active."""
    streak = (
        db.query(GoalStreak)
        .filter(GoalStreak.user_id == user_id, GoalStreak.ended_at.is_(None))
        .first()
    )
    if streak is None or streak.goal is None:
        return None
    goal = streak.goal
    if goal.abandoned_at is not None or goal.goal_type != "frequency" or goal.cadence != "weekly":
        return None
    return goal.id


def assert_can_enable_streak(db: Session, user_id: str, goal_id: int) -> None:
    existing = (
        db.query(GoalStreak)
        .filter(GoalStreak.user_id == user_id, GoalStreak.ended_at.is_(None))
        .first()
    )
    if existing is not None and existing.goal_id != goal_id:
        raise GoalValidationError("Only one active weekly frequency streak is allowed.")


def upsert_goal_streak(db: Session, user_id: str, goal_id: int, now: datetime) -> GoalStreak:
    streak = db.query(GoalStreak).filter(GoalStreak.goal_id == goal_id).first()
    if streak is None:
        streak = GoalStreak(goal_id=goal_id, user_id=user_id, started_at=now, updated_at=now)
        db.add(streak)
    elif streak.ended_at is not None:
        streak.ended_at = None
        streak.started_at = now
        streak.updated_at = now
    db.flush()
    return streak


def end_goal_streak(db: Session, goal_id: int, now: datetime) -> bool:
    streak = (
        db.query(GoalStreak)
        .filter(GoalStreak.goal_id == goal_id, GoalStreak.ended_at.is_(None))
        .first()
    )
    if streak is None:
        return False
    streak.ended_at = now
    streak.updated_at = now
    db.flush()
    return True


# --- Goal operations ---

def create_goal(
    db: Session,
    user_id: str,
    goal_type: str,
    cadence: str,
    target_value: float,
    track_streak: bool = False,
    now: Optional[datetime] = None,
) -> Goal:
    """Create a goal or reactivate the archived one with the same key. Commits."""
    now = now or utc_now()
    _validate_key(goal_type, cadence)
    target_value = validate_goal_target_value(goal_type, target_value)
    if track_streak and (goal_type != "frequency" or cadence != "weekly"):
        raise GoalValidationError("Streak is only supported for weekly frequency goals.")

    goal = (
        db.query(Goal)
        .filter(Goal.user_id == user_id, Goal.goal_type == goal_type, Goal.cadence == cadence)
        .first()
    )
    if goal is not None:
        goal.target_value = target_value
        goal.abandoned_at = None
        goal.updated_at = now
    else:
        goal = Goal(
            user_id=user_id,
            goal_type=goal_type,
            cadence=cadence,
            target_value=target_value,
            created_at=now,
            updated_at=now,
        )
        db.add(goal)
    db.flush()

    if track_streak:
        assert_can_enable_streak(db, user_id, goal.id)
        upsert_goal_streak(db, user_id, goal.id, now)

    recompute_goal_progress_for_period(db, goal, _current_period_start(cadence, now), now=now)
    db.commit()
    logger.info(f"Goal {goal.id} ({goal_type}/{cadence}) set to {target_value} for user {user_id}")
    return goal


def update_goal_target(
    db: Session,
    user_id: str,
    goal_id: int,
    target_value: float,
    now: Optional[datetime] = None,
) -> Goal:
    now = now or utc_now()
    goal = _get_owned_goal(db, user_id, goal_id)
    goal.target_value = validate_goal_target_value(goal.goal_type, target_value)
    goal.updated_at = now
    db.flush()
    if goal.abandoned_at is None:
        recompute_goal_progress_for_period(db, goal, _current_period_start(goal.cadence, now), now=now)
    db.commit()
    return goal


def archive_goal(db: Session, user_id: str, goal_id: int, now: Optional[datetime] = None) -> Goal:
    now = now or utc_now()
    goal = _get_owned_goal(db, user_id, goal_id)
    goal.abandoned_at = now
    goal.updated_at = now
    end_goal_streak(db, goal.id, now)
    db.commit()
    logger.info(f"Archived goal {goal.id} for user {user_id}")
    return goal


def list_goals_with_progress(db: Session, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Active goals with current-period progress plus history.

    Persisted GoalProgress rows win; live metrics only fill in periods that
    have not been recomputed yet. Goals are ordered streak goal first, then by
    ascending progress, then id. History lists failed past periods and
    archived goals.
    """
    now = now or utc_now()
    week_start = _current_period_start("weekly", now)
    month_start = _current_period_start("monthly", now)
    period_start_by_cadence = {"weekly": week_start, "monthly": month_start}

    active_streak_goal_id = load_active_streak_goal_id(db, user_id)
    active_goals = (
        db.query(Goal)
        .filter(Goal.user_id == user_id, Goal.abandoned_at.is_(None))
        .order_by(Goal.id.asc())
        .all()
    )

    goals: List[Dict[str, Any]] = []
    live_metrics: Dict[str, Dict[str, float]] = {}
    for goal in active_goals:
        period_start = period_start_by_cadence[goal.cadence]
        progress = (
            db.query(GoalProgress)
            .filter(GoalProgress.goal_id == goal.id, GoalProgress.period_start == period_start)
            .first()
        )
        if progress is not None:
            current_value = progress.current_value
            completed_at = ensure_utc(progress.completed_at)
        else:
            if goal.cadence not in live_metrics:
                live_metrics[goal.cadence] = compute_period_goal_metrics(db, user_id, period_start, goal.cadence)
            current_value = live_metrics[goal.cadence][goal.goal_type]
            completed_at = now if is_goal_completed(goal.goal_type, current_value, goal.target_value) else None

        progress_ratio = clamp_ratio(get_goal_progress_ratio(goal.goal_type, current_value, goal.target_value))
        is_streak_goal = goal.id == active_streak_goal_id
        streak = None
        if is_streak_goal:
            streak = {
                "current_weeks": compute_current_weekly_streak_weeks(
                    db, goal.id, week_start, include_current_week=completed_at is not None
                ),
                "period_runs": current_value,
                "period_target_runs": goal.target_value,
            }

        goals.append(
            {
                "id": goal.id,
                "goal_type": goal.goal_type,
                "cadence": goal.cadence,
                "target_value": goal.target_value,
                "current_value": current_value,
                "progress_ratio": progress_ratio,
                "completed_at": completed_at,
                "is_streak_goal": is_streak_goal,
                "streak": streak,
            }
        )

    goals.sort(key=lambda g: (not g["is_streak_goal"], g["progress_ratio"], g["id"]))

    return {
        "week_start": week_start,
        "month_start": month_start,
        "goals": goals,
        "history": _failed_history(db, user_id, period_start_by_cadence) + _archived_history(db, user_id),
    }


def _failed_history(db: Session, user_id: str, period_start_by_cadence: Dict[str, date]) -> List[Dict[str, Any]]:
    rows = (
        db.query(GoalProgress, Goal)
        .join(Goal, GoalProgress.goal_id == Goal.id)
        .filter(GoalProgress.user_id == user_id)
        .order_by(GoalProgress.period_start.desc(), GoalProgress.id.desc())
        .limit(HISTORY_PROGRESS_LIMIT)
        .all()
    )
    history = []
    for progress, goal in rows:
        if progress.completed_at is not None:
            continue
        if progress.period_start >= period_start_by_cadence[progress.cadence]:
            continue
        history.append(
            {
                "kind": "failed",
                "goal_id": goal.id,
                "goal_type": goal.goal_type,
                "cadence": progress.cadence,
                "period_start": progress.period_start,
                "target_value": goal.target_value,
                "current_value": progress.current_value,
            }
        )
    return history


def _archived_history(db: Session, user_id: str) -> List[Dict[str, Any]]:
    rows = (
        db.query(Goal)
        .filter(Goal.user_id == user_id, Goal.abandoned_at.isnot(None))
        .order_by(Goal.abandoned_at.desc())
        .limit(HISTORY_ARCHIVED_LIMIT)
        .all()
    )
    return [
        {
            "kind": "archived",
            "goal_id": goal.id,
            "goal_type": goal.goal_type,
            "cadence": goal.cadence,
            "target_value": goal.target_value,
            "abandoned_at": ensure_utc(goal.abandoned_at),
        }
        for goal in rows
    ]
