"""
Run rollup recomputation.

Weekly/monthly run totals and personal records are pure functions of the
intervals_activity table. Nothing here patches a derived row: a bucket is
deleted and re-aggregated, and personal records are deleted and reinserted
as a full set for the user.

Two entry points:
    recompute_dashboard_run_rollups            ordinary syncs, touched periods only
    recompute_dashboard_run_rollups_for_user   backfills, the user's whole history

Neither commits; the caller owns the transaction.
"""
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from models import (
    IntervalsActivity,
    IntervalsActivityBestEffort,
    RunPersonalRecord,
    RunRollupMonthly,
    RunRollupWeekly,
)
from services.activity_types import is_run_activity_type
from services.best_effort_extractor import BEST_EFFORT_TARGET_DISTANCES_METERS, TARGET_DISTANCE_PR_TYPES
from services.dates import add_months, add_weeks, start_of_day_utc, start_of_iso_week, start_of_month, utc_date, utc_now
from services.goal_progress import recompute_goal_progress_for_dates, recompute_goal_progress_for_user

logger = logging.getLogger(__name__)

LONGEST_RUN_PR_TYPE = "longest_run"


def aggregate_runs(activities: Sequence[IntervalsActivity]) -> Optional[Dict]:
    """Totals for run-typed activities; None when there are none."""
    runs = [a for a in activities if is_run_activity_type(a.type)]
    if not runs:
        return None

    total_distance_m = sum(a.distance or 0.0 for a in runs)
    total_elapsed_s = sum(a.elapsed_time or 0 for a in runs)
    total_moving_s = sum(a.moving_time or 0 for a in runs)
    avg_pace = total_elapsed_s / (total_distance_m / 1000.0) if total_distance_m > 0 else None

    return {
        "run_count": len(runs),
        "total_distance_m": total_distance_m,
        "total_elapsed_s": total_elapsed_s,
        "total_moving_s": total_moving_s,
        "avg_pace_sec_per_km": avg_pace,
    }


def _activities_between(db: Session, user_id: str, start: date, end: date) -> List[IntervalsActivity]:
    return (
        db.query(IntervalsActivity)
        .filter(
            IntervalsActivity.user_id == user_id,
            IntervalsActivity.start_date.isnot(None),
            IntervalsActivity.start_date >= start_of_day_utc(start),
            IntervalsActivity.start_date < start_of_day_utc(end),
        )
        .all()
    )


def recompute_weekly_bucket(db: Session, user_id: str, week_start: date, *, now: Optional[datetime] = None) -> bool:
    """Rebuild one weekly row. Returns True when a row exists afterwards."""
    db.query(RunRollupWeekly).filter(
        RunRollupWeekly.user_id == user_id,
        RunRollupWeekly.week_start == week_start,
    ).delete()

    totals = aggregate_runs(_activities_between(db, user_id, week_start, add_weeks(week_start, 1)))
    if totals is None:
        return False
    db.add(RunRollupWeekly(user_id=user_id, week_start=week_start, created_at=now or utc_now(), **totals))
    return True


def recompute_monthly_bucket(db: Session, user_id: str, month_start: date, *, now: Optional[datetime] = None) -> bool:
    """Rebuild one monthly row. Returns True when a row exists afterwards."""
    db.query(RunRollupMonthly).filter(
        RunRollupMonthly.user_id == user_id,
        RunRollupMonthly.month_start == month_start,
    ).delete()

    totals = aggregate_runs(_activities_between(db, user_id, month_start, add_months(month_start, 1)))
    if totals is None:
        return False
    db.add(RunRollupMonthly(user_id=user_id, month_start=month_start, created_at=now or utc_now(), **totals))
    return True


def recompute_personal_records(db: Session, user_id: str, *, now: Optional[datetime] = None) -> int:
    """
    Replace every personal record for the user.

    longest_run is the run with the greatest distance; each fastest_* record
    is the shortest best effort for its target across all runs. Ties go to
    the earlier activity.
    """
    now = now or utc_now()
    db.query(RunPersonalRecord).filter(RunPersonalRecord.user_id == user_id).delete()

    records: List[RunPersonalRecord] = []

    runs = [
        a
        for a in (
            db.query(IntervalsActivity)
            .filter(IntervalsActivity.user_id == user_id, IntervalsActivity.start_date.isnot(None))
            .order_by(IntervalsActivity.start_date.asc(), IntervalsActivity.id.asc())
            .all()
        )
        if is_run_activity_type(a.type)
    ]

    longest = None
    for activity in runs:
        if not activity.distance or activity.distance <= 0:
            continue
        if longest is None or activity.distance > longest.distance:
            longest = activity
    if longest is not None:
        records.append(
            RunPersonalRecord(
                user_id=user_id,
                pr_type=LONGEST_RUN_PR_TYPE,
                activity_id=longest.id,
                value_seconds=longest.elapsed_time,
                value_distance_m=longest.distance,
                activity_start_date=longest.start_date,
                created_at=now,
            )
        )

    efforts = (
        db.query(IntervalsActivityBestEffort, IntervalsActivity)
        .join(IntervalsActivity, IntervalsActivityBestEffort.activity_id == IntervalsActivity.id)
        .filter(IntervalsActivity.user_id == user_id, IntervalsActivity.start_date.isnot(None))
        .order_by(
            IntervalsActivityBestEffort.duration_seconds.asc(),
            IntervalsActivity.start_date.asc(),
            IntervalsActivity.id.asc(),
        )
        .all()
    )
    best_by_target: Dict[float, tuple] = {}
    for effort, activity in efforts:
        if not is_run_activity_type(activity.type):
            continue
        # Ordered by duration, so the first hit per target wins.
        best_by_target.setdefault(effort.target_distance_meters, (effort, activity))

    for target in BEST_EFFORT_TARGET_DISTANCES_METERS:
        hit = best_by_target.get(target)
        if hit is None:
            continue
        effort, activity = hit
        records.append(
            RunPersonalRecord(
                user_id=user_id,
                pr_type=TARGET_DISTANCE_PR_TYPES[target],
                activity_id=activity.id,
                value_seconds=effort.duration_seconds,
                value_distance_m=effort.target_distance_meters,
                activity_start_date=activity.start_date,
                created_at=now,
            )
        )

    db.add_all(records)
    db.flush()
    return len(records)


def recompute_dashboard_run_rollups(
    db: Session,
    user_id: str,
    affected_dates: Iterable[date],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Incremental recompute for the weeks and months touched by `affected_dates`,
    followed by all personal records and goal progress for the same periods.
    """
    now = now or utc_now()
    dates = set(affected_dates)
    if not dates:
        return {"weeks": 0, "months": 0, "personal_records": 0, "goal_progress_rows": 0}

    week_starts = sorted({start_of_iso_week(d) for d in dates})
    month_starts = sorted({start_of_month(d) for d in dates})

    for week_start in week_starts:
        recompute_weekly_bucket(db, user_id, week_start, now=now)
    for month_start in month_starts:
        recompute_monthly_bucket(db, user_id, month_start, now=now)
    db.flush()

    pr_count = recompute_personal_records(db, user_id, now=now)
    goal_rows = recompute_goal_progress_for_dates(db, user_id, dates, now=now)

    logger.info(
        f"Recomputed run rollups for user {user_id}: "
        f"{len(week_starts)} weeks, {len(month_starts)} months, {pr_count} PRs, {goal_rows} goal periods"
    )
    return {
        "weeks": len(week_starts),
        "months": len(month_starts),
        "personal_records": pr_count,
        "goal_progress_rows": goal_rows,
    }


def recompute_dashboard_run_rollups_for_user(
    db: Session,
    user_id: str,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Full rebuild of rollups, personal records and goal progress for one user."""
    now = now or utc_now()
    db.query(RunRollupWeekly).filter(RunRollupWeekly.user_id == user_id).delete()
    db.query(RunRollupMonthly).filter(RunRollupMonthly.user_id == user_id).delete()

    activities = (
        db.query(IntervalsActivity)
        .filter(IntervalsActivity.user_id == user_id, IntervalsActivity.start_date.isnot(None))
        .all()
    )
    weekly: Dict[date, List[IntervalsActivity]] = defaultdict(list)
    monthly: Dict[date, List[IntervalsActivity]] = defaultdict(list)
    for activity in activities:
        day = utc_date(activity.start_date)
        weekly[start_of_iso_week(day)].append(activity)
        monthly[start_of_month(day)].append(activity)

    week_count = 0
    for week_start, bucket in weekly.items():
        totals = aggregate_runs(bucket)
        if totals is not None:
            db.add(RunRollupWeekly(user_id=user_id, week_start=week_start, created_at=now, **totals))
            week_count += 1

    month_count = 0
    for month_start, bucket in monthly.items():
        totals = aggregate_runs(bucket)
        if totals is not None:
            db.add(RunRollupMonthly(user_id=user_id, month_start=month_start, created_at=now, **totals))
            month_count += 1
    db.flush()

    pr_count = recompute_personal_records(db, user_id, now=now)
    goal_rows = recompute_goal_progress_for_user(db, user_id, now=now)

    logger.info(
        f"Full rollup rebuild for user {user_id}: "
        f"{week_count} weeks, {month_count} months, {pr_count} PRs, {goal_rows} goal periods"
    )
    return {
        "weeks": week_count,
        "months": month_count,
        "personal_records": pr_count,
        "goal_progress_rows": goal_rows,
    }
