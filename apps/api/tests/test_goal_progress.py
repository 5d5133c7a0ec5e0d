"""
Tests for the goal progress engine.
"""
import pytest
from datetime import date, datetime, timedelta, timezone

from models import Goal, GoalProgress
from services.goal_progress import (
    clamp_ratio,
    compute_current_weekly_streak_weeks,
    compute_period_goal_metrics,
    get_goal_progress_ratio,
    is_goal_completed,
    recompute_goal_progress_for_dates,
    recompute_goal_progress_for_period,
    recompute_goal_progress_for_user,
)
from fixtures.intervals_fixtures import seed_activity


USER_ID = "user-1"
NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)  # Wednesday
WEEK = date(2024, 3, 11)


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _goal(db, goal_type="distance", cadence="weekly", target_value=20000.0, user_id=USER_ID):
    goal = Goal(user_id=user_id, goal_type=goal_type, cadence=cadence, target_value=target_value,
                created_at=NOW, updated_at=NOW)
    db.add(goal)
    db.flush()
    return goal


def _progress(db, goal, period_start):
    return (
        db.query(GoalProgress)
        .filter(GoalProgress.goal_id == goal.id, GoalProgress.period_start == period_start)
        .one_or_none()
    )


class TestCompletionRules:
    """Completion and ratio rules per goal type."""

    def test_distance_and_frequency(self):
        assert is_goal_completed("distance", 20000, 20000)
        assert not is_goal_completed("distance", 19999, 20000)
        assert is_goal_completed("frequency", 4, 3)

    def test_pace_is_lower_is_better(self):
        """Pace completes at or under target, never at zero."""
        assert is_goal_completed("pace", 290, 300)
        assert is_goal_completed("pace", 300, 300)
        assert not is_goal_completed("pace", 310, 300)
        assert not is_goal_completed("pace", 0, 300)

    def test_ratios(self):
        assert get_goal_progress_ratio("distance", 10000, 20000) == 0.5
        assert get_goal_progress_ratio("pace", 360, 300) == pytest.approx(300 / 360)
        assert get_goal_progress_ratio("pace", 0, 300) == 0.0
        assert get_goal_progress_ratio("frequency", 6, 3) == 2.0

    @pytest.mark.parametrize("ratio,expected", [(-1.0, 0.0), (0.4, 0.4), (2.0, 1.0), (float("inf"), 0.0)])
    def test_clamp(self, ratio, expected):
        assert clamp_ratio(ratio) == expected


class TestPeriodMetrics:
    """Per-period metric computation."""

    def test_metrics_for_week(self, db_session):
        """Runs inside [start, end) count, other weeks and non-runs do not."""
        seed_activity(db_session, start=_utc(2024, 3, 11, 0, 0), distance=5000.0, elapsed_time=1500)
        seed_activity(db_session, start=_utc(2024, 3, 17, 23, 59), distance=10000.0, elapsed_time=3300)
        seed_activity(db_session, start=_utc(2024, 3, 18, 0, 0), distance=9999.0, elapsed_time=3000)
        seed_activity(db_session, start=_utc(2024, 3, 12, 7), activity_type="Ride", distance=30000.0)

        metrics = compute_period_goal_metrics(db_session, USER_ID, WEEK, "weekly")

        assert metrics["distance"] == 15000.0
        assert metrics["frequency"] == 2.0
        assert metrics["pace"] == pytest.approx(4800 / 15.0)

    def test_empty_period(self, db_session):
        metrics = compute_period_goal_metrics(db_session, USER_ID, date(2024, 3, 1), "monthly")
        assert metrics == {"distance": 0.0, "frequency": 0.0, "pace": 0.0}


class TestRecomputeForPeriod:
    """Replace-not-patch progress rows."""

    def test_row_replaced_and_completion_stamped(self, db_session):
        """Crossing the target stamps completed_at with the recompute time."""
        goal = _goal(db_session, target_value=10000.0)
        seed_activity(db_session, start=_utc(2024, 3, 11, 7), distance=6000.0)
        recompute_goal_progress_for_period(db_session, goal, WEEK, now=NOW)
        assert _progress(db_session, goal, WEEK).completed_at is None

        seed_activity(db_session, start=_utc(2024, 3, 12, 7), distance=6000.0)
        later = NOW + timedelta(hours=2)
        recompute_goal_progress_for_period(db_session, goal, WEEK, now=later)

        row = _progress(db_session, goal, WEEK)
        assert row.current_value == 12000.0
        assert row.completed_at.replace(tzinfo=timezone.utc) == later
        assert db_session.query(GoalProgress).count() == 1

    def test_completed_at_kept_while_still_complete(self, db_session):
        """Later recomputes keep the original completion time."""
        goal = _goal(db_session, target_value=5000.0)
        seed_activity(db_session, start=_utc(2024, 3, 11, 7), distance=6000.0)
        recompute_goal_progress_for_period(db_session, goal, WEEK, now=NOW)

        seed_activity(db_session, start=_utc(2024, 3, 12, 7), distance=1000.0)
        recompute_goal_progress_for_period(db_session, goal, WEEK, now=NOW + timedelta(days=1))

        assert _progress(db_session, goal, WEEK).completed_at.replace(tzinfo=timezone.utc) == NOW

    def test_completion_cleared_when_no_longer_met(self, db_session):
        """Removing runs can un-complete a period."""
        goal = _goal(db_session, goal_type="frequency", target_value=1)
        activity = seed_activity(db_session, start=_utc(2024, 3, 11, 7))
        recompute_goal_progress_for_period(db_session, goal, WEEK, now=NOW)

        activity.type = "Ride"
        db_session.flush()
        recompute_goal_progress_for_period(db_session, goal, WEEK, now=NOW)

        row = _progress(db_session, goal, WEEK)
        assert row.current_value == 0.0
        assert row.completed_at is None


class TestRecomputeForDates:
    """Recompute scoped to affected dates."""

    def test_active_goals_for_both_cadences(self, db_session):
        """Each active goal gets a row for its own period of every affected date."""
        weekly = _goal(db_session, "distance", "weekly")
        monthly = _goal(db_session, "frequency", "monthly", target_value=10)
        archived = _goal(db_session, "pace", "weekly", target_value=300)
        archived.abandoned_at = NOW
        db_session.flush()

        written = recompute_goal_progress_for_dates(
            db_session, USER_ID, [date(2024, 3, 12), date(2024, 3, 13), date(2024, 2, 28)], now=NOW
        )

        assert written == 4
        assert {r.period_start for r in db_session.query(GoalProgress).filter_by(goal_id=weekly.id)} == {
            date(2024, 2, 26), WEEK,
        }
        assert {r.period_start for r in db_session.query(GoalProgress).filter_by(goal_id=monthly.id)} == {
            date(2024, 2, 1), date(2024, 3, 1),
        }
        assert db_session.query(GoalProgress).filter_by(goal_id=archived.id).count() == 0

    def test_no_goals(self, db_session):
        assert recompute_goal_progress_for_dates(db_session, USER_ID, [WEEK], now=NOW) == 0

    def test_full_user_rebuild(self, db_session):
        """History rebuild covers every activity period plus the current one."""
        goal = _goal(db_session, "frequency", "weekly", target_value=1)
        seed_activity(db_session, start=_utc(2024, 2, 20, 7))
        db_session.add(GoalProgress(goal_id=goal.id, user_id=USER_ID, cadence="weekly",
                                    period_start=date(2023, 12, 4), current_value=9, created_at=NOW))
        db_session.flush()

        recompute_goal_progress_for_user(db_session, USER_ID, now=NOW)

        periods = {r.period_start: r for r in db_session.query(GoalProgress).filter_by(goal_id=goal.id)}
        assert set(periods) == {date(2024, 2, 19), WEEK}
        assert periods[date(2024, 2, 19)].completed_at is not None
        assert periods[WEEK].completed_at is None

    def test_full_rebuild_keeps_completion_time(self, db_session):
        """A period completed before the rebuild keeps its original completed_at."""
        goal = _goal(db_session, "distance", "weekly", target_value=5000.0)
        completed_week = date(2024, 3, 4)
        seed_activity(db_session, start=_utc(2024, 3, 5, 7), distance=6000.0)
        recompute_goal_progress_for_period(db_session, goal, completed_week, now=_utc(2024, 3, 5, 8))

        rebuild_at = _utc(2024, 3, 20, 3, 30)
        recompute_goal_progress_for_user(db_session, USER_ID, now=rebuild_at)

        row = _progress(db_session, goal, completed_week)
        assert row.completed_at.replace(tzinfo=timezone.utc) == _utc(2024, 3, 5, 8)

    def test_full_rebuild_stamps_newly_completed_periods(self, db_session):
        goal = _goal(db_session, "frequency", "weekly", target_value=1)
        seed_activity(db_session, start=_utc(2024, 3, 5, 7))

        recompute_goal_progress_for_user(db_session, USER_ID, now=NOW)

        assert _progress(db_session, goal, date(2024, 3, 4)).completed_at.replace(tzinfo=timezone.utc) == NOW


class TestMonotonicProgress:
    """Adding a run never lowers distance or frequency progress."""

    @pytest.mark.parametrize("goal_type,target,final", [("distance", 50000.0, 23000.0), ("frequency", 10, 5.0)])
    def test_adding_runs_never_lowers_current_value(self, db_session, goal_type, target, final):
        goal = _goal(db_session, goal_type, "weekly", target_value=target)
        values = []
        for day, distance in ((11, 8000.0), (12, 0.0), (13, 3000.0), (14, None), (15, 12000.0)):
            seed_activity(db_session, start=_utc(2024, 3, day, 7), distance=distance)
            recompute_goal_progress_for_dates(db_session, USER_ID, [date(2024, 3, day)], now=NOW)
            values.append(_progress(db_session, goal, WEEK).current_value)

        assert values == sorted(values)
        assert values[-1] == final

    def test_non_run_activity_leaves_value_unchanged(self, db_session):
        goal = _goal(db_session, "frequency", "weekly", target_value=3)
        seed_activity(db_session, start=_utc(2024, 3, 11, 7))
        recompute_goal_progress_for_dates(db_session, USER_ID, [date(2024, 3, 11)], now=NOW)

        seed_activity(db_session, start=_utc(2024, 3, 12, 7), activity_type="Ride")
        recompute_goal_progress_for_dates(db_session, USER_ID, [date(2024, 3, 12)], now=NOW)

        assert _progress(db_session, goal, WEEK).current_value == 1.0


class TestWeeklyStreak:
    """Consecutive completed weeks."""

    def _complete_weeks(self, db, goal, week_starts, completed=True):
        for week_start in week_starts:
            db.add(GoalProgress(goal_id=goal.id, user_id=USER_ID, cadence="weekly", period_start=week_start,
                                current_value=3, completed_at=NOW if completed else None, created_at=NOW))
        db.flush()

    def test_streak_counts_back_from_previous_week(self, db_session):
        """An incomplete current week does not break the streak."""
        goal = _goal(db_session, "frequency", "weekly", target_value=3)
        self._complete_weeks(db_session, goal, [WEEK - timedelta(weeks=n) for n in (1, 2, 3)])

        assert compute_current_weekly_streak_weeks(db_session, goal.id, WEEK, include_current_week=False) == 3

    def test_completing_current_week_extends_streak(self, db_session):
        """Three completed weeks plus a completed current week make four."""
        goal = _goal(db_session, "frequency", "weekly", target_value=3)
        self._complete_weeks(db_session, goal, [WEEK - timedelta(weeks=n) for n in (0, 1, 2, 3)])

        assert compute_current_weekly_streak_weeks(db_session, goal.id, WEEK, include_current_week=False) == 4

    def test_gap_ends_streak(self, db_session):
        """A failed week stops the walk."""
        goal = _goal(db_session, "frequency", "weekly", target_value=3)
        self._complete_weeks(db_session, goal, [WEEK - timedelta(weeks=n) for n in (1, 3, 4)])
        self._complete_weeks(db_session, goal, [WEEK - timedelta(weeks=2)], completed=False)

        assert compute_current_weekly_streak_weeks(db_session, goal.id, WEEK, include_current_week=False) == 1

    def test_no_history(self, db_session):
        goal = _goal(db_session, "frequency", "weekly", target_value=3)
        assert compute_current_weekly_streak_weeks(db_session, goal.id, WEEK, include_current_week=True) == 0
