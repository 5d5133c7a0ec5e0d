"""
Calendar helpers shared by the sync window policy and the rollup engines.

All period math is done on UTC calendar dates: weeks start on Monday (ISO),
months on the 1st.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; None for empty or unparseable input."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_utc(parsed)


def to_date_only_string(value: datetime | date) -> str:
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return value.isoformat()


def utc_date(value: datetime) -> date:
    return ensure_utc(value).date()


def start_of_iso_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def start_of_month(day: date) -> date:
    return day.replace(day=1)


def add_weeks(day: date, weeks: int) -> date:
    return day + timedelta(days=7 * weeks)


def add_months(day: date, months: int) -> date:
    """Shift a first-of-month date by whole months."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def period_start_for(day: date, cadence: str) -> date:
    if cadence == "weekly":
        return start_of_iso_week(day)
    return start_of_month(day)


def period_end_for(period_start: date, cadence: str) -> date:
    """Exclusive end of the period beginning at `period_start`."""
    if cadence == "weekly":
        return add_weeks(period_start, 1)
    return add_months(period_start, 1)


def start_of_day_utc(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
