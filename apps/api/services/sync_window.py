"""
Sync window policy.

Decides which [oldest, newest] calendar-date range is requested from
Intervals.icu: a fixed lookback for the bootstrap sync after connecting, and
"since the last successful sync, minus one day of overlap" for incremental
syncs. The overlap tolerates upstream clock skew and activities that arrive
late (uploaded after the previous sync finished).

Windows are always date-only `yyyy-MM-dd` strings, sent upstream and logged
identically.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Optional

from core.config import settings
from core.exceptions import InvalidDateRangeError
from services.dates import parse_iso_datetime, to_date_only_string


_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class SyncWindow:
    oldest: str
    newest: str

    def to_dict(self) -> Dict[str, str]:
        return {"oldest": self.oldest, "newest": self.newest}


def build_initial_sync_window(now: datetime, lookback_days: Optional[int] = None) -> SyncWindow:
    days = settings.INTERVALS_INITIAL_LOOKBACK_DAYS if lookback_days is None else lookback_days
    return SyncWindow(
        oldest=to_date_only_string(now - timedelta(days=days)),
        newest=to_date_only_string(now),
    )


def build_incremental_sync_window(
    *,
    now: datetime,
    last_successful_sync_at: datetime,
    oldest_override: Optional[str] = None,
    newest_override: Optional[str] = None,
) -> SyncWindow:
    """
    Window for an incremental sync.

    Raises InvalidDateRangeError when an override cannot be parsed or the
    resulting range is inverted.
    """
    overlap = timedelta(days=settings.INTERVALS_INCREMENTAL_OVERLAP_DAYS)
    newest = normalize_date_param(newest_override, default=now)
    oldest = normalize_date_param(oldest_override, default=last_successful_sync_at - overlap)

    if newest is None or oldest is None:
        raise InvalidDateRangeError()
    if oldest > newest:
        raise InvalidDateRangeError('"oldest" must be on or before "newest".')

    return SyncWindow(oldest=oldest, newest=newest)


def normalize_date_param(value: Optional[str], *, default: datetime) -> Optional[str]:
    """
    Normalize a caller-supplied bound to `yyyy-MM-dd`.

    Accepts a bare calendar date or any ISO-8601 timestamp; returns None when
    the value cannot be parsed.
    """
    if not value:
        return to_date_only_string(default)

    value = value.strip()
    if _DATE_ONLY.match(value):
        try:
            return date.fromisoformat(value).isoformat()
        except ValueError:
            return None

    parsed = parse_iso_datetime(value)
    if parsed is None:
        return None
    return to_date_only_string(parsed)
