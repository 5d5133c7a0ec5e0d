"""Activity type classification. Only run-typed activities feed rollups, records and goals."""
import re
from typing import Optional

RUN_ACTIVITY_TYPES = frozenset({"run", "trailrun", "treadmillrun", "virtualrun"})

_SEPARATORS = re.compile(r"[\s_-]+")


def normalize_activity_type(activity_type: Optional[str]) -> str:
    """'Trail Run', 'trail_run' and 'TrailRun' all normalize to 'trailrun'."""
    if not activity_type:
        return ""
    return _SEPARATORS.sub("", activity_type).lower()


def is_run_activity_type(activity_type: Optional[str]) -> bool:
    return normalize_activity_type(activity_type) in RUN_ACTIVITY_TYPES
