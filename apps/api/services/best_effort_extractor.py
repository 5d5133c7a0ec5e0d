"""
Best Effort Extractor

Finds the fastest contiguous window covering each standard distance within a
single activity, from the per-second cumulative distance stream.

Intervals.icu does not return precomputed best efforts the way Strava does,
so they are derived locally during ingestion and stored per activity. Personal
records are then a MIN(duration) aggregation over these rows.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence


# Ordered target distances in meters.
BEST_EFFORT_TARGET_DISTANCES_METERS: tuple = (
    400.0,
    1000.0,
    1609.344,
    5000.0,
    10000.0,
    21097.5,
    42195.0,
)

# PR type key for each target distance.
TARGET_DISTANCE_PR_TYPES: Dict[float, str] = {
    400.0: "fastest_400m",
    1000.0: "fastest_1k",
    1609.344: "fastest_mile",
    5000.0: "fastest_5k",
    10000.0: "fastest_10k",
    21097.5: "fastest_half_marathon",
    42195.0: "fastest_marathon",
}


@dataclass(frozen=True)
class BestEffort:
    target_distance_meters: float
    start_index: int
    end_index: int
    duration_seconds: int

    def to_dict(self) -> Dict:
        return {
            "target_distance_meters": self.target_distance_meters,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "duration_seconds": self.duration_seconds,
        }


def clamp_distance_trace(trace: Sequence[Optional[float]]) -> List[float]:
    """
    Make a cumulative distance trace monotonically non-decreasing.

    GPS noise can make the cumulative distance dip; missing samples carry the
    previous value forward.
    """
    clamped: List[float] = []
    running = 0.0
    for value in trace:
        if value is not None:
            try:
                v = float(value)
            except (TypeError, ValueError):
                v = running
            if v > running:
                running = v
        clamped.append(running)
    return clamped


def extract_best_efforts(
    distance_trace: Sequence[Optional[float]],
    targets: Sequence[float] = BEST_EFFORT_TARGET_DISTANCES_METERS,
) -> List[BestEffort]:
    """
    Minimum-duration window [start, end) per target distance.

    Two-pointer sweep: for each start index the end pointer only moves
    forward until the window first covers the target, so each target costs
    O(n). Ties keep the earliest start. Targets never reached are omitted.
    """
    distances = clamp_distance_trace(distance_trace)
    n = len(distances)
    if n < 2:
        return []

    efforts: List[BestEffort] = []
    for target in targets:
        best: Optional[BestEffort] = None
        end = 0
        for start in range(n):
            if end < start:
                end = start
            while end < n and distances[end] - distances[start] < target:
                end += 1
            if end >= n:
                break
            duration = end - start
            if best is None or duration < best.duration_seconds:
                best = BestEffort(
                    target_distance_meters=float(target),
                    start_index=start,
                    end_index=end,
                    duration_seconds=duration,
                )
        if best is not None:
            efforts.append(best)
    return efforts


def compute_one_km_split_times(
    distance_trace: Sequence[Optional[float]],
    split_meters: float = 1000.0,
) -> List[int]:
    """
    Seconds taken for each complete kilometre of the trace.

    A split closes at the first sample whose cumulative distance reaches the
    next kilometre mark; the trailing partial kilometre is dropped.
    """
    distances = clamp_distance_trace(distance_trace)
    if len(distances) < 2:
        return []

    splits: List[int] = []
    next_mark = distances[0] + split_meters
    last_index = 0
    for index, value in enumerate(distances):
        while value >= next_mark:
            splits.append(index - last_index)
            last_index = index
            next_mark += split_meters
    return splits
