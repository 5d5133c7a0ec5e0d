"""
Tests for best effort extraction and 1 km splits.

The two-pointer sweep is checked against a brute-force search over every
window of small synthetic traces.
"""
import random

import pytest

from services.best_effort_extractor import (
    BEST_EFFORT_TARGET_DISTANCES_METERS,
    TARGET_DISTANCE_PR_TYPES,
    clamp_distance_trace,
    compute_one_km_split_times,
    extract_best_efforts,
)


def brute_force_min_duration(trace, target):
    distances = clamp_distance_trace(trace)
    best = None
    for start in range(len(distances)):
        for end in range(start + 1, len(distances)):
            if distances[end] - distances[start] >= target:
                if best is None or end - start < best:
                    best = end - start
                break
    return best


class TestClampDistanceTrace:
    """Trace clamping."""

    def test_dips_are_flattened(self):
        """GPS dips never reduce cumulative distance."""
        assert clamp_distance_trace([0, 10, 8, 12, 11]) == [0, 10, 10, 12, 12]

    def test_none_carries_previous_value(self):
        """Missing samples carry the previous value."""
        assert clamp_distance_trace([None, 5, None, 9]) == [0, 5, 5, 9]


class TestExtractBestEfforts:
    """Minimum-duration window search."""

    def test_short_trace_returns_nothing(self):
        """Fewer than two samples produce no efforts."""
        assert extract_best_efforts([]) == []
        assert extract_best_efforts([500.0]) == []

    def test_unreachable_targets_omitted(self):
        """Only targets covered by the trace are returned."""
        efforts = extract_best_efforts([0, 300, 600, 900, 1200])
        targets = [e.target_distance_meters for e in efforts]
        assert targets == [400.0, 1000.0]

    def test_full_trace_target(self):
        """Target 1000 on a 1000 m trace needs the window from index 1 to 5."""
        trace = [0, 0, 100, 200, 300, 1000]
        (effort,) = extract_best_efforts(trace, targets=[1000.0])
        assert effort.start_index == 1
        assert effort.end_index == 5
        assert effort.duration_seconds == 4
        assert trace[effort.end_index] - trace[effort.start_index] >= 1000

    def test_shortest_window_for_400(self):
        """The 700 m jump in the last second covers 400 m in one second."""
        trace = [0, 0, 100, 200, 300, 1000]
        (effort,) = extract_best_efforts(trace, targets=[400.0])
        assert effort.duration_seconds == 1
        assert (effort.start_index, effort.end_index) == (4, 5)

    def test_tie_keeps_earliest_start(self):
        """Equal durations keep the first window found."""
        trace = [0, 500, 1000, 1500, 2000]
        (effort,) = extract_best_efforts(trace, targets=[500.0])
        assert (effort.start_index, effort.end_index, effort.duration_seconds) == (0, 1, 1)

    def test_efforts_follow_target_order(self):
        """Results are ordered like the target list."""
        trace = [i * 5.0 for i in range(4000)]  # 5 m/s, just under 20 km
        efforts = extract_best_efforts(trace)
        assert [e.target_distance_meters for e in efforts] == list(BEST_EFFORT_TARGET_DISTANCES_METERS[:5])
        assert efforts[0].duration_seconds == 80  # 400 m at 5 m/s

    @pytest.mark.parametrize("seed", range(25))
    def test_matches_brute_force(self, seed):
        """Durations equal the true minimum and windows always cover the target."""
        rng = random.Random(seed)
        trace = [0.0]
        for _ in range(rng.randint(2, 60)):
            step = rng.choice([0, 0, 3, 50, 120, 400, 900]) + rng.random()
            trace.append(trace[-1] + step if rng.random() > 0.1 else trace[-1] - 20)
        targets = [400.0, 1000.0, 1609.344, 5000.0]

        clamped = clamp_distance_trace(trace)
        by_target = {e.target_distance_meters: e for e in extract_best_efforts(trace, targets)}
        for target in targets:
            expected = brute_force_min_duration(trace, target)
            effort = by_target.get(target)
            if expected is None:
                assert effort is None
                continue
            assert effort is not None
            assert effort.duration_seconds == expected
            assert effort.end_index - effort.start_index == effort.duration_seconds
            assert clamped[effort.end_index] - clamped[effort.start_index] >= target

    def test_every_target_has_a_pr_type(self):
        """Each target distance maps to a personal record type."""
        assert set(TARGET_DISTANCE_PR_TYPES) == set(BEST_EFFORT_TARGET_DISTANCES_METERS)


class TestOneKmSplits:
    """Per-kilometre split times."""

    def test_even_pace_splits(self):
        """Even 5 m/s pace gives 200 second kilometres."""
        trace = [i * 5.0 for i in range(3 * 200 + 50)]
        assert compute_one_km_split_times(trace) == [200, 200, 200]

    def test_partial_last_km_dropped(self):
        """A trailing partial kilometre is not reported."""
        assert compute_one_km_split_times([0, 600, 1200, 1500]) == [2]

    def test_short_trace(self):
        """Fewer than two samples produce no splits."""
        assert compute_one_km_split_times([0]) == []
