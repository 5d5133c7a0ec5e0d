"""
Tests for the activity ingestion pipeline.

Runs the real SQLAlchemy repository against in-memory SQLite with a scripted
gateway.
"""
import pytest
from datetime import date
from unittest.mock import MagicMock

from core.exceptions import UpstreamRequestError
from models import (
    IntervalsActivity,
    IntervalsActivityBestEffort,
    IntervalsActivityInterval,
    IntervalsActivityStream,
    RunRollupWeekly,
)
from services.activity_ingestion import (
    dedupe_activity_ids,
    fetch_and_upsert_activities,
    select_stream_types,
)
from services.intervals_payloads import parse_activity_events
from services.sync_window import SyncWindow
from fixtures.intervals_fixtures import make_detail, make_distance_trace, make_streams


WINDOW = SyncWindow(oldest="2024-03-01", newest="2024-03-10")
USER_ID = "user-1"
ATHLETE_ID = "i12345"


def _ingest(gateway, repository):
    return fetch_and_upsert_activities(
        user_id=USER_ID,
        athlete_id=ATHLETE_ID,
        window=WINDOW,
        gateway=gateway,
        repository=repository,
    )


def _count(session_factory, model):
    with session_factory() as db:
        return db.query(model).count()


@pytest.fixture
def run_with_streams(gateway):
    trace = make_distance_trace(5000, 1500)
    return gateway.add_activity(
        make_detail("a1"),
        streams=make_streams(trace, types=("distance", "heartrate", "watts")),
    )


class TestHelpers:
    """Pure helpers."""

    def test_dedupe_keeps_first_seen_order(self):
        """Duplicate ids are dropped, order kept."""
        events = parse_activity_events([{"id": "b"}, {"id": "a"}, {"id": "b"}, {"id": "c"}])
        assert dedupe_activity_ids(events) == ["b", "a", "c"]

    def test_select_stream_types(self):
        """Only preferred streams the activity has, in preferred order."""
        assert select_stream_types(["watts", "distance", "time", "cadence"]) == ["cadence", "distance"]
        assert select_stream_types(["time", "watts"]) == []


class TestFetchAndUpsert:
    """End-to-end ingestion for one window."""

    def test_persists_activity_and_children(self, gateway, repository, session_factory, run_with_streams):
        """Activity, intervals, requested streams and best efforts are stored."""
        result = _ingest(gateway, repository)

        assert result == {"event_count": 1, "saved_activity_count": 1}
        with session_factory() as db:
            activity = db.query(IntervalsActivity).one()
            assert activity.intervals_activity_id == "a1"
            assert activity.distance == 5000.0
            assert activity.moving_time == 1500
            assert activity.heart_rate_zones_bpm == [130, 145, 158, 168, 180]
            assert activity.heart_rate_zone_durations_seconds == [120, 600, 500, 300, 40]
            assert len(activity.one_km_split_times_seconds) == 5
            assert activity.raw_data["id"] == "a1"
            assert activity.map_data["latlngs"]

            assert {s.stream_type for s in activity.streams} == {"distance", "heartrate"}
            assert [i.interval_id for i in activity.intervals] == ["1", "2"]
            targets = [e.target_distance_meters for e in activity.best_efforts]
            assert targets == [400.0, 1000.0, 1609.344, 5000.0]

    def test_only_preferred_streams_requested(self, gateway, repository, run_with_streams):
        """The streams call asks only for advertised preferred types."""
        _ingest(gateway, repository)

        assert gateway.calls_to("fetch_activity_streams") == [
            ("fetch_activity_streams", "a1", ("heartrate", "distance"))
        ]

    def test_rerun_is_idempotent(self, gateway, repository, session_factory, run_with_streams):
        """A second ingest of the same window leaves identical row counts."""
        _ingest(gateway, repository)
        counts = [
            _count(session_factory, m)
            for m in (IntervalsActivity, IntervalsActivityInterval, IntervalsActivityStream,
                      IntervalsActivityBestEffort, RunRollupWeekly)
        ]

        _ingest(gateway, repository)

        assert counts == [1, 2, 2, 4, 1]
        assert [
            _count(session_factory, m)
            for m in (IntervalsActivity, IntervalsActivityInterval, IntervalsActivityStream,
                      IntervalsActivityBestEffort, RunRollupWeekly)
        ] == counts

    def test_duplicate_events_fetched_once(self, gateway, repository):
        """An activity listed twice is fetched and saved once."""
        gateway.add_activity(make_detail("a1"))
        gateway.events.append({"id": "a1"})

        result = _ingest(gateway, repository)

        assert result["event_count"] == 1
        assert len(gateway.calls_to("fetch_activity_detail")) == 1

    def test_no_preferred_streams_skips_streams_call(self, gateway, repository, session_factory):
        """Activities without preferred streams never hit the streams endpoint."""
        gateway.add_activity(make_detail("a1", stream_types=["time", "watts"]))

        _ingest(gateway, repository)

        assert gateway.calls_to("fetch_activity_streams") == []
        assert _count(session_factory, IntervalsActivityBestEffort) == 0

    def test_duplicate_interval_ids_collapsed(self, gateway, repository, session_factory):
        """Repeated interval ids keep the first occurrence."""
        intervals = [
            {"id": 7, "type": "WORK", "distance": 1000.0, "start_time": 0},
            {"id": 7, "type": "RECOVERY", "distance": 200.0, "start_time": 300},
        ]
        gateway.add_activity(make_detail("a1", intervals=intervals))

        _ingest(gateway, repository)

        with session_factory() as db:
            (interval,) = db.query(IntervalsActivityInterval).all()
            assert interval.interval_type == "WORK"

    def test_fetch_failure_persists_nothing(self, gateway, repository, session_factory):
        """Everything is fetched before anything is written."""
        gateway.add_activity(make_detail("a1"))
        gateway.add_activity(make_detail("a2"))
        gateway.errors["fetch_activity_detail:a2"] = UpstreamRequestError("boom")

        with pytest.raises(UpstreamRequestError):
            _ingest(gateway, repository)

        assert _count(session_factory, IntervalsActivity) == 0
        assert _count(session_factory, RunRollupWeekly) == 0

    def test_moved_activity_recomputes_old_and_new_week(self, gateway, repository, session_factory):
        """When an activity's start date moves, both weeks are rebuilt."""
        gateway.add_activity(make_detail("a1", start_date="2024-03-05T07:00:00Z"))
        _ingest(gateway, repository)

        gateway.details["a1"] = make_detail("a1", start_date="2024-02-20T07:00:00Z")
        _ingest(gateway, repository)

        with session_factory() as db:
            weeks = [r.week_start for r in db.query(RunRollupWeekly).all()]
        assert weeks == [date(2024, 2, 19)]

    def test_empty_window_skips_recompute(self, gateway):
        """No activities means no rollup recomputation."""
        repository = MagicMock()
        repository.upsert_activities.return_value = {"saved_activity_count": 0, "affected_dates": []}

        result = _ingest(gateway, repository)

        assert result == {"event_count": 0, "saved_activity_count": 0}
        repository.recompute_dashboard_run_rollups.assert_not_called()
