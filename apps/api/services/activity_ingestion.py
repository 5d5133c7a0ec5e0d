"""
Activity ingestion pipeline.

For one sync window:
1. list activity events and dedupe their ids (first-seen order kept)
2. per activity, fetch detail and map concurrently, then only the streams
   the provider advertises that we care about
3. derive best efforts and 1 km splits from the distance stream
4. persist the batch (one transaction per activity)
5. recompute rollups for exactly the dates that changed

Any upstream or persistence failure aborts the rest of the pipeline. Nothing
is persisted until every activity has been fetched, and rollups are only
recomputed after the whole batch is saved.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional

from core.config import settings
from services.activity_mapping import IntervalsActivityAggregate
from services.best_effort_extractor import compute_one_km_split_times, extract_best_efforts
from services.intervals_gateway import IntervalsGateway
from services.intervals_payloads import IntervalsActivityEvent, IntervalsActivityStream
from services.intervals_repository import IntervalsRepository
from services.sync_window import SyncWindow

logger = logging.getLogger(__name__)

PREFERRED_STREAM_TYPES = ("cadence", "heartrate", "distance", "velocity_smooth", "altitude")
DISTANCE_STREAM_TYPE = "distance"


def dedupe_activity_ids(events: Iterable[IntervalsActivityEvent]) -> List[str]:
    seen = set()
    ids: List[str] = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        ids.append(event.id)
    return ids


def select_stream_types(advertised: Iterable[str]) -> List[str]:
    """Preferred streams the provider actually has, in preferred order."""
    available = set(advertised)
    return [t for t in PREFERRED_STREAM_TYPES if t in available]


def _distance_trace(streams: List[IntervalsActivityStream]) -> Optional[list]:
    for stream in streams:
        if stream.type == DISTANCE_STREAM_TYPE and not stream.allNull:
            return stream.data
    return None


def fetch_activity_aggregate(
    gateway: IntervalsGateway,
    activity_id: str,
    executor: ThreadPoolExecutor,
) -> IntervalsActivityAggregate:
    detail_future = executor.submit(gateway.fetch_activity_detail, activity_id)
    map_future = executor.submit(gateway.fetch_activity_map, activity_id)
    detail = detail_future.result()
    activity_map = map_future.result()

    stream_types = select_stream_types(detail.stream_types)
    streams: List[IntervalsActivityStream] = []
    if stream_types:
        streams = gateway.fetch_activity_streams(activity_id, stream_types)
        # Never keep a stream we did not ask for.
        streams = [s for s in streams if s.type in stream_types]

    aggregate = IntervalsActivityAggregate(
        activity_id=activity_id,
        detail=detail,
        map=activity_map,
        streams=streams,
    )

    trace = _distance_trace(streams)
    if trace:
        aggregate.best_efforts = extract_best_efforts(trace)
        aggregate.one_km_split_times_seconds = compute_one_km_split_times(trace)

    return aggregate


def fetch_and_upsert_activities(
    *,
    user_id: str,
    athlete_id: str,
    window: SyncWindow,
    gateway: IntervalsGateway,
    repository: IntervalsRepository,
) -> Dict[str, int]:
    events = gateway.fetch_activity_events(athlete_id, window)
    activity_ids = dedupe_activity_ids(events)
    logger.info(
        f"Intervals window {window.oldest}..{window.newest} for user {user_id}: "
        f"{len(activity_ids)} activities ({len(events)} events)",
        extra={"extra_fields": {"user_id": user_id, "athlete_id": athlete_id, "activity_count": len(activity_ids)}},
    )

    activities: List[IntervalsActivityAggregate] = []
    if activity_ids:
        # Detail and map for one activity run side by side; activities are fetched in order.
        workers = max(2, settings.INTERVALS_FETCH_CONCURRENCY)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="intervals-fetch") as executor:
            for activity_id in activity_ids:
                activities.append(fetch_activity_aggregate(gateway, activity_id, executor))

    result = repository.upsert_activities(user_id=user_id, athlete_id=athlete_id, activities=activities)
    affected_dates = result["affected_dates"]

    if affected_dates:
        repository.recompute_dashboard_run_rollups(user_id, affected_dates)

    return {
        "event_count": len(activity_ids),
        "saved_activity_count": result["saved_activity_count"],
    }
