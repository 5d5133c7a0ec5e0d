"""
Payload -> row mappers.

Translate typed Intervals payloads into column dicts for models.py. Numeric
fields are coerced the same way everywhere: integers are truncated toward
zero, anything non-numeric becomes None.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.best_effort_extractor import BestEffort
from services.dates import parse_iso_datetime
from services.intervals_payloads import (
    IntervalsActivityDetail,
    IntervalsActivityInterval,
    IntervalsActivityMap,
    IntervalsActivityStream,
    IntervalsAthlete,
)


@dataclass
class IntervalsActivityAggregate:
    """Everything fetched and derived for one activity, ready to persist."""

    activity_id: str
    detail: IntervalsActivityDetail
    map: Optional[IntervalsActivityMap] = None
    streams: List[IntervalsActivityStream] = field(default_factory=list)
    best_efforts: List[BestEffort] = field(default_factory=list)
    one_km_split_times_seconds: Optional[List[int]] = None


def to_int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return int(value)


def to_float_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def to_int_list_or_none(values: Optional[List[Any]]) -> Optional[List[int]]:
    if not isinstance(values, list):
        return None
    return [v for v in (to_int_or_none(item) for item in values) if v is not None]


def map_athlete_to_profile_values(
    *, user_id: str, athlete: IntervalsAthlete, now: datetime
) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "intervals_athlete_id": athlete.id,
        "name": athlete.name,
        "first_name": athlete.firstname,
        "last_name": athlete.lastname,
        "email": athlete.email,
        "sex": athlete.sex,
        "city": athlete.city,
        "state": athlete.state,
        "country": athlete.country,
        "timezone": athlete.timezone,
        "locale": athlete.locale,
        "measurement_preference": athlete.measurement_preference,
        "status": athlete.status,
        "visibility": athlete.visibility,
        "weight_kg": to_int_or_none(athlete.weight),
        "icu_weight_kg": to_int_or_none(athlete.icu_weight),
        "icu_last_seen_at": parse_iso_datetime(athlete.icu_last_seen),
        "icu_activated_at": parse_iso_datetime(athlete.icu_activated),
        "strava_id": str(athlete.strava_id) if athlete.strava_id is not None else None,
        "strava_authorized": athlete.strava_authorized,
        "raw_data": athlete.raw(),
        "updated_at": now,
    }


def map_activity_values(
    *,
    user_id: str,
    athlete_id: str,
    activity: IntervalsActivityAggregate,
    now: datetime,
) -> Dict[str, Any]:
    detail = activity.detail
    return {
        "user_id": user_id,
        "intervals_athlete_id": athlete_id,
        "intervals_activity_id": activity.activity_id,
        "type": detail.type,
        "name": detail.name,
        "source": detail.source,
        "external_id": detail.external_id,
        "device_name": detail.device_name,
        "start_date": parse_iso_datetime(detail.start_date),
        "start_date_local": parse_iso_datetime(detail.start_date_local),
        "analyzed_at": parse_iso_datetime(detail.analyzed),
        "synced_at": parse_iso_datetime(detail.icu_sync_date),
        "distance": to_float_or_none(detail.distance),
        "moving_time": to_int_or_none(detail.moving_time),
        "elapsed_time": to_int_or_none(detail.elapsed_time),
        "total_elevation_gain": to_float_or_none(detail.total_elevation_gain),
        "total_elevation_loss": to_float_or_none(detail.total_elevation_loss),
        "average_speed": to_float_or_none(detail.average_speed),
        "max_speed": to_float_or_none(detail.max_speed),
        "average_heartrate": to_float_or_none(detail.average_heartrate),
        "max_heartrate": to_float_or_none(detail.max_heartrate),
        "average_cadence": to_float_or_none(detail.average_cadence),
        "average_stride": to_float_or_none(detail.average_stride),
        "calories": to_float_or_none(detail.calories),
        "training_load": to_int_or_none(detail.icu_training_load),
        "hr_load": to_int_or_none(detail.hr_load),
        "intensity": to_float_or_none(detail.icu_intensity),
        "lthr": to_int_or_none(detail.lthr),
        "athlete_max_hr": to_int_or_none(detail.athlete_max_hr),
        "map_data": activity.map.raw() if activity.map is not None else None,
        "heart_rate_zones_bpm": to_int_list_or_none(detail.icu_hr_zones),
        "heart_rate_zone_durations_seconds": to_int_list_or_none(detail.icu_hr_zone_times),
        "one_km_split_times_seconds": activity.one_km_split_times_seconds,
        "interval_summary": detail.interval_summary,
        "raw_data": detail.raw(),
        "updated_at": now,
    }


def map_interval_row(activity_pk: int, interval: IntervalsActivityInterval) -> Dict[str, Any]:
    return {
        "activity_id": activity_pk,
        "interval_id": str(interval.id),
        "interval_type": interval.type,
        "group_id": interval.group_id,
        "zone": to_int_or_none(interval.zone),
        "intensity": to_float_or_none(interval.intensity),
        "distance": to_float_or_none(interval.distance),
        "moving_time": to_int_or_none(interval.moving_time),
        "elapsed_time": to_int_or_none(interval.elapsed_time),
        "start_time": to_int_or_none(interval.start_time),
        "end_time": to_int_or_none(interval.end_time),
        "average_speed": to_float_or_none(interval.average_speed),
        "max_speed": to_float_or_none(interval.max_speed),
        "average_heartrate": to_float_or_none(interval.average_heartrate),
        "max_heartrate": to_float_or_none(interval.max_heartrate),
        "average_cadence": to_float_or_none(interval.average_cadence),
        "average_stride": to_float_or_none(interval.average_stride),
        "total_elevation_gain": to_float_or_none(interval.total_elevation_gain),
        "raw_data": interval.raw(),
    }


def map_stream_row(activity_pk: int, stream: IntervalsActivityStream) -> Dict[str, Any]:
    return {
        "activity_id": activity_pk,
        "stream_type": stream.type,
        "name": stream.name,
        "data": stream.data,
        "data2": stream.data2,
        "value_type_is_array": stream.valueTypeIsArray,
        "anomalies": stream.anomalies,
        "custom": stream.custom,
        "all_null": stream.allNull,
    }


def map_best_effort_row(activity_pk: int, effort: BestEffort) -> Dict[str, Any]:
    return {
        "activity_id": activity_pk,
        "target_distance_meters": effort.target_distance_meters,
        "duration_seconds": effort.duration_seconds,
        "start_index": effort.start_index,
        "end_index": effort.end_index,
    }
