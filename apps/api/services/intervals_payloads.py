"""
Typed Intervals.icu payloads.

Every upstream JSON document is parsed into one of these models at the
gateway boundary; anything the pipeline depends on must be declared here.
Unknown fields are kept (`extra="allow"`) so the raw payload can be stored
verbatim. A shape mismatch raises UpstreamPayloadError.
"""
from __future__ import annotations

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.exceptions import UpstreamPayloadError


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")

    def raw(self) -> dict:
        return self.model_dump(mode="json")


class IntervalsAthlete(_Payload):
    id: str = Field(min_length=1)
    name: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    email: Optional[str] = None
    sex: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None
    locale: Optional[str] = None
    measurement_preference: Optional[str] = None
    status: Optional[str] = None
    visibility: Optional[str] = None
    weight: Optional[float] = None
    icu_weight: Optional[float] = None
    icu_last_seen: Optional[str] = None
    icu_activated: Optional[str] = None
    strava_id: Optional[Union[int, str]] = None
    strava_authorized: Optional[bool] = None


class IntervalsActivityEvent(_Payload):
    id: str = Field(min_length=1)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class IntervalsActivityInterval(_Payload):
    id: Union[str, int]
    type: Optional[str] = None
    group_id: Optional[str] = None
    zone: Optional[float] = None
    intensity: Optional[float] = None
    distance: Optional[float] = None
    moving_time: Optional[float] = None
    elapsed_time: Optional[float] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    average_speed: Optional[float] = None
    max_speed: Optional[float] = None
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None
    average_cadence: Optional[float] = None
    average_stride: Optional[float] = None
    total_elevation_gain: Optional[float] = None


class IntervalsActivityDetail(_Payload):
    id: str = Field(min_length=1)
    icu_athlete_id: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None
    source: Optional[str] = None
    external_id: Optional[str] = None
    device_name: Optional[str] = None
    start_date: Optional[str] = None
    start_date_local: Optional[str] = None
    analyzed: Optional[str] = None
    icu_sync_date: Optional[str] = None
    distance: Optional[float] = None
    moving_time: Optional[float] = None
    elapsed_time: Optional[float] = None
    total_elevation_gain: Optional[float] = None
    total_elevation_loss: Optional[float] = None
    average_speed: Optional[float] = None
    max_speed: Optional[float] = None
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None
    average_cadence: Optional[float] = None
    average_stride: Optional[float] = None
    calories: Optional[float] = None
    icu_training_load: Optional[float] = None
    hr_load: Optional[float] = None
    icu_intensity: Optional[float] = None
    lthr: Optional[float] = None
    athlete_max_hr: Optional[float] = None
    icu_intervals: List[IntervalsActivityInterval] = Field(default_factory=list)
    icu_hr_zones: Optional[List[float]] = None
    icu_hr_zone_times: Optional[List[float]] = None
    interval_summary: Optional[List[str]] = None
    # Streams the provider says it has for this activity.
    stream_types: List[str] = Field(default_factory=list)

    @field_validator("icu_intervals", "stream_types", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class IntervalsMapRoute(_Payload):
    athlete_id: Optional[str] = None
    route_id: Optional[int] = None
    name: Optional[str] = None
    commute: Optional[bool] = None
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    latlngs: List[List[Optional[float]]] = Field(default_factory=list)


class IntervalsMapWeatherTime(_Payload):
    start_secs: Optional[float] = None
    end_secs: Optional[float] = None
    temp: Optional[float] = None
    feels_like: Optional[float] = None
    humidity: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_deg: Optional[float] = None
    rain: Optional[float] = None
    clouds: Optional[float] = None
    weather_code: Optional[float] = None


class IntervalsMapWeatherPoint(_Payload):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    times: List[IntervalsMapWeatherTime] = Field(default_factory=list)


class IntervalsMapWeather(_Payload):
    points: List[IntervalsMapWeatherPoint] = Field(default_factory=list)


class IntervalsActivityMap(_Payload):
    bounds: List[List[float]] = Field(default_factory=list)
    latlngs: List[List[Optional[float]]] = Field(default_factory=list)
    route: Optional[IntervalsMapRoute] = None
    weather: Optional[IntervalsMapWeather] = None

    @field_validator("bounds", "latlngs", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class IntervalsActivityStream(_Payload):
    type: str = Field(min_length=1)
    name: Optional[str] = None
    data: List[Any] = Field(default_factory=list)
    data2: Optional[List[Any]] = None
    valueTypeIsArray: bool = False
    anomalies: Optional[List[Any]] = None
    custom: bool = False
    allNull: bool = False

    @field_validator("data", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


def _validation_error(scope: str, error: ValidationError) -> UpstreamPayloadError:
    return UpstreamPayloadError(f"Intervals {scope} payload validation failed: {error}")


def parse_athlete(payload: Any) -> IntervalsAthlete:
    try:
        return IntervalsAthlete.model_validate(payload)
    except ValidationError as e:
        raise _validation_error("athlete", e) from e


def parse_activity_events(payload: Any) -> List[IntervalsActivityEvent]:
    """Accepts a bare list or an `{"events": [...]}` envelope."""
    if isinstance(payload, dict) and "events" in payload:
        payload = payload["events"]
    if not isinstance(payload, list):
        raise UpstreamPayloadError("Intervals activity events payload validation failed: expected a list.")
    try:
        return [IntervalsActivityEvent.model_validate(item) for item in payload]
    except ValidationError as e:
        raise _validation_error("activity events", e) from e


def parse_activity_detail(payload: Any) -> IntervalsActivityDetail:
    try:
        return IntervalsActivityDetail.model_validate(payload)
    except ValidationError as e:
        raise _validation_error("activity detail", e) from e


def parse_activity_map(payload: Any) -> IntervalsActivityMap:
    # Activities without GPS come back as an empty body.
    if payload is None or payload == "":
        payload = {}
    try:
        return IntervalsActivityMap.model_validate(payload)
    except ValidationError as e:
        raise _validation_error("activity map", e) from e


def parse_activity_streams(payload: Any) -> List[IntervalsActivityStream]:
    if not isinstance(payload, list):
        raise UpstreamPayloadError("Intervals activity streams payload validation failed: expected a list.")
    try:
        return [IntervalsActivityStream.model_validate(item) for item in payload]
    except ValidationError as e:
        raise _validation_error("activity streams", e) from e
