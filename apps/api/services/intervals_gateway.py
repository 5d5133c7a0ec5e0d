"""
Intervals.icu upstream gateway.

Thin HTTP client over the Intervals.icu REST API. Every response is parsed
into a typed payload (services.intervals_payloads) before it leaves this
module; callers never see raw JSON.

Error mapping:
    401/403            -> UpstreamAuthError
    other non-2xx      -> UpstreamRequestError
    network failure    -> UpstreamRequestError
    schema mismatch    -> UpstreamPayloadError
"""
import logging
from typing import Any, List, Optional, Protocol, Sequence

import requests

from core.config import settings
from core.exceptions import UpstreamAuthError, UpstreamRequestError
from services.intervals_payloads import (
    IntervalsActivityDetail,
    IntervalsActivityEvent,
    IntervalsActivityMap,
    IntervalsActivityStream,
    IntervalsAthlete,
    parse_activity_detail,
    parse_activity_events,
    parse_activity_map,
    parse_activity_streams,
    parse_athlete,
)
from services.sync_window import SyncWindow

logger = logging.getLogger(__name__)


class IntervalsGateway(Protocol):
    def fetch_athlete_profile(self, athlete_id: str) -> IntervalsAthlete: ...

    def fetch_activity_events(self, athlete_id: str, window: SyncWindow) -> List[IntervalsActivityEvent]: ...

    def fetch_activity_detail(self, activity_id: str) -> IntervalsActivityDetail: ...

    def fetch_activity_map(self, activity_id: str) -> IntervalsActivityMap: ...

    def fetch_activity_streams(self, activity_id: str, types: Sequence[str]) -> List[IntervalsActivityStream]: ...


class HttpIntervalsGateway:
    """requests-based implementation of IntervalsGateway."""

    def __init__(
        self,
        *,
        api_base: Optional[str] = None,
        username: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_base = (api_base or settings.INTERVALS_ICU_API_BASE).rstrip("/")
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT
        self.session = session or requests.Session()
        self.session.auth = (
            username or settings.INTERVALS_ICU_USERNAME,
            api_key if api_key is not None else (settings.INTERVALS_ICU_API_KEY or ""),
        )
        self.session.headers.update({"Accept": "application/json"})

    def fetch_athlete_profile(self, athlete_id: str) -> IntervalsAthlete:
        payload = self._get(f"athlete.{athlete_id}", f"/athlete/{athlete_id}")
        return parse_athlete(payload)

    def fetch_activity_events(self, athlete_id: str, window: SyncWindow) -> List[IntervalsActivityEvent]:
        payload = self._get(
            f"athlete.{athlete_id}.events",
            f"/athlete/{athlete_id}/activities",
            params={"oldest": window.oldest, "newest": window.newest},
        )
        return parse_activity_events(payload)

    def fetch_activity_detail(self, activity_id: str) -> IntervalsActivityDetail:
        payload = self._get(
            f"activity.{activity_id}.detail",
            f"/activity/{activity_id}",
            params={"intervals": "true"},
        )
        return parse_activity_detail(payload)

    def fetch_activity_map(self, activity_id: str) -> IntervalsActivityMap:
        payload = self._get(f"activity.{activity_id}.map", f"/activity/{activity_id}/map")
        return parse_activity_map(payload)

    def fetch_activity_streams(self, activity_id: str, types: Sequence[str]) -> List[IntervalsActivityStream]:
        payload = self._get(
            f"activity.{activity_id}.streams",
            f"/activity/{activity_id}/streams",
            params={"types": ",".join(types)},
        )
        return parse_activity_streams(payload)

    def _get(self, operation: str, path: str, params: Optional[dict] = None) -> Any:
        url = f"{self.api_base}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Intervals {operation} request failed: {e}")
            raise UpstreamRequestError(f"Intervals {operation} request failed: {e}") from e

        if response.status_code in (401, 403):
            raise UpstreamAuthError(
                f"Intervals {operation} failed with status {response.status_code}: {_error_text(response)}"
            )
        if not response.ok:
            raise UpstreamRequestError(
                f"Intervals {operation} failed with status {response.status_code}: {_error_text(response)}"
            )

        logger.debug(f"Intervals third-party {operation}: {response.url}")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


def _error_text(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or response.reason or "").strip()[:500]
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("message") or payload)[:500]
    return str(payload)[:500]
