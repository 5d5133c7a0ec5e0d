"""
Intervals Sync Orchestrator

Public operation surface of the sync engine. Every sync attempt follows the
same sync-log lifecycle:

    started -> success   (fetched_activity_count recorded)
    started -> failed    (error message recorded, exception re-raised)

The 'started' row is written before any upstream call and finalized exactly
once. Precondition failures (not connected, no previous sync, invalid date
range) are raised before a row is opened and never show up in the log.

The engine itself does not lock per user. Two syncs for the same user must
not overlap; the Celery sync task holds a per-user Redis lock for that.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from core.exceptions import (
    ConnectionNotFoundError,
    NoPreviousSyncError,
    SyncInitializationError,
    to_error_message,
)
from services.activity_ingestion import fetch_and_upsert_activities
from services.dates import utc_now
from services.intervals_gateway import HttpIntervalsGateway, IntervalsGateway
from services.intervals_payloads import IntervalsAthlete
from services.intervals_repository import IntervalsRepository, SqlAlchemyIntervalsRepository
from services.sync_window import build_incremental_sync_window, build_initial_sync_window

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATHLETE_NAME = "Intervals athlete"


def _run_logged_attempt(
    *,
    repository: IntervalsRepository,
    user_id: str,
    athlete_id: Optional[str],
    started_at: datetime,
    operation: str,
    attempt: Callable[[], T],
    fetched_count: Callable[[T], int],
) -> T:
    sync_log_id = repository.create_sync_log_started(user_id=user_id, athlete_id=athlete_id, started_at=started_at)
    if not sync_log_id:
        raise SyncInitializationError()

    log_fields = {"user_id": user_id, "athlete_id": athlete_id, "sync_log_id": sync_log_id, "operation": operation}
    logger.info(f"Intervals {operation} started for user {user_id}", extra={"extra_fields": log_fields})

    try:
        result = attempt()
    except Exception as e:
        message = to_error_message(e)
        logger.error(f"Intervals {operation} failed for user {user_id}: {message}", extra={"extra_fields": log_fields})
        repository.complete_sync_log_failed(
            sync_log_id=sync_log_id,
            completed_at=utc_now(),
            error_message=message,
        )
        raise

    repository.complete_sync_log_success(
        sync_log_id=sync_log_id,
        athlete_id=athlete_id,
        completed_at=utc_now(),
        fetched_activity_count=fetched_count(result),
    )
    return result


def connect_athlete(
    *,
    user_id: str,
    athlete_id: str,
    gateway: IntervalsGateway,
    repository: IntervalsRepository,
    now: Optional[datetime] = None,
) -> IntervalsAthlete:
    """Fetch and store the athlete profile, recorded as a sync attempt with zero activities."""
    now = now or utc_now()

    def attempt() -> IntervalsAthlete:
        athlete = gateway.fetch_athlete_profile(athlete_id)
        repository.upsert_athlete_profile(user_id=user_id, athlete=athlete, now=now)
        return athlete

    athlete = _run_logged_attempt(
        repository=repository,
        user_id=user_id,
        athlete_id=athlete_id,
        started_at=now,
        operation="connect",
        attempt=attempt,
        fetched_count=lambda _: 0,
    )
    logger.info(f"Connected Intervals athlete {athlete.id} for user {user_id}")
    return athlete


def connect_athlete_and_bootstrap_activities(
    *,
    user_id: str,
    athlete_id: str,
    gateway: IntervalsGateway,
    repository: IntervalsRepository,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Connect, then pull the initial lookback window.

    The bootstrap ingestion is its own sync attempt; its success anchors the
    first incremental window.
    """
    now = now or utc_now()
    athlete = connect_athlete(user_id=user_id, athlete_id=athlete_id, gateway=gateway, repository=repository, now=now)

    window = build_initial_sync_window(now)
    counts = _run_logged_attempt(
        repository=repository,
        user_id=user_id,
        athlete_id=athlete.id,
        started_at=utc_now(),
        operation="bootstrap",
        attempt=lambda: fetch_and_upsert_activities(
            user_id=user_id,
            athlete_id=athlete.id,
            window=window,
            gateway=gateway,
            repository=repository,
        ),
        fetched_count=lambda r: r["event_count"],
    )

    return {
        "athlete": athlete,
        "connected_at": now,
        "oldest": window.oldest,
        "newest": window.newest,
        **counts,
    }


def sync_activities_incremental(
    *,
    user_id: str,
    gateway: IntervalsGateway,
    repository: IntervalsRepository,
    oldest_override: Optional[str] = None,
    newest_override: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utc_now()

    athlete_id = repository.get_connected_athlete_id(user_id)
    if not athlete_id:
        raise ConnectionNotFoundError("Intervals athlete is not connected. Connect Intervals first.")

    last_sync = repository.get_last_successful_sync(user_id)
    if not last_sync or not last_sync.get("completed_at"):
        raise NoPreviousSyncError()

    window = build_incremental_sync_window(
        now=now,
        last_successful_sync_at=last_sync["completed_at"],
        oldest_override=oldest_override,
        newest_override=newest_override,
    )

    counts = _run_logged_attempt(
        repository=repository,
        user_id=user_id,
        athlete_id=athlete_id,
        started_at=now,
        operation="incremental sync",
        attempt=lambda: fetch_and_upsert_activities(
            user_id=user_id,
            athlete_id=athlete_id,
            window=window,
            gateway=gateway,
            repository=repository,
        ),
        fetched_count=lambda r: r["event_count"],
    )
    logger.info(
        f"Intervals incremental sync for user {user_id} ({window.oldest}..{window.newest}): "
        f"{counts['event_count']} events, {counts['saved_activity_count']} saved"
    )

    return {
        "athlete_id": athlete_id,
        "oldest": window.oldest,
        "newest": window.newest,
        **counts,
    }


def test_connection(
    *,
    user_id: str,
    gateway: IntervalsGateway,
    repository: IntervalsRepository,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Liveness check: re-fetch and store the profile. Not a sync attempt."""
    now = now or utc_now()
    athlete_id = repository.get_connected_athlete_id(user_id)
    if not athlete_id:
        raise ConnectionNotFoundError("Intervals is not connected.")

    athlete = gateway.fetch_athlete_profile(athlete_id)
    repository.upsert_athlete_profile(user_id=user_id, athlete=athlete, now=now)
    return {"athlete": athlete, "tested_at": now}


def format_athlete_name(name: Optional[str], first_name: Optional[str], last_name: Optional[str]) -> str:
    if name and name.strip():
        return name.strip()
    assembled = " ".join(part for part in (first_name, last_name) if part).strip()
    return assembled or DEFAULT_ATHLETE_NAME


def get_connection_status(*, user_id: str, repository: IntervalsRepository) -> Dict[str, Any]:
    profile = repository.get_latest_connection_profile(user_id)
    if not profile:
        return {"connected": False}

    return {
        "connected": True,
        "connection": {
            "athlete_id": profile["intervals_athlete_id"],
            "athlete_name": format_athlete_name(profile["name"], profile["first_name"], profile["last_name"]),
            "connected_at": profile["created_at"].isoformat(),
        },
    }


def backfill_dashboard_rollups(*, repository: IntervalsRepository) -> Dict[str, Any]:
    """
    Maintenance entry point: full rollup rebuild for every connected user.

    Each user is rebuilt in isolation; one failure doesn't block the others.
    Failed users are reported in `failed_user_ids`.
    """
    user_ids = repository.list_connected_user_ids()
    failed_user_ids: List[str] = []
    for user_id in user_ids:
        try:
            repository.recompute_dashboard_run_rollups_for_user(user_id)
        except Exception as e:
            logger.error(
                f"Rollup backfill failed for user {user_id}: {e}",
                extra={"extra_fields": {"user_id": user_id, "operation": "backfill"}},
            )
            failed_user_ids.append(user_id)
    logger.info(f"Backfilled dashboard rollups for {len(user_ids)} users ({len(failed_user_ids)} failed)")
    return {"user_count": len(user_ids), "failed_user_ids": failed_user_ids}


class IntervalsServices:
    """Binds a gateway and repository to the engine's operations."""

    def __init__(
        self,
        gateway: Optional[IntervalsGateway] = None,
        repository: Optional[IntervalsRepository] = None,
    ):
        self.gateway = gateway if gateway is not None else HttpIntervalsGateway()
        self.repository = repository if repository is not None else SqlAlchemyIntervalsRepository()

    def connect_athlete(self, user_id: str, athlete_id: str, now: Optional[datetime] = None) -> IntervalsAthlete:
        return connect_athlete(
            user_id=user_id, athlete_id=athlete_id, gateway=self.gateway, repository=self.repository, now=now
        )

    def connect_athlete_and_bootstrap_activities(
        self, user_id: str, athlete_id: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        return connect_athlete_and_bootstrap_activities(
            user_id=user_id, athlete_id=athlete_id, gateway=self.gateway, repository=self.repository, now=now
        )

    def sync_activities_incremental(
        self,
        user_id: str,
        oldest_override: Optional[str] = None,
        newest_override: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return sync_activities_incremental(
            user_id=user_id,
            gateway=self.gateway,
            repository=self.repository,
            oldest_override=oldest_override,
            newest_override=newest_override,
            now=now,
        )

    def test_connection(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        return test_connection(user_id=user_id, gateway=self.gateway, repository=self.repository, now=now)

    def get_connection_status(self, user_id: str) -> Dict[str, Any]:
        return get_connection_status(user_id=user_id, repository=self.repository)

    def backfill_dashboard_rollups(self) -> Dict[str, Any]:
        return backfill_dashboard_rollups(repository=self.repository)
