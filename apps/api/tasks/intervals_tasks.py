"""
Celery tasks for Intervals.icu synchronization.

These tasks run in the background worker. Results are plain dicts so they
serialize cleanly through the JSON result backend.
"""
import logging
import traceback
from typing import Dict, Optional

from celery import Task

from core.exceptions import (
    ConnectionNotFoundError,
    InvalidDateRangeError,
    NoPreviousSyncError,
    map_error_to_status_code,
    to_error_message,
)
from services.intervals_sync import IntervalsServices
from services.sync_lock import acquire_sync_lock, release_sync_lock
from tasks import celery_app

logger = logging.getLogger(__name__)

# User-correctable: retrying will not help until the user acts.
PRECONDITION_ERRORS = (ConnectionNotFoundError, NoPreviousSyncError, InvalidDateRangeError)


def build_services() -> IntervalsServices:
    return IntervalsServices()


@celery_app.task(name="tasks.intervals_sync_user", bind=True)
def intervals_sync_user_task(
    self: Task,
    user_id: str,
    oldest: Optional[str] = None,
    newest: Optional[str] = None,
) -> Dict:
    """
    Incremental Intervals sync for one user.

    Args:
        user_id: owning user id
        oldest: optional `yyyy-MM-dd` or ISO timestamp lower bound override
        newest: optional upper bound override

    Returns:
        Dictionary with sync results
    """
    if not acquire_sync_lock(user_id):
        logger.info(f"Intervals sync skipped (lock held): {user_id}")
        return {"status": "skipped", "user_id": user_id, "reason": "lock_held"}

    try:
        services = build_services()
        result = services.sync_activities_incremental(user_id, oldest_override=oldest, newest_override=newest)
        return {
            "status": "success",
            "user_id": user_id,
            "athlete_id": result["athlete_id"],
            "oldest": result["oldest"],
            "newest": result["newest"],
            "event_count": result["event_count"],
            "saved_activity_count": result["saved_activity_count"],
        }
    except PRECONDITION_ERRORS as e:
        logger.info(f"Skipping Intervals sync for user {user_id}: {e}")
        return {
            "status": "skipped",
            "user_id": user_id,
            "error_code": e.error_code,
            "error": to_error_message(e),
        }
    except Exception as e:
        logger.error(f"Intervals sync task failed for user {user_id}: {e}")
        traceback.print_exc()
        return {
            "status": "error",
            "user_id": user_id,
            "status_code": map_error_to_status_code(e),
            "error": to_error_message(e),
        }
    finally:
        release_sync_lock(user_id)


@celery_app.task(name="tasks.intervals_sync_all_connected", bind=True)
def intervals_sync_all_connected_task(self: Task) -> Dict:
    """Fan out one incremental sync task per connected user."""
    services = build_services()
    user_ids = services.repository.list_connected_user_ids()
    for user_id in user_ids:
        intervals_sync_user_task.delay(user_id)
    logger.info(f"Enqueued Intervals sync for {len(user_ids)} users")
    return {"status": "success", "queued": len(user_ids)}


@celery_app.task(name="tasks.intervals_backfill_dashboard_rollups", bind=True)
def intervals_backfill_dashboard_rollups_task(self: Task) -> Dict:
    """Maintenance: full rollup, personal record and goal progress rebuild for every connected user."""
    services = build_services()
    try:
        result = services.backfill_dashboard_rollups()
        if result["failed_user_ids"]:
            logger.warning(f"Rollup backfill failed for users: {result['failed_user_ids']}")
        return {
            "status": "success" if not result["failed_user_ids"] else "partial",
            "user_count": result["user_count"],
            "failed_user_ids": result["failed_user_ids"],
        }
    except Exception as e:
        logger.error(f"Intervals rollup backfill failed: {e}")
        traceback.print_exc()
        return {"status": "error", "error": to_error_message(e)}
