"""
Per-user sync lock

Single-flight guard for Intervals syncs: at most one sync per user runs at a
time across all workers. The lock is a Redis key set with NX and a TTL, so a
crashed worker never holds it longer than INTERVALS_SYNC_LOCK_TTL_S.

Fails open when Redis is unavailable.
"""
import logging

from redis.exceptions import RedisError

from core.cache import get_redis_client
from core.config import settings

logger = logging.getLogger(__name__)


def sync_lock_key(user_id: str) -> str:
    return f"intervals_sync:lock:{user_id}"


def acquire_sync_lock(user_id: str) -> bool:
    """
    Acquire the in-flight lock for this user's sync.
    Returns True if acquired, False if another sync is already running.
    """
    r = get_redis_client()
    if not r:
        return True  # fail open

    try:
        acquired = r.set(sync_lock_key(user_id), "1", nx=True, ex=settings.INTERVALS_SYNC_LOCK_TTL_S)
    except RedisError as e:
        logger.warning(f"Sync lock unavailable for user {user_id}: {e}")
        return True  # fail open
    return bool(acquired)


def release_sync_lock(user_id: str) -> None:
    r = get_redis_client()
    if not r:
        return
    try:
        r.delete(sync_lock_key(user_id))
    except RedisError as e:
        logger.warning(f"Failed to release sync lock for user {user_id}: {e}")
