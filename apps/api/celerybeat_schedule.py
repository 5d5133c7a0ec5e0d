"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Incremental Intervals sync for every connected user, top of the hour.
    # Fan-out task enqueues one tasks.intervals_sync_user per user.
    'intervals-sync-all-connected': {
        'task': 'tasks.intervals_sync_all_connected',
        'schedule': crontab(minute=0),
    },
    # Nightly full rollup rebuild; repairs anything an aborted sync left stale.
    'intervals-backfill-dashboard-rollups': {
        'task': 'tasks.intervals_backfill_dashboard_rollups',
        'schedule': crontab(hour=3, minute=30),
    },
}
