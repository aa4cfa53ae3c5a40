"""
Celery Application Configuration for the Docketwise sync

Configures Celery with Redis broker for:
- Reference data refresh (statuses, matter types, users, contacts)
- Bulk matter sync and dashboard stats
- Daily matter detail backfill
- Daily deadline reminders

Usage:
    # Start worker:
    celery -A celery_app worker --loglevel=info --concurrency=3

    # Start beat scheduler:
    celery -A celery_app beat --loglevel=info

    # Start both (development only):
    celery -A celery_app worker --beat --loglevel=info --concurrency=3
"""
import os
import logging
from celery import Celery
from celery.schedules import crontab

from config import REDIS_URL

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Broker configuration
# ---------------------------------------------------------------------------
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", REDIS_URL)

# ---------------------------------------------------------------------------
# Create Celery app
# ---------------------------------------------------------------------------
app = Celery(
    "docketwise_sync",
    broker=REDIS_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["tasks"],
)

# ---------------------------------------------------------------------------
# Celery configuration
# ---------------------------------------------------------------------------
app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,

    # Result expiration
    result_expires=86400,

    # Concurrency
    worker_concurrency=int(os.environ.get("CELERY_CONCURRENCY", "3")),

    # Task time limits (the detail backfill can wait out a 2 minute rate limit)
    task_soft_time_limit=3600,
    task_time_limit=3900,

    # Queue routing
    task_routes={
        "tasks.sync_user_reference_data": {"queue": "sync"},
        "tasks.sync_user_matters": {"queue": "sync"},
        "tasks.sync_user_matter_details": {"queue": "details"},
        "tasks.unified_sync": {"queue": "details"},
        "tasks.refresh_dashboard_stats": {"queue": "default"},
        "tasks.check_deadlines": {"queue": "notifications"},
    },

    # Beat schedule
    beat_schedule={
        "sync-reference-data": {
            "task": "tasks.dispatch_reference_sync",
            "schedule": 43200.0,
            "options": {"queue": "default"},
        },
        "sync-matters": {
            "task": "tasks.dispatch_matter_sync",
            "schedule": 1800.0,
            "options": {"queue": "default"},
        },
        "sync-matter-details": {
            "task": "tasks.dispatch_detail_sync",
            "schedule": 3600.0,
            "options": {"queue": "default"},
        },
        "check-deadlines": {
            "task": "tasks.check_deadlines",
            "schedule": crontab(hour=13, minute=0),
            "options": {"queue": "notifications"},
        },
    },
)

app.conf.worker_hijack_root_logger = False

if __name__ == "__main__":
    app.start()
