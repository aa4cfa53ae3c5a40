"""
Celery Tasks for the Docketwise sync

Task categories:
1. Dispatch       - dispatch_reference_sync, dispatch_matter_sync, dispatch_detail_sync
2. Per-user sync  - sync_user_reference_data, sync_user_matters,
                    sync_user_matter_details, unified_sync
3. Notifications  - check_deadlines
4. Dashboard      - refresh_dashboard_stats

Dispatch tasks run on the beat schedule and queue one task per user with a
linked Docketwise account, staggered so users do not share a rate-limit
window.
"""
import logging
from dataclasses import asdict

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded

from auth import DocketwiseAuthError

logger = logging.getLogger(__name__)

DISPATCH_STAGGER_SECONDS = 30


def _dispatch(task, label: str) -> dict:
    from auth import get_linked_user_ids

    user_ids = get_linked_user_ids()
    for index, user_id in enumerate(user_ids):
        task.apply_async(args=[user_id], countdown=index * DISPATCH_STAGGER_SECONDS)
    logger.info(f"Queued {label} for {len(user_ids)} users")
    return {"dispatched": len(user_ids)}


# =============================================================================
# 1. DISPATCH
# =============================================================================

@shared_task(name="tasks.dispatch_reference_sync")
def dispatch_reference_sync():
    """Every 12 hours: refresh reference data for every linked user."""
    return _dispatch(sync_user_reference_data, "reference sync")


@shared_task(name="tasks.dispatch_matter_sync")
def dispatch_matter_sync():
    """Every 30 minutes: bulk matter sync for every linked user."""
    return _dispatch(sync_user_matters, "matter sync")


@shared_task(name="tasks.dispatch_detail_sync")
def dispatch_detail_sync():
    """
    Hourly: detail backfill for every linked user.

    The backfill is a no-op once it has completed for the day, so the
    hourly run only does work for users whose run is pending or was
    stopped by rate limiting.
    """
    return _dispatch(sync_user_matter_details, "detail sync")


# =============================================================================
# 2. PER-USER SYNC
# =============================================================================

@shared_task(name="tasks.sync_user_reference_data", bind=True, max_retries=2, default_retry_delay=600)
def sync_user_reference_data(self, user_id: str):
    from reference_sync import sync_reference_data

    try:
        result = sync_reference_data(user_id)
        return {
            "status": "completed" if result.success else "partial",
            "user_id": user_id,
            "records": result.records_processed,
            "errors": result.errors,
            "duration_seconds": round(result.duration_seconds, 1),
        }
    except DocketwiseAuthError as e:
        logger.warning(f"Skipping reference sync for user {user_id}: {e}")
        return {"status": "skipped", "user_id": user_id, "message": str(e)}
    except Exception as e:
        logger.error(f"Reference sync failed for user {user_id}: {e}", exc_info=True)
        raise self.retry(exc=e)


@shared_task(
    name="tasks.sync_user_matters",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    acks_late=True,
    reject_on_worker_lost=True,
)
def sync_user_matters(self, user_id: str):
    """
    Bulk matter sync for one user, then a dashboard stats refresh.

    1. Walks the matter list and upserts changed matters
    2. Invalidates the user's dashboard caches
    3. Recomputes the precomputed dashboard row
    """
    from sync import sync_matters

    try:
        result = sync_matters(user_id)
    except DocketwiseAuthError as e:
        logger.warning(f"Skipping matter sync for user {user_id}: {e}")
        return {"status": "skipped", "user_id": user_id, "message": str(e)}
    except SoftTimeLimitExceeded:
        logger.error(f"Matter sync timed out for user {user_id}")
        return {"status": "timeout", "user_id": user_id}
    except Exception as e:
        logger.error(f"Matter sync failed for user {user_id}: {e}", exc_info=True)
        retry_delay = 300 * (2 ** self.request.retries)
        raise self.retry(exc=e, countdown=retry_delay)

    refresh_dashboard_stats.delay(user_id)

    logger.info(
        f"Matter sync complete for user {user_id}: {result.processed} matters, "
        f"{result.changes} changed in {result.duration_seconds:.1f}s"
    )
    return {
        "status": "completed",
        "user_id": user_id,
        "processed": result.processed,
        "created": result.created,
        "updated": result.updated,
        "skipped_edited": result.skipped_edited,
        "notifications": result.notifications,
        "duration_seconds": round(result.duration_seconds, 1),
    }


@shared_task(name="tasks.sync_user_matter_details", bind=True)
def sync_user_matter_details(self, user_id: str):
    """
    Detail backfill for one user.

    Not retried by Celery: a rate-limited run checkpoints itself and the
    next hourly dispatch resumes it.
    """
    from matter_details import sync_matter_details

    try:
        result = sync_matter_details(user_id)
    except DocketwiseAuthError as e:
        logger.warning(f"Skipping detail sync for user {user_id}: {e}")
        return {"status": "skipped", "user_id": user_id, "message": str(e)}
    except Exception as e:
        logger.error(f"Detail sync failed for user {user_id}: {e}", exc_info=True)
        raise

    data = asdict(result)
    data["status"] = result.status.value
    data["user_id"] = user_id
    return data


@shared_task(name="tasks.unified_sync", bind=True)
def unified_sync(self, user_id: str):
    """Manual full run: reference data, matters, then details."""
    from sync import run_unified_sync

    try:
        result = run_unified_sync(user_id)
    except Exception as e:
        logger.error(f"Unified sync failed for user {user_id}: {e}", exc_info=True)
        raise

    if result.matters is not None:
        refresh_dashboard_stats.delay(user_id)
    return {"status": "completed" if result.success else "failed", "user_id": user_id, "errors": result.errors}


# =============================================================================
# 3. NOTIFICATIONS
# =============================================================================

@shared_task(name="tasks.check_deadlines")
def check_deadlines():
    """Daily: reminders for deadlines 7, 3, 1 and 0 days out."""
    from deadlines import check_and_send_deadline_notifications

    try:
        result = check_and_send_deadline_notifications()
        return asdict(result)
    except Exception as e:
        logger.error(f"check_deadlines failed: {e}", exc_info=True)
        raise


# =============================================================================
# 4. DASHBOARD
# =============================================================================

@shared_task(name="tasks.refresh_dashboard_stats")
def refresh_dashboard_stats(user_id: str):
    from dashboard_stats import sync_dashboard_stats

    try:
        stats = sync_dashboard_stats(user_id)
        return {"user_id": user_id, "total_matters": stats["total_matters"]}
    except Exception as e:
        logger.error(f"Dashboard stats refresh failed for user {user_id}: {e}", exc_info=True)
        raise
