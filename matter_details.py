"""
Matter Detail Backfill

Fetches the detail view of every stored matter, newest Docketwise id
first, and writes the fields the list endpoint leaves out (assignees,
workflow stage, full description). The job is resumable and runs at most
once a day per user, tracked in sync_progress (sync_type 'matter_details'):

    IDLE/FAILED/stale --(fresh start)--> SYNCING
    SYNCING from today --(resume below cursor)--> SYNCING
    SYNCING --(all matters done)--> COMPLETED (today)
    SYNCING --(rate limited after the 2 minute retry)--> FAILED
    COMPLETED today --(run)--> no-op

Progress is checkpointed every 100 matters so an interrupted run picks
up below the last processed id.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from api_client import DocketwiseClient, get_client
from cache import ReferenceCache
from config import DETAILS_BATCH_SIZE
from db.matters import MatterStore
from db.sync_progress import SyncProgressStore
from matter_mapping import resolve_payload
from models import SyncState
from notifications import status_notification

logger = logging.getLogger(__name__)

SYNC_TYPE = "matter_details"
RATE_LIMIT_FAILURE = "Rate limit exceeded after 2min retry"


@dataclass
class BackfillProgress:
    processed: int
    failed: int
    total: int
    last_matter_id: Optional[int]


@dataclass
class BackfillResult:
    status: SyncState
    total_processed: int = 0
    total_failed: int = 0
    total_records: int = 0
    last_synced_id: Optional[int] = None
    message: str = ""
    failure_reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == SyncState.COMPLETED


def _same_day(value, today: date) -> bool:
    if value is None:
        return False
    return (value.date() if isinstance(value, datetime) else value) == today


class MatterDetailBackfill:
    """
    Daily, resumable detail backfill.

    Usage:
        result = MatterDetailBackfill(get_client(user_id)).run(user_id)
        if result.status == SyncState.FAILED:
            print(result.failure_reason)
    """

    def __init__(
        self,
        client: DocketwiseClient,
        store: MatterStore = None,
        progress_store: SyncProgressStore = None,
        cache: ReferenceCache = None,
        notifier=None,
        today: Callable[[], date] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        if notifier is None:
            from notifications import get_notification_service
            notifier = get_notification_service()
        self.client = client
        self.store = store or MatterStore()
        self.progress_store = progress_store or SyncProgressStore()
        self.cache = cache or ReferenceCache()
        self.notifier = notifier
        # The day comes from the clock that stamps progress rows
        self._today = today or (lambda: self._clock().date())
        self._clock = clock

    def _save(self, user_id: str, **fields) -> dict:
        fields.setdefault("updated_at", self._clock())
        return self.progress_store.save(user_id, SYNC_TYPE, **fields)

    def _starting_point(self, user_id: str, progress: Optional[dict], today: date) -> dict:
        """Resume today's checkpoint, or reset counters and cursor for a new run."""
        if (
            progress
            and progress.get("last_synced_id") is not None
            and _same_day(progress.get("updated_at"), today)
        ):
            logger.info("Resuming today's detail sync below matter %s", progress["last_synced_id"])
            return self._save(user_id, status=SyncState.SYNCING.value, failure_reason=None)

        logger.info("Starting detail sync for user %s from the newest matter", user_id)
        return self._save(
            user_id,
            status=SyncState.SYNCING.value,
            last_synced_id=None,
            total_processed=0,
            total_failed=0,
            failure_reason=None,
        )

    def run(
        self,
        user_id: str,
        on_progress: Callable[[BackfillProgress], None] = None,
    ) -> BackfillResult:
        today = self._today()
        progress = self.progress_store.get(user_id, SYNC_TYPE)

        if (
            progress
            and progress.get("status") == SyncState.COMPLETED.value
            and _same_day(progress.get("last_sync_date"), today)
        ):
            logger.info("Matter details already synced today for user %s", user_id)
            return BackfillResult(
                status=SyncState.COMPLETED,
                total_processed=progress.get("total_processed") or 0,
                total_failed=progress.get("total_failed") or 0,
                total_records=progress.get("total_records") or 0,
                message="Already synced today",
            )

        progress = self._starting_point(user_id, progress, today)
        cursor = progress.get("last_synced_id")
        processed = progress.get("total_processed") or 0
        failed = progress.get("total_failed") or 0

        # Negative ids are local-only matters with nothing to fetch
        matters = [
            m for m in self.store.list_for_backfill(user_id, before_id=cursor)
            if m["docketwise_id"] > 0
        ]
        total = processed + failed + len(matters)
        self._save(user_id, total_records=total)
        logger.info("Found %d matters needing details for user %s", len(matters), user_id)

        maps = self.cache.load()
        notify = None
        last_id = cursor

        for start in range(0, len(matters), DETAILS_BATCH_SIZE):
            batch = matters[start:start + DETAILS_BATCH_SIZE]
            for matter in batch:
                dw_id = matter["docketwise_id"]
                if matter.get("is_edited"):
                    logger.debug("Skipping edited matter %s", dw_id)
                    processed += 1
                    last_id = dw_id
                    continue

                detail, rate_limited = self.client.get_matter_smart(dw_id)
                if rate_limited:
                    logger.error("Detail sync for user %s failed: rate limited at matter %s", user_id, dw_id)
                    self._save(
                        user_id,
                        status=SyncState.FAILED.value,
                        failure_reason=RATE_LIMIT_FAILURE,
                        last_synced_id=last_id,
                        total_processed=processed,
                        total_failed=failed,
                    )
                    return BackfillResult(
                        status=SyncState.FAILED,
                        total_processed=processed,
                        total_failed=failed,
                        total_records=total,
                        last_synced_id=last_id,
                        message="Sync failed: Rate limit exceeded",
                        failure_reason=RATE_LIMIT_FAILURE,
                    )
                if detail is None:
                    failed += 1
                    last_id = dw_id
                    continue

                if notify is None:
                    notify = self.notifier.has_configured_recipients()
                self._apply_detail(user_id, matter, detail, maps, notify)
                processed += 1
                last_id = dw_id
                if on_progress:
                    on_progress(BackfillProgress(processed, failed, total, last_id))

            self._save(
                user_id,
                last_synced_id=last_id,
                total_processed=processed,
                total_failed=failed,
            )
            logger.info("Detail sync batch complete: %d/%d processed, %d failed", processed, total, failed)

        self._save(
            user_id,
            status=SyncState.COMPLETED.value,
            last_sync_date=self._clock(),
            last_synced_id=None,
            total_processed=processed,
            total_failed=failed,
        )
        logger.info("Detail sync for user %s complete: %d processed, %d failed", user_id, processed, failed)
        return BackfillResult(
            status=SyncState.COMPLETED,
            total_processed=processed,
            total_failed=failed,
            total_records=total,
            message=f"Successfully synced {processed} matter details",
        )

    def _apply_detail(self, user_id: str, matter: dict, detail: dict, maps, notify: bool):
        updates = resolve_payload(detail, maps, existing=matter, now=self._clock())
        self.store.update_synced_fields(user_id, matter["docketwise_id"], updates)

        old_status = matter.get("status")
        new_status = updates.get("status")
        if not ("status" in updates and old_status and new_status and old_status != new_status):
            return

        try:
            self.store.record_status_change(matter["id"], user_id, old_status, new_status)
        except Exception as e:
            logger.error("Failed to record status history for matter %s: %s", matter["id"], e)

        if notify:
            data = status_notification({**matter, **updates}, old_status, new_status)
            if data is not None:
                self.notifier.notify_async(data)
                logger.info("Queued %s notification for matter %s", data.type.value, matter["docketwise_id"])


def sync_matter_details(
    user_id: str,
    on_progress: Callable[[BackfillProgress], None] = None,
) -> BackfillResult:
    """Run the detail backfill with the user's Docketwise connection."""
    return MatterDetailBackfill(get_client(user_id)).run(user_id, on_progress=on_progress)
