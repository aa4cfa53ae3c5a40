"""
Docketwise Matter Sync

Bulk sync of the matter list into PostgreSQL, plus the unified
reference -> matters -> details run.

The bulk sync walks /matters page by page (at most 20 pages of 200). For
each page it fetches detail only for matters that need it:

- matters not yet stored locally
- matters updated remotely since the last sync
- matters missing assignees, status, matter type or client name

Locally edited matters only get last_synced_at refreshed. Everything else
is resolved against the reference maps and upserted in batches of 50.
A changed status-for-filing on a known matter raises an RFE, approval or
denial notification through the dispatcher, never inline.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from api_client import DocketwiseAPIError, DocketwiseClient, RateLimitExceeded, get_client
from cache import ReferenceCache, invalidate_user_caches
from config import MATTER_MAX_PAGES, MATTER_UPSERT_BATCH_SIZE
from db.matters import MatterStore
from db.sync_progress import SyncProgressStore
from matter_mapping import merge_matter, needs_detail, resolve_payload
from models import ReferenceMaps, SyncState, to_int
from notifications import status_notification

logger = logging.getLogger(__name__)

UNIFIED_SYNC_TYPE = "unified_sync"


@dataclass
class MatterSyncResult:
    """Result of a bulk matter sync."""
    pages: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped_edited: int = 0
    details_fetched: int = 0
    detail_errors: int = 0
    status_changes: int = 0
    notifications: int = 0
    duration_seconds: float = 0.0

    @property
    def changes(self) -> int:
        return self.created + self.updated


class MatterSync:
    """
    Bulk matter sync for one user.

    Usage:
        result = MatterSync(get_client(user_id)).sync_matters(user_id)
    """

    def __init__(
        self,
        client: DocketwiseClient,
        store: MatterStore = None,
        cache: ReferenceCache = None,
        notifier=None,
        invalidate: Callable[[str], int] = invalidate_user_caches,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        if notifier is None:
            from notifications import get_notification_service
            notifier = get_notification_service()
        self.client = client
        self.store = store or MatterStore()
        self.cache = cache or ReferenceCache()
        self.notifier = notifier
        self.invalidate = invalidate
        self._clock = clock

    def sync_matters(self, user_id: str) -> MatterSyncResult:
        """
        Sync every matter page for a user.

        Raises:
            DocketwiseAPIError: the matter list could not be fetched
        """
        start = time.time()
        result = MatterSyncResult()
        maps = self.cache.load()
        logger.info("Starting matter sync for user %s (%s)", user_id, maps.summary())

        for page in self.client.iter_pages("/matters", MATTER_MAX_PAGES):
            result.pages += 1
            self._sync_page(user_id, page.items, maps, result)
            logger.info(
                "Matter sync page %d: %d processed so far (%d new, %d updated)",
                page.number, result.processed, result.created, result.updated,
            )

        self.invalidate(user_id)
        result.duration_seconds = time.time() - start
        logger.info(
            "Matter sync for user %s completed: %d matters, %d new, %d updated, "
            "%d edited skipped, %d details in %.1fs",
            user_id, result.processed, result.created, result.updated,
            result.skipped_edited, result.details_fetched, result.duration_seconds,
        )
        return result

    def _fetch_details(self, items: List[dict], existing: Dict[int, dict], result: MatterSyncResult) -> Dict[int, dict]:
        """Detail payloads for the matters that need them, fetched one at a time."""
        details = {}
        for item in items:
            dw_id = to_int(item.get("id"))
            if dw_id is None:
                continue
            current = existing.get(dw_id)
            if current and current.get("is_edited"):
                continue
            if not needs_detail(current, item):
                continue
            self.client.pause()
            try:
                details[dw_id] = self.client.get_matter(dw_id) or {}
                result.details_fetched += 1
            except RateLimitExceeded:
                raise
            except DocketwiseAPIError as e:
                result.detail_errors += 1
                logger.warning("Detail fetch failed for matter %s, using list data: %s", dw_id, e)
        return details

    def _sync_page(self, user_id: str, items: List[dict], maps: ReferenceMaps, result: MatterSyncResult):
        ids = [i for i in (to_int(item.get("id")) for item in items) if i is not None]
        existing = self.store.get_by_docketwise_ids(user_id, ids)
        details = self._fetch_details(items, existing, result)
        now = self._clock()

        edited_ids = []
        rows = []
        filing_changes = []
        status_changes = []
        for item in items:
            dw_id = to_int(item.get("id"))
            if dw_id is None:
                logger.warning("Skipping matter without an id: %r", item.get("title"))
                continue
            result.processed += 1
            current = existing.get(dw_id)
            if current and current.get("is_edited"):
                edited_ids.append(dw_id)
                result.skipped_edited += 1
                continue

            payload = {**item, **details.get(dw_id, {})}
            updates = resolve_payload(payload, maps, existing=current, now=now)
            row = merge_matter(current, updates)
            rows.append(row)

            if current is None:
                result.created += 1
                continue
            result.updated += 1
            if "status_for_filing" in updates and updates["status_for_filing"] != current.get("status_for_filing"):
                filing_changes.append((row, current.get("status_for_filing"), updates["status_for_filing"]))
            if "status" in updates and updates["status"] != current.get("status"):
                status_changes.append((current["id"], current.get("status"), updates["status"]))

        self.store.touch_synced(user_id, edited_ids, now)
        for i in range(0, len(rows), MATTER_UPSERT_BATCH_SIZE):
            self.store.upsert_batch(user_id, rows[i:i + MATTER_UPSERT_BATCH_SIZE])

        for matter_id, old_status, new_status in status_changes:
            try:
                self.store.record_status_change(matter_id, user_id, old_status, new_status)
                result.status_changes += 1
            except Exception as e:
                logger.error("Failed to record status history for matter %s: %s", matter_id, e)

        if filing_changes and self.notifier.has_configured_recipients():
            for row, old_status, new_status in filing_changes:
                data = status_notification(row, old_status, new_status)
                if data is not None:
                    self.notifier.notify_async(data)
                    result.notifications += 1


def sync_matters(user_id: str) -> MatterSyncResult:
    """Bulk matter sync using the user's Docketwise connection."""
    return MatterSync(get_client(user_id)).sync_matters(user_id)


@dataclass
class UnifiedSyncResult:
    success: bool = False
    reference: Optional[object] = None
    matters: Optional[MatterSyncResult] = None
    details: Optional[object] = None
    errors: List[str] = field(default_factory=list)


def run_unified_sync(
    user_id: str,
    client: DocketwiseClient = None,
    progress_store: SyncProgressStore = None,
) -> UnifiedSyncResult:
    """
    Reference data, then the matter list, then the detail backfill.

    A reference data failure stops the run; a matter list failure is
    recorded and the backfill still runs.
    """
    from matter_details import MatterDetailBackfill
    from reference_sync import ReferenceSync

    client = client or get_client(user_id)
    progress = progress_store or SyncProgressStore()
    result = UnifiedSyncResult()
    progress.save(user_id, UNIFIED_SYNC_TYPE, status=SyncState.SYNCING.value,
                  failure_reason=None, updated_at=datetime.utcnow())

    result.reference = ReferenceSync(client).run()
    if not result.reference.success:
        reason = "Reference sync failed: " + "; ".join(
            f"{phase}: {error}" for phase, error in result.reference.errors.items()
        )
        logger.error("Unified sync for user %s aborted. %s", user_id, reason)
        result.errors.append(reason)
        progress.save(user_id, UNIFIED_SYNC_TYPE, status=SyncState.FAILED.value,
                      failure_reason=reason, updated_at=datetime.utcnow())
        return result

    try:
        result.matters = MatterSync(client).sync_matters(user_id)
    except DocketwiseAPIError as e:
        logger.error("Matter list sync failed for user %s, continuing with details: %s", user_id, e)
        result.errors.append(f"Matter sync failed: {e}")

    result.details = MatterDetailBackfill(client, progress_store=progress).run(user_id)
    if result.details.status == SyncState.FAILED:
        result.errors.append(result.details.failure_reason or "Detail backfill failed")

    result.success = not result.errors
    progress.save(
        user_id, UNIFIED_SYNC_TYPE,
        status=(SyncState.COMPLETED if result.success else SyncState.FAILED).value,
        failure_reason="; ".join(result.errors) or None,
        last_sync_date=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    logger.info("Unified sync for user %s finished (success=%s)", user_id, result.success)
    return result
