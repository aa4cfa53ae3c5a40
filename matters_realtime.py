"""
On-demand matter reads straight from Docketwise.

Used by views that need current data rather than the last sync. Nothing
is written: each listed matter is fetched in detail (sequentially, with
the standard delay), resolved the same way the sync resolves it, and
overlaid with whatever the user owns locally: deadlines, billing, and
every field of a locally edited matter.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from api_client import DocketwiseAPIError, DocketwiseClient, RateLimitExceeded, get_client
from cache import ReferenceCache
from db.matters import MatterStore
from matter_mapping import merge_matter, parse_datetime, resolve_payload
from models import ReferenceMaps, to_int

logger = logging.getLogger(__name__)

# Columns only ever set locally
LOCAL_COLUMNS = (
    "assigned_date",
    "estimated_deadline",
    "actual_deadline",
    "billing_status",
    "total_hours",
    "flat_fee",
    "edited_at",
    "edited_by",
    "is_stale",
)

# Columns an edited local row overrides
EDITABLE_COLUMNS = (
    "title",
    "description",
    "matter_type",
    "status",
    "status_id",
    "status_for_filing",
    "status_for_filing_id",
    "client_name",
    "client_id",
    "team_id",
    "assignees",
)


@dataclass
class MatterPage:
    data: List[dict] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 100


def map_matter(payload: dict, maps: ReferenceMaps, local: dict = None, now: datetime = None) -> dict:
    """Resolve a live payload and overlay the local row, if any."""
    row = merge_matter(None, resolve_payload(payload, maps, now=now))
    row["id"] = str(local["id"]) if local else f"dw-{row['docketwise_id']}"
    row["is_edited"] = bool(local and local.get("is_edited"))
    if local:
        for column in LOCAL_COLUMNS:
            row[column] = local.get(column)
        if row["is_edited"]:
            for column in EDITABLE_COLUMNS:
                if local.get(column) is not None:
                    row[column] = local[column]
        row["last_synced_at"] = local.get("last_synced_at")
    return row


def _sort_key(row: dict) -> datetime:
    return row.get("docketwise_updated_at") or datetime.min


class RealtimeMatterFetcher:
    """
    Usage:
        fetcher = RealtimeMatterFetcher(get_client(user_id))
        page = fetcher.fetch_page(user_id, page=1, per_page=50)
    """

    def __init__(self, client: DocketwiseClient, store: MatterStore = None, cache: ReferenceCache = None):
        self.client = client
        self.store = store or MatterStore()
        self.cache = cache or ReferenceCache()

    def _with_detail(self, item: dict) -> dict:
        dw_id = to_int(item.get("id"))
        if dw_id is None:
            return item
        self.client.pause()
        try:
            return {**item, **(self.client.get_matter(dw_id) or {})}
        except RateLimitExceeded:
            raise
        except DocketwiseAPIError as e:
            logger.warning("Detail fetch failed for matter %s, using list data: %s", dw_id, e)
            return item

    def fetch_page(self, user_id: str, page: int = 1, per_page: int = 100) -> MatterPage:
        maps = self.cache.load()
        listing = self.client.get_matters_page(page=page, per_page=per_page)
        payloads = [self._with_detail(item) for item in listing.items]

        ids = [i for i in (to_int(p.get("id")) for p in payloads) if i is not None]
        local = self.store.get_by_docketwise_ids(user_id, ids)
        now = datetime.utcnow()
        rows = [
            map_matter(p, maps, local.get(to_int(p.get("id"))), now)
            for p in payloads
            if to_int(p.get("id")) is not None
        ]
        rows.sort(key=_sort_key, reverse=True)
        return MatterPage(data=rows, total=listing.total, page=page, per_page=per_page)

    def fetch_detail(self, docketwise_id: int, user_id: str) -> Optional[dict]:
        """One matter, live. None when Docketwise does not know it."""
        try:
            payload = self.client.get_matter(docketwise_id)
        except DocketwiseAPIError as e:
            if e.status_code == 404:
                return None
            raise
        if not payload:
            return None
        local = self.store.get(user_id, docketwise_id)
        row = map_matter(payload, self.cache.load(), local)
        if payload.get("priority_date"):
            row["priority_date"] = parse_datetime(payload["priority_date"])
        return row


def fetch_matters_realtime(user_id: str, page: int = 1, per_page: int = 100) -> MatterPage:
    return RealtimeMatterFetcher(get_client(user_id)).fetch_page(user_id, page=page, per_page=per_page)


def fetch_matter_detail(docketwise_id: int, user_id: str) -> Optional[dict]:
    return RealtimeMatterFetcher(get_client(user_id)).fetch_detail(docketwise_id, user_id)
