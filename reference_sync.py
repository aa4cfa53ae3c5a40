"""
Docketwise Reference Data Sync

Refreshes the lookup entities that matter payloads point at:

    statuses -> matter types (with nested statuses) -> users -> contacts

Each phase writes PostgreSQL first, then the matching Redis map. A failing
phase is logged and recorded in the result; the remaining phases still run.
Intended for a 12-24 hour schedule, not for interactive use.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from api_client import DocketwiseClient, get_client
from cache import ReferenceCache
from config import (
    CONTACT_MAX_PAGES,
    CONTACT_UPSERT_BATCH_SIZE,
    CONTRACTOR_EMAIL_MARKERS,
    USER_MAX_PAGES,
)
from db.reference import ReferenceStore
from models import to_int

logger = logging.getLogger(__name__)

TEAM_TYPE_IN_HOUSE = "inHouse"
TEAM_TYPE_CONTRACTOR = "contractor"


@dataclass
class ReferenceSyncResult:
    """Result of a reference data sync."""
    records_processed: int = 0
    phases: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors


def classify_team_type(email: Optional[str]) -> str:
    """
    Default team type for a member with no configured type.

    Contractor when the address contains a contractor marker, otherwise
    in-house. Members whose type was set by an administrator keep it
    (see ReferenceStore.upsert_team_members).
    """
    address = (email or "").lower()
    if any(marker in address for marker in CONTRACTOR_EMAIL_MARKERS):
        return TEAM_TYPE_CONTRACTOR
    return TEAM_TYPE_IN_HOUSE


def _status_row(status: dict, matter_type_id: int = None) -> Optional[dict]:
    status_id = to_int(status.get("id"))
    if status_id is None or not status.get("name"):
        return None
    return {
        "docketwise_id": status_id,
        "name": status["name"],
        "matter_type_id": matter_type_id,
        "sort_order": status.get("sort"),
    }


def _user_row(user: dict) -> Optional[dict]:
    user_id = to_int(user.get("id"))
    if user_id is None:
        return None
    profile = user.get("attorney_profile") or {}
    first_name = profile.get("first_name") or None
    last_name = profile.get("last_name") or None
    full_name = f"{first_name or ''} {last_name or ''}".strip() or user.get("email")
    return {
        "docketwise_id": user_id,
        "email": user.get("email"),
        "first_name": first_name,
        "last_name": last_name,
        "full_name": full_name,
        "title": None,
        "team_type": classify_team_type(user.get("email")),
        "is_active": user.get("active", True) is not False,
    }


def contact_display_name(contact: dict) -> str:
    return (
        (contact.get("company_name") or "").strip()
        or f"{contact.get('first_name') or ''} {contact.get('last_name') or ''}".strip()
        or "Unknown Client"
    )


def _contact_row(contact: dict) -> Optional[dict]:
    contact_id = to_int(contact.get("id"))
    if contact_id is None:
        return None
    return {
        "docketwise_id": contact_id,
        "first_name": contact.get("first_name"),
        "last_name": contact.get("last_name"),
        "company_name": contact.get("company_name"),
        "display_name": contact_display_name(contact),
        "email": contact.get("email"),
        "phone": contact.get("phone"),
    }


class ReferenceSync:
    """
    Sequential reference data refresh.

    Collaborators are injectable for tests; by default the user's
    Docketwise client, the PostgreSQL store and the Redis cache are used.
    """

    def __init__(
        self,
        client: DocketwiseClient,
        store: ReferenceStore = None,
        cache: ReferenceCache = None,
    ):
        self.client = client
        self.store = store or ReferenceStore()
        self.cache = cache or ReferenceCache(store=self.store)

    def run(self) -> ReferenceSyncResult:
        start = time.time()
        result = ReferenceSyncResult()
        phases = (
            ("statuses", self.sync_statuses),
            ("types", self.sync_types),
            ("users", self.sync_users),
            ("contacts", self.sync_contacts),
        )
        for index, (name, phase) in enumerate(phases):
            if index:
                self.client.pause()
            try:
                count = phase()
                result.phases[name] = count
                result.records_processed += count
                logger.info("Reference sync: %d %s", count, name)
            except Exception as e:
                logger.error("Reference sync phase %s failed: %s", name, e, exc_info=True)
                result.errors[name] = str(e)

        result.duration_seconds = time.time() - start
        logger.info(
            "Reference data sync completed: %d records in %.1fs (%d phase errors)",
            result.records_processed, result.duration_seconds, len(result.errors),
        )
        return result

    def sync_statuses(self) -> int:
        rows = [r for r in (_status_row(s) for s in self.client.get_matter_statuses()) if r]
        self.store.upsert_statuses(rows)
        self.cache.refresh("statuses", {r["docketwise_id"]: r["name"] for r in rows})
        return len(rows)

    def sync_types(self) -> int:
        types = self.client.get_matter_types()
        type_rows = []
        nested: List[dict] = []
        for matter_type in types:
            type_id = to_int(matter_type.get("id"))
            if type_id is None or not matter_type.get("name"):
                continue
            type_rows.append({"docketwise_id": type_id, "name": matter_type["name"]})
            for status in matter_type.get("matter_statuses") or []:
                row = _status_row(status, matter_type_id=type_id)
                if row:
                    nested.append(row)

        self.store.upsert_types(type_rows)
        if nested:
            self.store.upsert_statuses(nested)
            logger.info("Linked %d nested statuses to their matter types", len(nested))
        self.cache.refresh("types", {r["docketwise_id"]: r["name"] for r in type_rows})
        return len(type_rows)

    def sync_users(self) -> int:
        rows = []
        for page in self.client.iter_users(USER_MAX_PAGES):
            rows.extend(r for r in (_user_row(u) for u in page.items) if r)
        self.store.upsert_team_members(rows)
        self.cache.refresh("users", {r["docketwise_id"]: r["full_name"] for r in rows})
        return len(rows)

    def sync_contacts(self) -> int:
        rows = []
        for page in self.client.iter_contacts(CONTACT_MAX_PAGES):
            rows.extend(r for r in (_contact_row(c) for c in page.items) if r)
        for i in range(0, len(rows), CONTACT_UPSERT_BATCH_SIZE):
            self.store.upsert_contacts_batch(rows[i:i + CONTACT_UPSERT_BATCH_SIZE])
        self.cache.refresh("clients", {r["docketwise_id"]: r["display_name"] for r in rows})
        return len(rows)


def sync_reference_data(user_id: str) -> ReferenceSyncResult:
    """Refresh all reference data using the user's Docketwise connection."""
    return ReferenceSync(get_client(user_id)).run()
