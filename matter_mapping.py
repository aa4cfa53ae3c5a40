"""
Matter payload resolution.

Turns a Docketwise matter payload (list row, detail, or the two merged) into
the column updates for a local matter row. Every resolver returns a dict of
columns to write; a column missing from the result means "keep the stored
value", which is how partial payloads avoid wiping data.

Workflow status and status-for-filing are separate axes:
- status / status_id come from workflow_stage, workflow_stage_id or
  matter_status_id only
- status_for_filing / status_for_filing_id come from the `status` field only
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from models import ABSENT, Present, ReferenceMaps, field_state, to_int

logger = logging.getLogger(__name__)

# Columns whose absence locally triggers a detail fetch
SELF_HEALING_FIELDS = ("assignees", "status", "matter_type", "client_name")

# Payload key -> column, copied through when present
_SCALAR_FIELDS = {
    "title": "title",
    "description": "description",
    "archived": "archived",
}

_DATE_FIELDS = {
    "created_at": "docketwise_created_at",
    "updated_at": "docketwise_updated_at",
    "opened_at": "opened_at",
    "closed_at": "closed_at",
}


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an API timestamp into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            logger.warning("Unparseable timestamp from Docketwise: %r", value)
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _dedupe(ids: List[Optional[int]]) -> List[int]:
    seen = []
    for i in ids:
        if i is not None and i not in seen:
            seen.append(i)
    return seen


def resolve_assignees(payload: dict, users: Dict[int, str], existing: dict = None) -> dict:
    """
    Union of user_ids and attorney_id, deduplicated and mapped to names.

    When user_ids is absent from the payload and the stored row already has
    assignees, the stored assignees are kept.
    """
    user_ids = field_state(payload, "user_ids")
    attorney = field_state(payload, "attorney_id")
    if user_ids is ABSENT and attorney is ABSENT:
        return {}

    result = {}
    attorney_id = to_int(attorney.value) if isinstance(attorney, Present) else None
    if attorney is not ABSENT:
        result["team_id"] = attorney_id

    if user_ids is ABSENT and existing and existing.get("assignees"):
        return result

    ids = []
    if isinstance(user_ids, Present) and isinstance(user_ids.value, (list, tuple)):
        ids.extend(to_int(i) for i in user_ids.value)
    ids.append(attorney_id)
    ids = _dedupe(ids)

    names = []
    for user_id in ids:
        name = users.get(user_id)
        if name:
            names.append(name)
        else:
            logger.debug("Unknown Docketwise user id %s", user_id)

    result["assignees"] = ", ".join(names) if names else None
    result["docketwise_user_ids"] = json.dumps(ids)
    return result


def _contact_display_name(contact: dict) -> Optional[str]:
    name = contact.get("company_name") or (
        f"{contact.get('first_name') or ''} {contact.get('last_name') or ''}".strip()
    )
    return name or None


def resolve_client(payload: dict, clients: Dict[int, str]) -> dict:
    """Embedded client object first, then a client_id lookup."""
    client = field_state(payload, "client")
    client_id_state = field_state(payload, "client_id")
    if client is ABSENT and client_id_state is ABSENT:
        return {}

    client_id = to_int(client_id_state.value) if isinstance(client_id_state, Present) else None
    name = None
    if isinstance(client, Present) and isinstance(client.value, dict):
        name = _contact_display_name(client.value)
        client_id = client_id or to_int(client.value.get("id"))
    if not name and client_id is not None:
        name = clients.get(client_id)
        if name is None:
            logger.debug("Unknown Docketwise client id %s", client_id)

    return {"client_name": name, "client_id": client_id}


def resolve_matter_type(payload: dict, types: Dict[int, str]) -> dict:
    """Embedded matter_type object, then the `type` string, then an id lookup."""
    obj = field_state(payload, "matter_type")
    type_name = field_state(payload, "type")
    type_id = field_state(payload, "matter_type_id")
    if obj is ABSENT and type_name is ABSENT and type_id is ABSENT:
        return {}

    mt_id = to_int(type_id.value) if isinstance(type_id, Present) else None
    if isinstance(obj, Present) and isinstance(obj.value, dict) and obj.value.get("name"):
        return {"matter_type": obj.value["name"], "matter_type_id": to_int(obj.value.get("id")) or mt_id}
    if isinstance(type_name, Present) and type_name.value:
        return {"matter_type": str(type_name.value), "matter_type_id": mt_id}
    if mt_id is not None:
        return {"matter_type": types.get(mt_id), "matter_type_id": mt_id}
    return {"matter_type": None, "matter_type_id": None}


def resolve_workflow_status(payload: dict, statuses: Dict[int, str]) -> dict:
    """
    Workflow stage: embedded object, then id lookup, then a raw string.

    Never reads the `status` field, which carries the filing status.
    """
    stage = field_state(payload, "workflow_stage")
    stage_id = field_state(payload, "workflow_stage_id")
    matter_status_id = field_state(payload, "matter_status_id")
    if stage is ABSENT and stage_id is ABSENT and matter_status_id is ABSENT:
        return {}

    if isinstance(stage, Present) and isinstance(stage.value, dict) and stage.value.get("name"):
        return {"status": stage.value["name"], "status_id": to_int(stage.value.get("id"))}

    lookup_id = None
    for state in (stage_id, matter_status_id):
        if isinstance(state, Present) and to_int(state.value):
            lookup_id = to_int(state.value)
            break
    if lookup_id is not None:
        name = statuses.get(lookup_id)
        if name is None:
            logger.debug("Unknown Docketwise status id %s", lookup_id)
        return {"status": name, "status_id": lookup_id}

    if isinstance(stage, Present) and isinstance(stage.value, str):
        return {"status": stage.value, "status_id": None}
    return {"status": None, "status_id": None}


def resolve_filing_status(payload: dict) -> dict:
    """Status for filing, from the `status` field (object or string)."""
    status = field_state(payload, "status")
    if status is ABSENT:
        return {}
    if isinstance(status, Present):
        if isinstance(status.value, dict):
            return {
                "status_for_filing": status.value.get("name") or None,
                "status_for_filing_id": to_int(status.value.get("id")),
            }
        if isinstance(status.value, str):
            return {"status_for_filing": status.value or None, "status_for_filing_id": None}
    return {"status_for_filing": None, "status_for_filing_id": None}


def needs_detail(existing: Optional[dict], list_item: dict) -> bool:
    """
    Whether a list row needs the detail endpoint.

    True for new matters, matters updated remotely since the last sync,
    and matters missing any self-healing field locally.
    """
    if existing is None:
        return True
    remote_updated = parse_datetime(list_item.get("updated_at"))
    local_updated = parse_datetime(existing.get("docketwise_updated_at"))
    if remote_updated and (local_updated is None or remote_updated > local_updated):
        return True
    return any(not existing.get(f) for f in SELF_HEALING_FIELDS)


def resolve_payload(
    payload: dict,
    maps: ReferenceMaps,
    existing: dict = None,
    now: datetime = None,
) -> dict:
    """
    Build the column updates for a matter payload.

    Columns not in the result keep their stored value. Missing fields on an
    existing row are logged, not raised.
    """
    updates: Dict[str, Any] = {
        "docketwise_id": to_int(payload.get("id")),
        "last_synced_at": now or datetime.utcnow(),
        "is_stale": False,
    }

    for key, column in _SCALAR_FIELDS.items():
        if key in payload:
            updates[column] = payload[key]
    for key, column in _DATE_FIELDS.items():
        if key in payload:
            updates[column] = parse_datetime(payload[key])
    if "discarded_at" in payload:
        updates["discarded"] = payload["discarded_at"] is not None

    missing = []
    parts = (
        ("assignees", resolve_assignees(payload, maps.users, existing)),
        ("client_name", resolve_client(payload, maps.clients)),
        ("matter_type", resolve_matter_type(payload, maps.types)),
        ("status", resolve_workflow_status(payload, maps.statuses)),
        ("status_for_filing", resolve_filing_status(payload)),
    )
    for column, part in parts:
        if column not in part:
            missing.append(column)
        updates.update(part)

    if existing is not None and missing:
        logger.warning(
            "Matter %s payload missing %s; keeping stored values",
            updates["docketwise_id"], ", ".join(missing),
        )
    return updates


def merge_matter(existing: Optional[dict], updates: dict) -> dict:
    """Apply resolved updates over the stored row (or a blank row)."""
    base = dict(existing) if existing else {}
    base.update(updates)
    return base
