"""
Shared types for the sync pipeline.

Matter and reference rows travel as plain dicts (RealDictCursor rows); the
types here are the few places where an explicit shape matters.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class BillingStatus(Enum):
    PAID = "PAID"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    PAYMENT_PLAN = "PAYMENT_PLAN"
    DUE = "DUE"


class SyncState(Enum):
    """Backfill job states, persisted as sync_progress.status."""
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Three-state payload fields
#
# The Docketwise API omits keys from partial payloads. A key that is absent
# must leave the stored value alone, while an explicit null clears it.
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Present:
    value: Any


class _Marker:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return self.name

    def __bool__(self):
        return False


ABSENT = _Marker("ABSENT")
EXPLICIT_NULL = _Marker("EXPLICIT_NULL")

FieldState = Union[Present, _Marker]


def field_state(payload: dict, key: str) -> FieldState:
    """Classify a payload key as Present(value), EXPLICIT_NULL or ABSENT."""
    if key not in payload:
        return ABSENT
    value = payload[key]
    if value is None:
        return EXPLICIT_NULL
    return Present(value)


@dataclass
class ReferenceMaps:
    """id -> display name lookups for resolving matter payloads."""
    users: Dict[int, str] = field(default_factory=dict)
    clients: Dict[int, str] = field(default_factory=dict)
    types: Dict[int, str] = field(default_factory=dict)
    statuses: Dict[int, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Dict[int, str]]:
        return {
            "users": self.users,
            "clients": self.clients,
            "types": self.types,
            "statuses": self.statuses,
        }

    def summary(self) -> str:
        return (
            f"{len(self.users)} users, {len(self.clients)} clients, "
            f"{len(self.types)} types, {len(self.statuses)} statuses"
        )


def to_int(value: Any) -> Optional[int]:
    """Coerce an API id to int; None for blanks and garbage."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
