"""
Keyword classification of Docketwise workflow status names.

Completed states: closed, filed/submitted, approved, denied.
Active states: drafting, RFE received, pending/processing.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union


@dataclass
class StatusClassification:
    is_filed: bool = False
    is_approved: bool = False
    is_denied: bool = False
    is_rfe: bool = False
    is_rfe_filed: bool = False
    is_pending: bool = False
    is_drafting: bool = False
    is_closed: bool = False
    is_active: bool = False
    is_completed: bool = False
    category: str = "unknown"


def _has(text: str, *keywords: str) -> bool:
    return any(k in text for k in keywords)


def classify_status(status_name: Optional[str]) -> StatusClassification:
    """Classify a status name. Later rules refine earlier ones."""
    normalized = (status_name or "").lower().strip()
    c = StatusClassification()
    if not normalized:
        return c

    if _has(normalized, "closed", "card received", "beneficiary arrived") or normalized == "open":
        c.is_closed = c.is_completed = True
        c.category = "closed"

    if _has(normalized, "filed", "submitted"):
        c.is_filed = c.is_completed = True
        c.category = "completed"

    if _has(normalized, "approved", "granted", "certificate received"):
        c.is_approved = c.is_completed = True
        c.category = "approved"

    if _has(normalized, "denied", "rejected"):
        c.is_denied = c.is_completed = True
        c.category = "denied"

    if _has(normalized, "drafting", "preparing", "prepare", "document collection", "case evaluation"):
        c.is_drafting = c.is_active = True
        c.category = "drafting"

    if "received" in normalized and _has(normalized, "request for evidence", "rfe"):
        c.is_rfe = c.is_active = True
        c.category = "rfe"
        if "filed" in normalized and "response" in normalized:
            c.is_rfe_filed = c.is_completed = True
            c.is_active = False

    waiting = _has(normalized, "pending", "waiting", "scheduled", "nvc processing", "interview", "hearing", "processing")
    if waiting and not c.is_completed:
        c.is_pending = c.is_active = True
        if c.category == "unknown":
            c.category = "pending"

    # Completed states never count as active
    if c.is_completed:
        c.is_active = False
    return c


def is_matter_overdue(
    deadline: Optional[Union[datetime, date]],
    status_name: Optional[str],
    today: date,
) -> bool:
    """Deadline day is before today and the matter is not closed, approved or denied."""
    if deadline is None:
        return False
    c = classify_status(status_name)
    if c.is_closed or c.is_approved or c.is_denied:
        return False
    deadline_day = deadline.date() if isinstance(deadline, datetime) else deadline
    return deadline_day < today
