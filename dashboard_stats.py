"""
Dashboard Stats Aggregator

One batch pass over a user's matters, the matter types and the active
team, producing every figure the dashboard cards show. The computation is
a pure function of its inputs and `now`; sync_dashboard_stats loads the
inputs and upserts the result as a single row per user.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from db.dashboard import DashboardStatsStore
from db.matters import MatterStore
from db.reference import ReferenceStore
from status_classifier import classify_status, is_matter_overdue

logger = logging.getLogger(__name__)

REVENUE_AT_RISK_DAYS = 14
CRITICAL_DAYS = 7
OVERLOADED_UTILIZATION = 90


def _created(matter: dict) -> Optional[datetime]:
    return matter.get("docketwise_created_at") or matter.get("created_at")


def _days_until(deadline: datetime, now: datetime) -> int:
    return math.ceil((deadline - now).total_seconds() / 86400)


def _pct_change(current: float, previous: float) -> int:
    if previous > 0:
        return round((current - previous) / previous * 100)
    return 100 if current > 0 else 0


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def compute_dashboard_stats(
    matters: List[dict],
    matter_types: List[dict],
    team: List[dict],
    now: datetime,
) -> Dict[str, object]:
    """
    Args:
        matters: non-archived, non-discarded matter rows
        matter_types: matter_types rows (complexity_weight, flat_fee)
        team: active team members with a configured weekly capacity
        now: reference time (naive UTC)
    """
    types = {t["docketwise_id"]: t for t in matter_types}
    today = now.date()
    n = len(matters)

    def type_of(m):
        return types.get(m.get("matter_type_id") or 0) or {}

    def fee(m) -> float:
        if m.get("flat_fee") is not None:
            return m["flat_fee"]
        return type_of(m).get("flat_fee") or 0

    classified = {id(m): classify_status(m.get("status")) for m in matters}
    active = [m for m in matters if not classified[id(m)].is_completed and not m.get("closed_at")]
    closed = [m for m in matters if m.get("closed_at")]

    # Month-over-month
    start_of_month = datetime(now.year, now.month, 1)
    start_of_last_month = (start_of_month - timedelta(days=1)).replace(day=1)

    def in_this_month(value):
        return value is not None and value >= start_of_month

    def in_last_month(value):
        return value is not None and start_of_last_month <= value < start_of_month

    new_this_month = sum(1 for m in matters if in_this_month(_created(m)))
    new_last_month = sum(1 for m in matters if in_last_month(_created(m)))
    growth = new_this_month - new_last_month

    # Deadlines
    with_deadline = [m for m in matters if m.get("estimated_deadline")]
    critical = sum(1 for m in with_deadline if _days_until(m["estimated_deadline"], now) <= CRITICAL_DAYS)
    risk_horizon = now + timedelta(days=REVENUE_AT_RISK_DAYS)
    revenue_at_risk = sum(
        type_of(m).get("flat_fee") or 0
        for m in with_deadline
        if m.get("matter_type_id") and now <= m["estimated_deadline"] <= risk_horizon
    )
    overdue = [m for m in matters if is_matter_overdue(m.get("estimated_deadline"), m.get("status"), today)]
    at_risk = sum(
        1 for m in with_deadline
        if not m.get("closed_at") and 0 < _days_until(m["estimated_deadline"], now) <= CRITICAL_DAYS
    )

    closed_with_deadline = [m for m in closed if m.get("estimated_deadline")]
    on_time = sum(
        1 for m in closed_with_deadline
        if (m.get("actual_deadline") or m["closed_at"]) <= m["estimated_deadline"]
    )
    compliance = on_time / len(closed_with_deadline) * 100 if closed_with_deadline else 0.0

    # Throughput
    cycle_times = [
        (m["closed_at"] - m["docketwise_created_at"]).total_seconds() / 86400
        for m in closed if m.get("docketwise_created_at")
    ]
    avg_cycle_time = _mean(cycle_times)
    days_to_file = [
        (now - m["docketwise_created_at"]).total_seconds() / 86400
        for m in matters
        if m.get("docketwise_created_at") and classified[id(m)].is_filed
    ]
    avg_days_to_file = round(_mean(days_to_file))

    # Team
    utilization = _mean([t.get("utilization_target") or 0 for t in team])
    overloaded = sum(1 for t in team if (t.get("utilization_target") or 0) > OVERLOADED_UTILIZATION)
    unassigned = sum(
        1 for m in active
        if not (m.get("assignees") or "").strip() and not m.get("team_id")
    )
    weighted_active = sum(type_of(m).get("complexity_weight") or 1 for m in active)

    # Revenue
    total_revenue = sum(fee(m) for m in matters)
    pending_revenue = sum(fee(m) for m in active)
    collected_revenue = sum(fee(m) for m in closed)
    revenue_this_month = sum(fee(m) for m in closed if in_this_month(m["closed_at"]))
    revenue_last_month = sum(fee(m) for m in closed if in_last_month(m["closed_at"]))

    overdue_this_month = sum(
        1 for m in overdue if start_of_month <= m["estimated_deadline"] < now
    )
    overdue_last_month = sum(1 for m in overdue if in_last_month(m["estimated_deadline"]))

    # Quality
    rfe_total = sum(m.get("rfe_count") or 0 for m in matters)
    rework_total = sum(m.get("revision_count") or 0 for m in matters)
    error_total = sum(m.get("error_count") or 0 for m in matters)
    quality = max(0.0, 100 - (rfe_total + rework_total + error_total) / n * 10) if n else 100.0

    without_pricing = sum(
        1 for m in matters
        if m.get("flat_fee") is None and type_of(m).get("flat_fee") is None
    )
    without_deadline = n - len(with_deadline)
    without_type = sum(1 for m in matters if not m.get("matter_type_id"))
    data_quality = (
        max(0.0, 100 - (without_pricing + without_deadline + without_type) / n * 100) if n else 100.0
    )

    return {
        "total_matters": n,
        "active_matters": len(active),
        "new_matters_this_month": new_this_month,
        "new_matters_last_month": new_last_month,
        "new_matters_growth": f"{'+' if growth >= 0 else ''}{growth} from last month",
        "critical_matters": critical,
        "rfe_frequency": sum(1 for m in matters if classified[id(m)].is_rfe),
        "weighted_active_matters": round(weighted_active, 2),
        "revenue_at_risk": round(revenue_at_risk, 2),
        "deadline_compliance_rate": round(compliance, 2),
        "avg_cycle_time": round(avg_cycle_time, 2),
        "avg_days_to_file": avg_days_to_file,
        "paralegal_utilization": round(utilization, 2),
        "overdue_matters": len(overdue),
        "at_risk_matters": at_risk,
        "unassigned_matters": unassigned,
        "overloaded_paralegals": overloaded,
        "total_revenue": round(total_revenue, 2),
        "pending_revenue": round(pending_revenue, 2),
        "collected_revenue": round(collected_revenue, 2),
        "average_matter_value": round(total_revenue / n, 2) if n else 0.0,
        "avg_rfe_rate": round(rfe_total / n, 4) if n else 0.0,
        "total_rework_count": rework_total,
        "quality_score": round(quality, 2),
        "total_available_hours": sum(t.get("weekly_capacity_hours") or 0 for t in team),
        "total_assigned_hours": sum(m.get("total_hours") or 0 for m in active),
        "total_billable_hours": sum(m.get("total_hours") or 0 for m in closed),
        "matters_trend": _pct_change(new_this_month, new_last_month),
        "revenue_trend": _pct_change(revenue_this_month, revenue_last_month),
        "deadline_miss_trend": _pct_change(overdue_this_month, overdue_last_month),
        "matters_without_pricing": without_pricing,
        "matters_without_deadline": without_deadline,
        "matters_without_matter_type": without_type,
        "data_quality_score": round(data_quality, 2),
        "edited_matters": sum(1 for m in matters if m.get("is_edited")),
        "calculated_at": now.isoformat(),
    }


def sync_dashboard_stats(
    user_id: str,
    matter_store: MatterStore = None,
    reference_store: ReferenceStore = None,
    stats_store: DashboardStatsStore = None,
    now: datetime = None,
) -> Dict[str, object]:
    """Recompute and store the dashboard row for a user."""
    matter_store = matter_store or MatterStore()
    reference_store = reference_store or ReferenceStore()
    stats_store = stats_store or DashboardStatsStore()

    stats = compute_dashboard_stats(
        matter_store.list_for_dashboard(user_id),
        reference_store.list_matter_types(),
        reference_store.list_active_team(),
        now or datetime.utcnow(),
    )
    stats_store.upsert(user_id, stats)
    logger.info(
        "Dashboard stats for user %s: %d matters, %d active, %d overdue",
        user_id, stats["total_matters"], stats["active_matters"], stats["overdue_matters"],
    )
    return stats
