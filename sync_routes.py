"""
Sync Management API Routes

REST endpoints for:
- Sync progress (status, percentage, failure reason) per sync type
- Manual reference, matter and detail sync runs
- Real-time notification stream and mark-as-read

The host application authenticates the request and sets
request.state.user_id before these routes run.

Mount in your FastAPI app:
    from sync_routes import router as sync_router
    app.include_router(sync_router, prefix="/api/sync")
"""
import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from db.sync_progress import SyncProgressStore, progress_percent
from models import SyncState
from publisher import NotificationEvent, get_publisher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])

# A 'syncing' row older than this is treated as abandoned
STALE_SYNC_MINUTES = 45
HEARTBEAT_SECONDS = 15.0


# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------

class SyncProgressItem(BaseModel):
    sync_type: str
    status: str
    percentage: int = 0
    total_processed: int = 0
    total_failed: int = 0
    total_records: int = 0
    last_synced_id: Optional[int] = None
    last_sync_date: Optional[str] = None
    failure_reason: Optional[str] = None
    updated_at: Optional[str] = None


class SyncStatusResponse(BaseModel):
    user_id: str
    syncs: List[SyncProgressItem] = []


class SyncStartedResponse(BaseModel):
    message: str
    sync_type: str


class MarkReadResponse(BaseModel):
    id: str
    is_read: bool


# ---------------------------------------------------------------------------
# Auth Dependency
# ---------------------------------------------------------------------------

async def get_current_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _progress_item(row: dict) -> SyncProgressItem:
    return SyncProgressItem(
        sync_type=row["sync_type"],
        status=row["status"],
        percentage=progress_percent(row),
        total_processed=row.get("total_processed") or 0,
        total_failed=row.get("total_failed") or 0,
        total_records=row.get("total_records") or 0,
        last_synced_id=row.get("last_synced_id"),
        last_sync_date=_iso(row.get("last_sync_date")),
        failure_reason=row.get("failure_reason"),
        updated_at=_iso(row.get("updated_at")),
    )


def _run_logged(label: str, fn, user_id: str):
    """Background runner: the response has already been sent, so only log."""
    try:
        fn(user_id)
    except Exception as e:
        logger.error("Manual %s for user %s failed: %s", label, user_id, e, exc_info=True)


# ---------------------------------------------------------------------------
# Sync Endpoints
# ---------------------------------------------------------------------------

@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(user_id: str = Depends(get_current_user_id)):
    """Progress of every sync type for the current user."""
    rows = SyncProgressStore().list_for_user(user_id)
    return SyncStatusResponse(user_id=user_id, syncs=[_progress_item(r) for r in rows])


@router.post("/reference", response_model=SyncStartedResponse, status_code=202)
async def trigger_reference_sync(
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
):
    """Refresh reference data in the background."""
    from reference_sync import sync_reference_data

    background_tasks.add_task(_run_logged, "reference sync", sync_reference_data, user_id)
    return SyncStartedResponse(message="Reference data sync started", sync_type="reference")


@router.post("/matters", response_model=SyncStartedResponse, status_code=202)
async def trigger_matter_sync(
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
):
    """Bulk matter sync in the background, followed by a stats refresh."""
    from dashboard_stats import sync_dashboard_stats
    from sync import sync_matters

    def run(uid: str):
        sync_matters(uid)
        sync_dashboard_stats(uid)

    background_tasks.add_task(_run_logged, "matter sync", run, user_id)
    return SyncStartedResponse(message="Matter sync started", sync_type="matters")


@router.post("/details", response_model=SyncStartedResponse, status_code=202)
async def trigger_detail_sync(
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
):
    """
    Detail backfill in the background.
    Rejected while a recent run is still in progress.
    """
    from matter_details import SYNC_TYPE, sync_matter_details

    progress = SyncProgressStore().get(user_id, SYNC_TYPE)
    if progress and progress.get("status") == SyncState.SYNCING.value:
        updated_at = progress.get("updated_at")
        if updated_at and datetime.utcnow() - updated_at < timedelta(minutes=STALE_SYNC_MINUTES):
            raise HTTPException(
                status_code=409,
                detail="A detail sync is already in progress. Please wait for it to complete."
            )

    background_tasks.add_task(_run_logged, "detail sync", sync_matter_details, user_id)
    return SyncStartedResponse(message="Matter detail sync started", sync_type=SYNC_TYPE)


# ---------------------------------------------------------------------------
# Notification Endpoints
# ---------------------------------------------------------------------------

def _sse(event: NotificationEvent) -> dict:
    return {"event": event.event, "data": json.dumps(event.data, default=str)}


@router.get("/notifications/stream")
async def stream_notifications(
    request: Request,
    since: Optional[float] = Query(default=None, description="Replay events after this epoch time"),
    user_id: str = Depends(get_current_user_id),
) -> EventSourceResponse:
    """
    Server-sent notification events for the current user.
    Events from the last five minutes are replayed on connect.
    """
    publisher = get_publisher()
    loop = asyncio.get_running_loop()
    events: "asyncio.Queue[NotificationEvent]" = asyncio.Queue()

    # Publisher callbacks run on worker threads
    unsubscribe = publisher.subscribe(
        user_id, lambda event: loop.call_soon_threadsafe(events.put_nowait, event)
    )
    backlog = publisher.replay(user_id, since=since)
    replayed = {id(e) for e in backlog}

    async def _gen():
        try:
            for event in backlog:
                yield _sse(event)
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(events.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": ""}
                    continue
                if id(event) not in replayed:
                    yield _sse(event)
        finally:
            unsubscribe()

    return EventSourceResponse(_gen())


@router.post("/notifications/{notification_id}/read", response_model=MarkReadResponse)
async def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
):
    """Mark one of the current user's notifications as read."""
    from notifications import get_notification_service

    if not get_notification_service().mark_read(notification_id, user_id):
        raise HTTPException(status_code=404, detail="Notification not found or already read")
    return MarkReadResponse(id=notification_id, is_read=True)
