"""
Tests for the sync management API routes.

Run with: pytest tests/test_sync_routes.py -v
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from sync_routes import router


@pytest.fixture
def client():
    app = FastAPI()

    @app.middleware("http")
    async def authenticate(request: Request, call_next):
        user_id = request.headers.get("X-User-Id")
        if user_id:
            request.state.user_id = user_id
        return await call_next(request)

    app.include_router(router, prefix="/api/sync")
    return TestClient(app)


HEADERS = {"X-User-Id": "user-1"}


class TestAuth:

    def test_missing_user_rejected(self, client):
        assert client.get("/api/sync/status").status_code == 401


class TestStatus:

    def test_lists_progress_rows(self, client):
        rows = [{
            "sync_type": "matter_details",
            "status": "failed",
            "total_processed": 150,
            "total_failed": 0,
            "total_records": 600,
            "last_synced_id": 4200,
            "last_sync_date": None,
            "failure_reason": "Rate limit exceeded after 2min retry",
            "updated_at": datetime(2026, 3, 2, 10, 0),
        }]
        with patch("sync_routes.SyncProgressStore") as store_cls:
            store_cls.return_value.list_for_user.return_value = rows
            response = client.get("/api/sync/status", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "user-1"
        item = body["syncs"][0]
        assert item["percentage"] == 25
        assert item["failure_reason"] == "Rate limit exceeded after 2min retry"
        assert item["updated_at"] == "2026-03-02T10:00:00"


class TestTriggers:

    def test_reference_sync_runs_in_background(self, client):
        with patch("reference_sync.sync_reference_data") as run:
            response = client.post("/api/sync/reference", headers=HEADERS)

        assert response.status_code == 202
        assert response.json()["sync_type"] == "reference"
        run.assert_called_once_with("user-1")

    def test_matter_sync_refreshes_stats(self, client):
        with patch("sync.sync_matters") as run, patch("dashboard_stats.sync_dashboard_stats") as stats:
            response = client.post("/api/sync/matters", headers=HEADERS)

        assert response.status_code == 202
        run.assert_called_once_with("user-1")
        stats.assert_called_once_with("user-1")

    def test_background_failure_is_logged_not_raised(self, client):
        with patch("sync.sync_matters", side_effect=RuntimeError("boom")):
            response = client.post("/api/sync/matters", headers=HEADERS)

        assert response.status_code == 202

    def test_detail_sync_conflict_while_running(self, client):
        progress = {"status": "syncing", "updated_at": datetime.utcnow() - timedelta(minutes=5)}
        with patch("sync_routes.SyncProgressStore") as store_cls, \
                patch("matter_details.sync_matter_details") as run:
            store_cls.return_value.get.return_value = progress
            response = client.post("/api/sync/details", headers=HEADERS)

        assert response.status_code == 409
        run.assert_not_called()

    def test_detail_sync_ignores_abandoned_run(self, client):
        progress = {"status": "syncing", "updated_at": datetime.utcnow() - timedelta(hours=2)}
        with patch("sync_routes.SyncProgressStore") as store_cls, \
                patch("matter_details.sync_matter_details") as run:
            store_cls.return_value.get.return_value = progress
            response = client.post("/api/sync/details", headers=HEADERS)

        assert response.status_code == 202
        assert response.json()["sync_type"] == "matter_details"
        run.assert_called_once_with("user-1")


class TestMarkRead:

    def test_marks_read(self, client):
        service = MagicMock()
        service.mark_read.return_value = True
        with patch("notifications.get_notification_service", return_value=service):
            response = client.post("/api/sync/notifications/n-1/read", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"id": "n-1", "is_read": True}
        service.mark_read.assert_called_once_with("n-1", "user-1")

    def test_unknown_notification(self, client):
        service = MagicMock()
        service.mark_read.return_value = False
        with patch("notifications.get_notification_service", return_value=service):
            response = client.post("/api/sync/notifications/n-404/read", headers=HEADERS)

        assert response.status_code == 404
