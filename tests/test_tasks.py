"""
Tests for the Celery tasks and schedule.
"""
from unittest.mock import MagicMock, patch

from celery.schedules import crontab

from celery_app import app
from matter_details import BackfillResult
from models import SyncState
import tasks


class TestSchedule:

    def test_beat_entries(self):
        schedule = app.conf.beat_schedule
        assert schedule["sync-matters"]["schedule"] == 1800.0
        assert schedule["sync-reference-data"]["schedule"] == 43200.0
        assert schedule["sync-matter-details"]["task"] == "tasks.dispatch_detail_sync"
        assert schedule["check-deadlines"]["schedule"] == crontab(hour=13, minute=0)

    def test_routes(self):
        routes = app.conf.task_routes
        assert routes["tasks.sync_user_matter_details"] == {"queue": "details"}
        assert routes["tasks.check_deadlines"] == {"queue": "notifications"}


class TestDispatch:

    def test_staggered_per_user(self):
        with patch("auth.get_linked_user_ids", return_value=["u1", "u2", "u3"]), \
                patch.object(tasks.sync_user_matters, "apply_async") as apply_async:
            result = tasks.dispatch_matter_sync()

        assert result == {"dispatched": 3}
        countdowns = [c.kwargs["countdown"] for c in apply_async.call_args_list]
        assert countdowns == [0, 30, 60]
        assert apply_async.call_args_list[1].kwargs["args"] == ["u2"]


class TestUserTasks:

    def test_detail_task_serializes_result(self):
        result = BackfillResult(status=SyncState.COMPLETED, total_processed=5, total_records=5)
        with patch("matter_details.sync_matter_details", return_value=result):
            data = tasks.sync_user_matter_details("user-1")

        assert data["status"] == "completed"
        assert data["total_processed"] == 5
        assert data["user_id"] == "user-1"

    def test_unlinked_user_skipped(self):
        from auth import DocketwiseAuthError

        with patch("sync.sync_matters", side_effect=DocketwiseAuthError("No Docketwise account linked")):
            data = tasks.sync_user_matters("user-1")

        assert data["status"] == "skipped"

    def test_matter_task_queues_stats_refresh(self):
        outcome = MagicMock(processed=3, created=1, updated=2, skipped_edited=0, notifications=0,
                            changes=3, duration_seconds=1.0)
        with patch("sync.sync_matters", return_value=outcome), \
                patch.object(tasks.refresh_dashboard_stats, "delay") as delay:
            data = tasks.sync_user_matters("user-1")

        assert data["status"] == "completed"
        delay.assert_called_once_with("user-1")
