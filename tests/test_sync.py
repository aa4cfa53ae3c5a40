"""
Tests for the bulk matter sync and the unified sync.

Run with: pytest tests/test_sync.py -v
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from api_client import DocketwiseAPIError
from fakes import FakeDocketwiseAPI, FakeReferenceStore
from models import SyncState
from notifications import NotificationType
from sync import MatterSync, run_unified_sync


def _list_item(dw_id, **overrides):
    item = {
        "id": dw_id,
        "title": f"Matter {dw_id}",
        "client_id": 500,
        "matter_type_id": 20,
        "workflow_stage_id": 30,
        "status": "Not Filed",
        "user_ids": [10],
        "attorney_id": 11,
        "updated_at": "2026-02-01T00:00:00Z",
        "created_at": "2026-01-01T00:00:00Z",
    }
    item.update(overrides)
    return item


class Clock:
    """Monotonic test clock, one minute per call."""

    def __init__(self, start=datetime(2026, 3, 1, 9, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def invalidated():
    return []


@pytest.fixture
def make_sync(matter_store, fake_cache, notifier, invalidated):
    def _make(api: FakeDocketwiseAPI, clock=None):
        return MatterSync(
            api.client(),
            store=matter_store,
            cache=fake_cache,
            notifier=notifier,
            invalidate=invalidated.append,
            clock=clock or Clock(),
        )
    return _make


class TestBulkSync:

    def test_new_matters_created_with_details(self, make_sync, matter_store, invalidated):
        items = [_list_item(1), _list_item(2)]
        api = FakeDocketwiseAPI(matters=items, details={1: items[0], 2: items[1]})

        result = make_sync(api).sync_matters("user-1")

        assert result.created == 2
        assert result.updated == 0
        assert result.details_fetched == 2
        stored = matter_store.snapshot()
        assert stored[1]["client_name"] == "Maria Garcia"
        assert stored[1]["assignees"] == "Jane Doe, John Roe"
        assert stored[1]["status"] == "Case Evaluation"
        assert stored[1]["status_for_filing"] == "Not Filed"
        assert invalidated == ["user-1"]

    def test_idempotent(self, make_sync, matter_store):
        items = [_list_item(1), _list_item(2, workflow_stage_id=31)]
        api = FakeDocketwiseAPI(matters=items, details={1: items[0], 2: items[1]})
        clock = Clock()
        sync = make_sync(api, clock)

        sync.sync_matters("user-1")
        first = matter_store.snapshot()
        second_result = sync.sync_matters("user-1")
        second = matter_store.snapshot()

        for dw_id, row in first.items():
            after = second[dw_id]
            assert after["last_synced_at"] > row["last_synced_at"]
            assert {k: v for k, v in after.items() if k != "last_synced_at"} == \
                   {k: v for k, v in row.items() if k != "last_synced_at"}
        # Nothing changed remotely and nothing is missing: no detail fetches
        assert second_result.details_fetched == 0
        assert second_result.status_changes == 0

    def test_edited_matter_only_gets_last_synced_at(self, make_sync, matter_store):
        edited = matter_store.add({
            "docketwise_id": 1,
            "title": "My Title",
            "status": "Custom Stage",
            "assignees": "Someone Else",
            "client_name": "Local Client",
            "matter_type": "Local Type",
            "is_edited": True,
            "last_synced_at": datetime(2026, 1, 1),
        })
        api = FakeDocketwiseAPI(matters=[_list_item(1, title="Remote Title")], details={1: _list_item(1)})

        result = make_sync(api).sync_matters("user-1")

        after = matter_store.snapshot()[1]
        assert result.skipped_edited == 1
        assert after["last_synced_at"] > edited["last_synced_at"]
        for column in ("title", "status", "assignees", "client_name", "matter_type"):
            assert after[column] == edited[column]
        assert api.count("/matters/1") == 0

    def test_absent_user_ids_preserve_assignees(self, make_sync, matter_store):
        matter_store.add({
            "docketwise_id": 1,
            "assignees": "Jane Doe",
            "status": "Case Evaluation",
            "matter_type": "I-130",
            "client_name": "Maria Garcia",
            "docketwise_updated_at": datetime(2026, 1, 1),
        })
        item = _list_item(1)
        del item["user_ids"]
        del item["attorney_id"]
        api = FakeDocketwiseAPI(matters=[item], details={1: item})

        make_sync(api).sync_matters("user-1")

        assert matter_store.snapshot()[1]["assignees"] == "Jane Doe"

    def test_filing_status_change_leaves_workflow_status(self, make_sync, matter_store):
        matter_store.add({
            "docketwise_id": 1,
            "status": "Case Evaluation",
            "status_id": 30,
            "status_for_filing": "Not Filed",
            "assignees": "Jane Doe",
            "matter_type": "I-130",
            "client_name": "Maria Garcia",
            "docketwise_updated_at": datetime(2026, 1, 1),
        })
        item = _list_item(1, status="Filed")
        api = FakeDocketwiseAPI(matters=[item], details={1: item})

        make_sync(api).sync_matters("user-1")

        row = matter_store.snapshot()[1]
        assert row["status_for_filing"] == "Filed"
        assert row["status"] == "Case Evaluation"
        assert row["status_id"] == 30

    def test_workflow_change_recorded_in_history(self, make_sync, matter_store):
        existing = matter_store.add({
            "docketwise_id": 1,
            "status": "Case Evaluation",
            "status_for_filing": "Not Filed",
            "assignees": "Jane Doe",
            "matter_type": "I-130",
            "client_name": "Maria Garcia",
            "docketwise_updated_at": datetime(2026, 1, 1),
        })
        item = _list_item(1, workflow_stage_id=31)
        api = FakeDocketwiseAPI(matters=[item], details={1: item})

        result = make_sync(api).sync_matters("user-1")

        assert result.status_changes == 1
        assert matter_store.history == [{
            "matter_id": existing["id"],
            "user_id": "user-1",
            "old_status": "Case Evaluation",
            "new_status": "Document Collection",
            "source": "sync",
        }]

    def test_rfe_filing_change_notifies(self, make_sync, matter_store, notifier):
        matter_store.add({
            "docketwise_id": 1,
            "title": "Garcia I-130",
            "status_for_filing": "Case Evaluation",
            "status": "Case Evaluation",
            "assignees": "Jane Doe",
            "matter_type": "I-130",
            "client_name": "Maria Garcia",
            "docketwise_updated_at": datetime(2026, 1, 1),
        })
        item = _list_item(1, status="RFE Received")
        api = FakeDocketwiseAPI(matters=[item], details={1: item})

        result = make_sync(api).sync_matters("user-1")

        assert result.notifications == 1
        assert len(notifier.sent) == 1
        assert notifier.sent[0].type == NotificationType.RFE
        assert notifier.sent[0].old_status == "Case Evaluation"
        assert notifier.sent[0].status == "RFE Received"

    def test_new_matters_never_notify(self, make_sync, notifier):
        item = _list_item(1, status="Approved")
        api = FakeDocketwiseAPI(matters=[item], details={1: item})

        make_sync(api).sync_matters("user-1")

        assert notifier.sent == []

    def test_no_recipients_no_notifications(self, make_sync, matter_store, notifier):
        notifier.recipients = False
        matter_store.add({"docketwise_id": 1, "status_for_filing": "Pending",
                          "docketwise_updated_at": datetime(2026, 1, 1)})
        item = _list_item(1, status="Denied")
        api = FakeDocketwiseAPI(matters=[item], details={1: item})

        make_sync(api).sync_matters("user-1")

        assert notifier.sent == []

    def test_detail_failure_falls_back_to_list_data(self, make_sync, matter_store):
        api = FakeDocketwiseAPI(matters=[_list_item(1)], details={})

        result = make_sync(api).sync_matters("user-1")

        assert result.detail_errors == 1
        assert result.created == 1
        assert matter_store.snapshot()[1]["title"] == "Matter 1"

    def test_batches_of_fifty(self, make_sync, matter_store):
        items = [_list_item(i) for i in range(1, 121)]
        api = FakeDocketwiseAPI(matters=items, details={i["id"]: i for i in items})

        make_sync(api).sync_matters("user-1")

        assert matter_store.upsert_calls == [50, 50, 20]

    def test_list_failure_raises(self, make_sync):
        api = FakeDocketwiseAPI()
        api.failing["/matters"] = 500

        with pytest.raises(DocketwiseAPIError):
            make_sync(api).sync_matters("user-1")


class TestUnifiedSync:

    def _patch_jobs(self, monkeypatch, reference_success=True, matters_error=None, detail_status=SyncState.COMPLETED):
        import matter_details
        import reference_sync
        import sync

        calls = []

        class FakeReference:
            def __init__(self, client):
                pass

            def run(self):
                calls.append("reference")
                result = MagicMock()
                result.success = reference_success
                result.errors = {} if reference_success else {"users": "boom"}
                return result

        class FakeMatters:
            def __init__(self, client):
                pass

            def sync_matters(self, user_id):
                calls.append("matters")
                if matters_error:
                    raise matters_error
                return MagicMock()

        class FakeBackfill:
            def __init__(self, client, progress_store=None):
                pass

            def run(self, user_id):
                calls.append("details")
                result = MagicMock()
                result.status = detail_status
                result.failure_reason = "Rate limit exceeded after 2min retry"
                return result

        monkeypatch.setattr(reference_sync, "ReferenceSync", FakeReference)
        monkeypatch.setattr(sync, "MatterSync", FakeMatters)
        monkeypatch.setattr(matter_details, "MatterDetailBackfill", FakeBackfill)
        return calls

    def test_runs_all_phases(self, monkeypatch, progress_store):
        calls = self._patch_jobs(monkeypatch)

        result = run_unified_sync("user-1", client=MagicMock(), progress_store=progress_store)

        assert calls == ["reference", "matters", "details"]
        assert result.success is True
        assert progress_store.get("user-1", "unified_sync")["status"] == "completed"

    def test_reference_failure_aborts(self, monkeypatch, progress_store):
        calls = self._patch_jobs(monkeypatch, reference_success=False)

        result = run_unified_sync("user-1", client=MagicMock(), progress_store=progress_store)

        assert calls == ["reference"]
        assert result.success is False
        row = progress_store.get("user-1", "unified_sync")
        assert row["status"] == "failed"
        assert "users: boom" in row["failure_reason"]

    def test_matter_failure_continues_to_details(self, monkeypatch, progress_store):
        calls = self._patch_jobs(monkeypatch, matters_error=DocketwiseAPIError("down", status_code=503))

        result = run_unified_sync("user-1", client=MagicMock(), progress_store=progress_store)

        assert calls == ["reference", "matters", "details"]
        assert result.success is False
        assert progress_store.get("user-1", "unified_sync")["status"] == "failed"


class TestReferenceStoreDouble:
    """The double keeps manual team types, like the SQL upsert."""

    def test_manual_team_type_kept(self):
        store = FakeReferenceStore()
        store.team[10] = {"docketwise_id": 10, "team_type": "contractor", "team_type_source": "manual"}
        store.upsert_team_members([{"docketwise_id": 10, "full_name": "Jane", "team_type": "inHouse"}])
        assert store.team[10]["team_type"] == "contractor"
