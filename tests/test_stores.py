"""
SQL-level tests for the PostgreSQL stores, against a mocked connection.

Run with: pytest tests/test_stores.py -v
"""
from datetime import datetime
from unittest.mock import patch

import pytest

from db.matters import SYNC_COLUMNS, MatterStore
from db.notifications import NotificationStore
from db.reference import ReferenceStore
from db.sync_progress import SyncProgressStore, progress_percent


class TestMatterStore:

    def test_upsert_batch_skips_edited_rows(self, mock_get_connection, mock_cursor):
        calls = mock_get_connection("db.matters")
        row = {"docketwise_id": 7, "title": "T", "archived": None}

        with patch("db.matters.execute_values", return_value=[(7, "uuid-7")]) as ev:
            written = MatterStore().upsert_batch("user-1", [row])

        assert written == {7: "uuid-7"}
        sql, values = ev.call_args[0][1], ev.call_args[0][2]
        assert "ON CONFLICT (user_id, docketwise_id)" in sql
        assert "WHERE matters.is_edited = FALSE" in sql
        assert len(values[0]) == 2 + len(SYNC_COLUMNS)
        assert values[0][2 + SYNC_COLUMNS.index("archived")] is False
        assert calls[-1]["statement_timeout_ms"] == 60000

    def test_empty_batch_is_noop(self, mock_get_connection):
        calls = mock_get_connection("db.matters")
        assert MatterStore().upsert_batch("user-1", []) == {}
        assert calls == []

    def test_update_synced_fields_ignores_foreign_columns(self, mock_get_connection, mock_cursor,
                                                          assert_sql_contains):
        mock_get_connection("db.matters")
        mock_cursor.rowcount = 1

        assert MatterStore().update_synced_fields("user-1", 7, {"status": "X", "is_edited": True}) is True

        assert_sql_contains(mock_cursor, "UPDATE matters SET status = %s", "is_edited = FALSE")
        params = mock_cursor.execute.call_args[0][1]
        assert params == ("X", "user-1", 7)

    def test_backfill_cursor(self, mock_get_connection, mock_cursor, assert_sql_contains):
        mock_get_connection("db.matters")

        MatterStore().list_for_backfill("user-1", before_id=500)

        assert_sql_contains(mock_cursor, "docketwise_id < %s", "ORDER BY docketwise_id DESC")
        assert mock_cursor.execute.call_args[0][1] == ["user-1", 500]


class TestReferenceStore:

    def test_manual_team_type_kept_in_sql(self, mock_get_connection):
        mock_get_connection("db.reference")

        with patch("db.reference.execute_values") as ev:
            ReferenceStore().upsert_team_members([{"docketwise_id": 10, "team_type": "inHouse"}])

        sql = ev.call_args[0][1]
        assert "CASE WHEN teams.team_type_source = 'manual'" in sql

    def test_nested_status_keeps_type_link(self, mock_get_connection):
        mock_get_connection("db.reference")

        with patch("db.reference.execute_values") as ev:
            ReferenceStore().upsert_statuses([{"docketwise_id": 30, "name": "Case Evaluation"}])

        assert "COALESCE(EXCLUDED.matter_type_id, matter_statuses.matter_type_id)" in ev.call_args[0][1]

    def test_load_maps_fallback_names(self, mock_get_connection, mock_cursor):
        mock_get_connection("db.reference")
        mock_cursor.fetchall.side_effect = [
            [{"docketwise_id": 10, "full_name": None, "email": "jane@firm.com"}],
            [{"docketwise_id": 500, "display_name": None, "company_name": None,
              "first_name": "Ana", "last_name": "Lima"}],
            [{"docketwise_id": 20, "name": "I-130"}],
            [{"docketwise_id": 30, "name": "Case Evaluation"}],
        ]

        maps = ReferenceStore().load_maps()

        assert maps.users == {10: "jane@firm.com"}
        assert maps.clients == {500: "Ana Lima"}
        assert maps.types == {20: "I-130"}


class TestNotificationStore:

    def test_recipients_by_channel(self, mock_get_connection, mock_cursor, assert_sql_contains):
        mock_get_connection("db.notifications")

        NotificationStore().get_recipients("email")

        assert_sql_contains(mock_cursor, "r.email_enabled = TRUE")

    def test_mark_read_only_unread(self, mock_get_connection, mock_cursor, assert_sql_contains):
        mock_get_connection("db.notifications")
        mock_cursor.rowcount = 0

        assert NotificationStore().mark_read("n-1", "user-1") is False
        assert_sql_contains(mock_cursor, "is_read = FALSE")

    def test_create_record_returns_id(self, mock_get_connection, mock_cursor):
        mock_get_connection("db.notifications")
        sent_at = datetime(2026, 3, 2, 13, 0)
        mock_cursor.fetchone.return_value = {"id": 42, "sent_at": sent_at}

        record = NotificationStore().create_record("m-1", "user-1", None, "in-app", "s", "m")

        assert record == {"id": "42", "sent_at": sent_at}


class TestSyncProgressStore:

    def test_save_upserts_given_columns(self, mock_get_connection, mock_cursor, assert_sql_contains):
        mock_get_connection("db.sync_progress")
        mock_cursor.fetchone.return_value = {"status": "syncing"}

        SyncProgressStore().save("user-1", "matter_details", status="syncing", total_processed=0)

        assert_sql_contains(mock_cursor, "ON CONFLICT (user_id, sync_type)", "status = EXCLUDED.status")

    def test_unknown_column_rejected(self):
        with pytest.raises(ValueError, match="bogus"):
            SyncProgressStore().save("user-1", "matter_details", bogus=1)

    def test_progress_percent(self):
        assert progress_percent({"status": "completed", "total_records": 0}) == 100
        assert progress_percent({"status": "syncing", "total_records": 0}) == 0
        assert progress_percent({"status": "syncing", "total_records": 200,
                                 "total_processed": 49, "total_failed": 1}) == 25
        assert progress_percent({"status": "syncing", "total_records": 10,
                                 "total_processed": 12, "total_failed": 0}) == 100
