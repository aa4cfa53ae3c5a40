"""
CLI tests using click's CliRunner.

Run with: pytest tests/test_agent.py -v
"""
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from agent import cli
from matter_details import BackfillResult
from models import SyncState
from reference_sync import ReferenceSyncResult
from sync import MatterSyncResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def no_drain():
    with patch("agent._drain_notifications") as drain:
        yield drain


class TestSyncCommands:

    def test_help_lists_groups(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for group in ("sync", "deadlines", "stats", "notify", "init-db"):
            assert group in result.output

    def test_reference_phase_failure_exits_nonzero(self, runner):
        outcome = ReferenceSyncResult(records_processed=3, phases={"statuses": 3},
                                      errors={"types": "Docketwise API error: 500"})
        with patch("reference_sync.sync_reference_data", return_value=outcome):
            result = runner.invoke(cli, ["sync", "reference", "user-1"])

        assert result.exit_code == 1
        assert "statuses" in result.output

    def test_matters_without_stats(self, runner, no_drain):
        with patch("sync.sync_matters", return_value=MatterSyncResult(pages=1, processed=2, created=2)), \
                patch("dashboard_stats.sync_dashboard_stats") as stats:
            result = runner.invoke(cli, ["sync", "matters", "user-1", "--no-stats"])

        assert result.exit_code == 0
        stats.assert_not_called()
        no_drain.assert_called_once()

    def test_details_failure_exits_nonzero(self, runner, no_drain):
        failed = BackfillResult(status=SyncState.FAILED, total_processed=150, total_records=600,
                                message="Sync failed: Rate limit exceeded")
        with patch("matter_details.sync_matter_details", return_value=failed):
            result = runner.invoke(cli, ["sync", "details", "user-1"])

        assert result.exit_code == 1
        assert "Rate limit exceeded" in result.output

    def test_status_without_rows(self, runner):
        with patch("db.sync_progress.SyncProgressStore") as store_cls:
            store_cls.return_value.list_for_user.return_value = []
            result = runner.invoke(cli, ["sync", "status", "user-1"])

        assert result.exit_code == 0
        assert "No syncs recorded" in result.output


class TestNotifyCommands:

    def test_requires_recipient(self, runner):
        with patch("emails.get_mailer"):
            result = runner.invoke(cli, ["notify", "test"])
        assert result.exit_code == 1

    def test_deadline_template(self, runner):
        mailer = MagicMock()
        mailer.send_deadline_reminder.return_value = True
        with patch("emails.get_mailer", return_value=mailer):
            result = runner.invoke(cli, ["notify", "test", "--to", "a@firm.com", "--deadline"])

        assert result.exit_code == 0
        assert mailer.send_deadline_reminder.call_args[0][0]["days_remaining"] == 3
        mailer.close.assert_called_once()
