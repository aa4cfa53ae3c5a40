#!/usr/bin/env python3
"""
Docketwise Sync Agent

Command line interface for the Docketwise sync system.
Provides commands for:
- Reference data, matter and matter detail syncs
- Sync progress
- Deadline reminders
- Dashboard stats
- Notification email checks
"""
import sys
import logging
from datetime import datetime

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn

from api_client import DocketwiseAPIError
from auth import DocketwiseAuthError


console = Console()


def _fail(message: str):
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


# ============================================================================
# CLI Group
# ============================================================================

@click.group()
@click.version_option(version="1.0.0")
@click.option("--log-level", default="WARNING", help="Python logging level")
def cli(log_level: str):
    """
    Docketwise Sync Agent

    Keep the local matter database in step with Docketwise and deliver
    matter notifications.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("init-db")
def init_db():
    """Create every table the sync jobs use."""
    from db import ensure_all_tables

    ensure_all_tables()
    console.print("[green]Database tables ensured[/green]")


# ============================================================================
# Sync Commands
# ============================================================================

@cli.group()
def sync():
    """Docketwise sync commands."""
    pass


@sync.command("reference")
@click.argument("user_id")
def sync_reference(user_id: str):
    """Refresh statuses, matter types, users and contacts."""
    from reference_sync import sync_reference_data

    with console.status("Syncing reference data..."):
        try:
            result = sync_reference_data(user_id)
        except (DocketwiseAuthError, DocketwiseAPIError) as e:
            _fail(f"Reference sync failed: {e}")

    table = Table(title="Reference Data")
    table.add_column("Phase")
    table.add_column("Records", justify="right")
    table.add_column("Error")
    for phase in ("statuses", "types", "users", "contacts"):
        table.add_row(
            phase,
            str(result.phases.get(phase, "-")),
            result.errors.get(phase, ""),
            style="red" if phase in result.errors else "",
        )
    console.print(table)
    console.print(f"\n{result.records_processed} records in {result.duration_seconds:.1f}s")
    if not result.success:
        sys.exit(1)


@sync.command("matters")
@click.argument("user_id")
@click.option("--stats/--no-stats", default=True, help="Recompute dashboard stats afterwards")
def sync_matters_cmd(user_id: str, stats: bool):
    """Bulk sync of the matter list."""
    from sync import sync_matters

    with console.status("Syncing matters..."):
        try:
            result = sync_matters(user_id)
        except (DocketwiseAuthError, DocketwiseAPIError) as e:
            _fail(f"Matter sync failed: {e}")

    table = Table(title="Matter Sync Results")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Pages", str(result.pages))
    table.add_row("Processed", str(result.processed))
    table.add_row("New", str(result.created))
    table.add_row("Updated", str(result.updated))
    table.add_row("Edited (skipped)", str(result.skipped_edited))
    table.add_row("Details fetched", str(result.details_fetched))
    table.add_row("Detail errors", str(result.detail_errors))
    table.add_row("Status changes", str(result.status_changes))
    table.add_row("Notifications", str(result.notifications))
    table.add_row("Duration", f"{result.duration_seconds:.1f}s")
    console.print(table)

    if stats:
        from dashboard_stats import sync_dashboard_stats
        sync_dashboard_stats(user_id)
        console.print("[green]Dashboard stats refreshed[/green]")
    _drain_notifications()


@sync.command("details")
@click.argument("user_id")
def sync_details(user_id: str):
    """Daily detail backfill (resumes today's run if one was interrupted)."""
    from matter_details import sync_matter_details
    from models import SyncState

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task = progress.add_task("Fetching matter details...", total=None)

        def on_progress(p):
            progress.update(task, total=p.total, completed=p.processed + p.failed)

        try:
            result = sync_matter_details(user_id, on_progress=on_progress)
        except (DocketwiseAuthError, DocketwiseAPIError) as e:
            _fail(f"Detail sync failed: {e}")

    color = {
        SyncState.COMPLETED: "green",
        SyncState.FAILED: "red",
    }.get(result.status, "yellow")
    console.print(Panel(
        f"Status: [{color}]{result.status.value}[/{color}]\n"
        f"Processed: {result.total_processed}\n"
        f"Failed: {result.total_failed}\n"
        f"Total: {result.total_records}\n"
        f"{result.message}",
        title="Matter Details",
    ))
    _drain_notifications()
    if result.status == SyncState.FAILED:
        sys.exit(1)


@sync.command("all")
@click.argument("user_id")
def sync_all(user_id: str):
    """Reference data, then matters, then details."""
    from sync import run_unified_sync

    with console.status("Running full sync..."):
        try:
            result = run_unified_sync(user_id)
        except DocketwiseAuthError as e:
            _fail(str(e))

    if result.reference is not None:
        console.print(f"Reference data: {result.reference.records_processed} records")
    if result.matters is not None:
        console.print(f"Matters: {result.matters.processed} processed, {result.matters.changes} changed")
    if result.details is not None:
        console.print(f"Details: {result.details.total_processed} processed ({result.details.status.value})")
    _drain_notifications()

    if result.success:
        console.print("\n[green]Full sync complete[/green]")
        return
    for error in result.errors:
        console.print(f"[red]{error}[/red]")
    sys.exit(1)


@sync.command("status")
@click.argument("user_id")
def sync_status(user_id: str):
    """Show sync progress for a user."""
    from db.sync_progress import SyncProgressStore, progress_percent

    rows = SyncProgressStore().list_for_user(user_id)
    if not rows:
        console.print("[yellow]No syncs recorded for this user[/yellow]")
        return

    table = Table(title=f"Sync Progress ({user_id})")
    table.add_column("Sync")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Processed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Last Completed")
    table.add_column("Failure Reason")

    for row in rows:
        style = {"failed": "red", "syncing": "yellow", "completed": "green"}.get(row["status"], "")
        table.add_row(
            row["sync_type"],
            row["status"],
            f"{progress_percent(row)}%",
            str(row.get("total_processed") or 0),
            str(row.get("total_failed") or 0),
            str(row.get("last_sync_date") or "")[:19],
            row.get("failure_reason") or "",
            style=style,
        )
    console.print(table)


def _drain_notifications():
    """Let notifications raised by a CLI sync finish before exiting."""
    from dispatcher import get_dispatcher
    from email_queue import get_email_queue

    get_dispatcher().join()
    get_email_queue().process_queue()


# ============================================================================
# Deadline Commands
# ============================================================================

@cli.group()
def deadlines():
    """Deadline reminders."""
    pass


@deadlines.command("check")
def deadlines_check():
    """Send today's 7/3/1/0-day deadline reminders."""
    from deadlines import check_and_send_deadline_notifications
    from dispatcher import get_dispatcher

    result = check_and_send_deadline_notifications()
    get_dispatcher().join()
    console.print(
        f"[green]Checked {result.matters_checked} matters, "
        f"sent {result.notifications_sent} reminders[/green]"
    )


# ============================================================================
# Dashboard Commands
# ============================================================================

@cli.group()
def stats():
    """Dashboard stats."""
    pass


@stats.command("refresh")
@click.argument("user_id")
def stats_refresh(user_id: str):
    """Recompute the dashboard stats row for a user."""
    from dashboard_stats import sync_dashboard_stats

    figures = sync_dashboard_stats(user_id)

    table = Table(title=f"Dashboard Stats ({user_id})")
    table.add_column("Figure")
    table.add_column("Value", justify="right")
    for key in sorted(figures):
        table.add_row(key, str(figures[key]))
    console.print(table)


# ============================================================================
# Notification Commands
# ============================================================================

@cli.group()
def notify():
    """Notification delivery checks."""
    pass


@notify.command("test")
@click.option("--to", "to_email", default=None, help="Recipient address")
@click.option("--user", "user_id", default=None, help="Send to this user's address")
@click.option("--deadline", is_flag=True, help="Send the deadline reminder template")
def notify_test(to_email: str, user_id: str, deadline: bool):
    """Send a sample notification email through SMTP."""
    from emails import get_mailer

    if not to_email and user_id:
        from db.accounts import get_user
        user = get_user(user_id)
        if not user:
            _fail(f"Unknown user {user_id}")
        to_email = user["email"]
    if not to_email:
        _fail("Pass --to or --user")

    sample = {
        "to": to_email,
        "matter_title": "Sample Matter",
        "client_name": "Sample Client",
        "matter_type": "I-130",
        "workflow_stage": "Document Collection",
        "paralegal_name": "Sample Paralegal",
        "matter_url": "#",
    }
    mailer = get_mailer()
    if deadline:
        ok = mailer.send_deadline_reminder({**sample, "deadline_date": datetime.utcnow(), "days_remaining": 3})
    else:
        ok = mailer.send_notification_email({
            **sample,
            "subject": "Test Notification: Sample Matter",
            "greeting": "Hello,",
            "body": "This is a test of the notification email delivery.",
            "closing": "No action is needed.",
        })
    mailer.close()

    if not ok:
        _fail(f"Email to {to_email} was not sent (check SMTP settings and the log)")
    console.print(f"[green]Test email sent to {to_email}[/green]")


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
