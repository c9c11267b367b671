"""Rich console rendering for sync events, jobs and batches."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .events import (
    BillEvent,
    CompleteEvent,
    ErrorEvent,
    LogEvent,
    PhaseEvent,
    ProgressEvent,
    SyncEvent,
)
from .jobs import BatchResult
from .run_log import RunRecord
from .tables import SyncJob

_OUTCOME_STYLE = {
    "created": "green",
    "updated": "cyan",
    "skipped": "dim",
    "error": "bold red",
}
_LEVEL_STYLE = {"info": "dim", "warn": "yellow", "error": "red"}


def render_event(console: Console, event: SyncEvent, *, show_bills: bool = True) -> None:
    if isinstance(event, PhaseEvent):
        console.print(f"\n[bold cyan]== {event.message} ==[/]")
    elif isinstance(event, ProgressEvent):
        pass  # the bill line carries the counter
    elif isinstance(event, BillEvent):
        if show_bills or event.status == "error":
            style = _OUTCOME_STYLE.get(event.status, "white")
            suffix = f"  [dim]{escape(event.message)}[/]" if event.message else ""
            console.print(f"  [{style}]{event.status:>8}[/]  {event.bill_id}{suffix}")
    elif isinstance(event, LogEvent):
        console.print(f"[{_LEVEL_STYLE.get(event.level, 'dim')}]{escape(event.message)}[/]")
    elif isinstance(event, ErrorEvent):
        console.print(f"[bold red]Error:[/] {escape(event.message)}")
        if event.details:
            console.print(f"[dim]{escape(event.details)}[/]")
    elif isinstance(event, CompleteEvent):
        console.print(summary_table(event))


def summary_table(event: CompleteEvent) -> Table:
    s = event.summary
    table = Table(title="Sync Complete", title_style="bold green", show_lines=True)
    table.add_column("Fetched", justify="right")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Updated", justify="right", style="cyan")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Time", justify="right")
    table.add_row(
        str(s.fetched),
        str(s.created),
        str(s.updated),
        str(s.skipped),
        str(s.errors),
        f"{event.duration_ms / 1000:.1f}s",
    )
    return table


def job_table(job: SyncJob) -> Table:
    table = Table(title=f"Sync job {job.id}", show_header=False, title_style="bold")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", job.status.value)
    table.add_row("Session", f"{job.session_code} ({job.session_name})")
    progress = job.progress_by_type or {}
    completed = job.completed_types or {}
    for bill_type in job.bill_types:
        mark = "[green]✓ done[/]" if completed.get(bill_type) else ""
        table.add_row(f"  {bill_type}", f"through {bill_type} {progress.get(bill_type, 0)} {mark}")
    table.add_row(
        "Totals",
        f"{job.total_processed} processed, {job.total_created} created, "
        f"{job.total_updated} updated, {job.total_errors} errors",
    )
    if job.last_error:
        table.add_row("Last error", f"[red]{escape(job.last_error)}[/]")
    return table


def batch_line(result: BatchResult) -> str:
    if result.source_error:
        return f"[bold red]{escape(result.source_error)}[/]"
    return (
        f"{escape(result.message)}: [green]{result.created} created[/], "
        f"[cyan]{result.updated} updated[/], [dim]{result.skipped} skipped[/], "
        f"[red]{result.errors} errors[/]"
    )


def runs_table(records: list[RunRecord]) -> Table:
    table = Table(title="Recent sync runs", title_style="bold")
    table.add_column("Run")
    table.add_column("Task")
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Detail", style="dim")
    for rec in records:
        style = {"ok": "green", "error": "red", "aborted": "yellow"}.get(rec.status, "white")
        detail = ", ".join(f"{k}={v}" for k, v in rec.meta.items())
        table.add_row(
            rec.run_id,
            rec.task,
            rec.started_at[:19].replace("T", " "),
            f"[{style}]{rec.status}[/]",
            f"{rec.duration_s:.1f}s" if rec.duration_s is not None else "-",
            detail,
        )
    return table
