"""Smoke tests for the rich console rendering used by the scripts."""

from __future__ import annotations

from rich.console import Console
from sqlalchemy.orm import Session

from txleg_sync.events import (
    BillEvent,
    CompleteEvent,
    ErrorEvent,
    LogEvent,
    PhaseEvent,
    ProgressEvent,
    SyncPhase,
    SyncSummary,
)
from txleg_sync.jobs import BatchResult, create_job
from txleg_sync.render import batch_line, job_table, render_event, runs_table
from txleg_sync.run_log import RunRecord
from txleg_sync.settings import SyncConfig


def _console() -> Console:
    return Console(record=True, width=120, color_system=None)


class TestRenderEvent:
    def test_all_event_types(self) -> None:
        console = _console()
        for event in [
            PhaseEvent(SyncPhase.SCANNING, "Scanning source for available bills..."),
            ProgressEvent(1, 2, 50, "HB"),
            BillEvent("HB 1", "created"),
            BillEvent("HB 2", "error", "Malformed response: [not] a bill"),
            LogEvent("Found 2 HB bills total, 2 to sync"),
            ErrorEvent("boom", "Traceback [most recent call last]"),
            CompleteEvent(True, 1500, SyncSummary(fetched=1, created=1, errors=1)),
        ]:
            render_event(console, event)
        out = console.export_text()
        assert "== Scanning source for available bills... ==" in out
        assert "HB 1" in out
        assert "Malformed response: [not] a bill" in out
        assert "Traceback [most recent call last]" in out
        assert "Sync Complete" in out

    def test_quiet_hides_successful_bills(self) -> None:
        console = _console()
        render_event(console, BillEvent("HB 1", "created"), show_bills=False)
        render_event(console, BillEvent("HB 2", "error", "failed"), show_bills=False)
        out = console.export_text()
        assert "HB 1" not in out
        assert "HB 2" in out


class TestTables:
    def test_job_table(self, db: Session, cfg: SyncConfig) -> None:
        job = create_job(db, cfg)
        job.last_error = "HB 7: [parse] failed"
        console = _console()
        console.print(job_table(job))
        out = console.export_text()
        assert job.id in out
        assert "RUNNING" in out
        assert "HB 7: [parse] failed" in out

    def test_batch_line(self) -> None:
        console = _console()
        console.print(batch_line(BatchResult(processed=3, created=2, skipped=1, message="Processed 3 bills (HB)")))
        assert "Processed 3 bills (HB): 2 created, 0 updated, 1 skipped, 0 errors" in console.export_text()

    def test_batch_line_source_error(self) -> None:
        console = _console()
        error = "Could not list HB bills: FTP error: [Errno 110] Connection timed out"
        console.print(batch_line(BatchResult(errors=1, message=error, source_error=error)))
        out = console.export_text()
        assert error in out
        assert "created" not in out

    def test_runs_table(self) -> None:
        console = _console()
        record = RunRecord(
            run_id="ab12cd34",
            task="sync_run",
            started_at="2025-03-20T14:05:00+00:00",
            status="ok",
            duration_s=12.3,
            meta={"created": 4},
        )
        console.print(runs_table([record]))
        out = console.export_text()
        assert "ab12cd34" in out
        assert "2025-03-20 14:05:00" in out
        assert "created=4" in out
