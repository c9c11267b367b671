#!/usr/bin/env python3
"""Operate persisted, resumable sync jobs from the terminal.

A job keeps its per-type watermark in the database, so batches can be run
from anywhere (cron, a serverless function, this script) and a paused job
resumes exactly where it stopped.

Usage::

    python scripts/sync_job.py start            # create a RUNNING job
    python scripts/sync_job.py status           # show the active job
    python scripts/sync_job.py process          # run one batch (~20 bills)
    python scripts/sync_job.py run              # batches until complete/paused
    python scripts/sync_job.py run --max-batches 5
    python scripts/sync_job.py pause | resume | stop [--job ID]
    python scripts/sync_job.py history          # recent runs from the run log
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Ensure the project is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from rich.console import Console  # noqa: E402

from txleg_sync.database import get_session_factory  # noqa: E402
from txleg_sync.errors import SyncError  # noqa: E402
from txleg_sync.jobs import (  # noqa: E402
    BatchResult,
    create_job,
    get_active_job,
    get_job,
    pause_job,
    process_batch,
    resume_job,
    run_until_complete,
    stop_job,
)
from txleg_sync.render import batch_line, job_table, runs_table  # noqa: E402
from txleg_sync.run_log import RunLogger, load_recent_runs  # noqa: E402
from txleg_sync.sources import build_transport, close_shared_client  # noqa: E402

console = Console()


def _resolve_job_id(db, job_id: str | None) -> str:  # type: ignore[no-untyped-def]
    if job_id:
        return job_id
    job = get_active_job(db)
    if job is None:
        raise SyncError("No active sync job (start one with `sync_job.py start`)")
    return job.id


def _run_batches(db, args: argparse.Namespace, *, single: bool) -> int:  # type: ignore[no-untyped-def]
    job_id = _resolve_job_id(db, args.job)
    transport = build_transport(args.transport)
    task = "sync_batch" if single else "sync_run"
    totals = BatchResult()

    def _on_batch(result: BatchResult) -> None:
        console.print(batch_line(result))
        totals.processed += result.processed
        totals.created += result.created
        totals.updated += result.updated
        totals.skipped += result.skipped
        totals.errors += result.errors
        totals.source_error = result.source_error

    try:
        with RunLogger(task, meta={"job_id": job_id, "transport": transport.name}) as log:
            with log.phase_ctx("Batches"):
                if single:
                    _on_batch(process_batch(db, job_id, transport))
                else:
                    run_until_complete(
                        db, job_id, transport, max_batches=args.max_batches, on_batch=_on_batch
                    )
            log.meta.update(
                processed=totals.processed,
                created=totals.created,
                updated=totals.updated,
                errors=totals.errors,
            )
            if totals.source_error:
                log.status = "error"
                log.error = totals.source_error
    finally:
        transport.close()
        close_shared_client()

    job = get_job(db, job_id)
    if job is not None:
        console.print(job_table(job))
    return 1 if totals.source_error else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Manage resumable bill sync jobs.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("start", help="Create a new RUNNING job.")
    sub.add_parser("status", help="Show the active job.")
    for name in ("pause", "resume", "stop"):
        p = sub.add_parser(name, help=f"{name.capitalize()} a job.")
        p.add_argument("--job", help="Job id (default: the active job).")
    for name, help_text in (("process", "Run one batch."), ("run", "Run batches until done.")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--job", help="Job id (default: the active job).")
        p.add_argument("--transport", choices=["ftp", "http"], help="Remote source.")
        if name == "run":
            p.add_argument("--max-batches", type=int, help="Stop after N batches.")
    hist = sub.add_parser("history", help="Recent runs from the run log.")
    hist.add_argument("-n", type=int, default=20, help="How many runs to show.")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "history":
        console.print(runs_table(load_recent_runs(args.n)))
        return 0

    db = get_session_factory()()
    try:
        if args.command == "start":
            console.print(job_table(create_job(db)))
        elif args.command == "status":
            job = get_active_job(db)
            if job is None:
                console.print("[dim]No active sync job.[/]")
            else:
                console.print(job_table(job))
        elif args.command == "pause":
            console.print(job_table(pause_job(db, _resolve_job_id(db, args.job))))
        elif args.command == "resume":
            console.print(job_table(resume_job(db, _resolve_job_id(db, args.job))))
        elif args.command == "stop":
            console.print(job_table(stop_job(db, _resolve_job_id(db, args.job))))
        else:
            return _run_batches(db, args, single=args.command == "process")
    except SyncError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
