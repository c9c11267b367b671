#!/usr/bin/env python3
"""Stream a bill sync to the terminal.

Runs the full fetch → parse → upsert loop in one go, printing each phase and
bill outcome as it happens.  Already-stored bills are skipped (the run starts
above the highest stored number per type), so re-running picks up where the
last run ended.  Ctrl+C stops after the bill in flight.

Usage::

    python scripts/sync_bills.py                    # everything new, HB + SB
    python scripts/sync_bills.py --partial          # cap at MAX_BILLS_PER_SYNC
    python scripts/sync_bills.py --partial --max-bills 40 --types HB,HJR
    python scripts/sync_bills.py --transport http   # read from the HTTP mirror
    python scripts/sync_bills.py --quiet            # only errors + summary
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

# Ensure the project is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from rich.console import Console  # noqa: E402

from txleg_sync.database import get_session_factory  # noqa: E402
from txleg_sync.events import CompleteEvent, ErrorEvent  # noqa: E402
from txleg_sync.render import render_event  # noqa: E402
from txleg_sync.run_log import RunLogger  # noqa: E402
from txleg_sync.sources import build_transport, close_shared_client  # noqa: E402
from txleg_sync.stream import StreamOptions, sync_bills_with_progress  # noqa: E402

console = Console()


def main() -> int:
    parser = argparse.ArgumentParser(description="Stream a Texas Legislature bill sync.")
    parser.add_argument("--session", help="Session code, e.g. 89R (default: settings).")
    parser.add_argument(
        "--types",
        help="Comma-separated bill types, e.g. HB,SB (default: settings).",
    )
    parser.add_argument(
        "--partial",
        action="store_true",
        help="Stop after --max-bills instead of syncing until complete.",
    )
    parser.add_argument("--max-bills", type=int, help="Cap for --partial runs.")
    parser.add_argument("--delay-ms", type=int, help="Rate-limit pause in milliseconds.")
    parser.add_argument("--transport", choices=["ftp", "http"], help="Remote source.")
    parser.add_argument("--quiet", action="store_true", help="Hide per-bill lines.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    options = StreamOptions(
        max_bills=args.max_bills,
        bill_types=[t.strip().upper() for t in args.types.split(",")] if args.types else None,
        session_code=args.session,
        batch_delay_ms=args.delay_ms,
        sync_until_complete=not args.partial,
    )

    abort = threading.Event()

    def _on_sigint(signum, frame) -> None:  # type: ignore[no-untyped-def]
        if abort.is_set():
            raise KeyboardInterrupt
        console.print("\n[yellow]Stopping after the current bill (Ctrl+C again to force)...[/]")
        abort.set()

    signal.signal(signal.SIGINT, _on_sigint)

    factory = get_session_factory()
    transport = build_transport(args.transport)
    exit_code = 0

    with RunLogger("sync_stream", meta={"transport": transport.name}) as log:
        db = factory()
        try:
            with log.phase_ctx("Sync"):
                for event in sync_bills_with_progress(db, transport, options, abort=abort):
                    render_event(console, event, show_bills=not args.quiet)
                    if isinstance(event, CompleteEvent):
                        s = event.summary
                        log.meta.update(
                            created=s.created, updated=s.updated, skipped=s.skipped, errors=s.errors
                        )
                    elif isinstance(event, ErrorEvent):
                        log.status = "error"
                        log.error = event.message
                        exit_code = 1
            if abort.is_set() and log.status == "ok":
                log.status = "aborted"
        finally:
            db.close()
            transport.close()
            close_shared_client()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
