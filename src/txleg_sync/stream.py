"""Single-invocation streaming sync.

Runs the same fetch → parse → upsert loop as the batch jobs, start to
finish in one call, and yields :mod:`txleg_sync.events` as it goes.  Nothing
is persisted about the run itself (resuming relies on what was stored), so
this suits operator-attended runs with a live display.

Usage::

    abort = threading.Event()
    for event in sync_bills_with_progress(db, transport, abort=abort):
        render(event)
"""

from __future__ import annotations

import logging
import threading
import time
import traceback
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .errors import SourceListingError
from .events import (
    BillEvent,
    CompleteEvent,
    ErrorEvent,
    LogEvent,
    PhaseEvent,
    ProgressEvent,
    SyncEvent,
    SyncPhase,
    SyncSummary,
    progress_percent,
)
from .pipeline import fetch_bill
from .scanner import AvailableBillsCache, BillScanner
from .settings import resolve_sync_config
from .sources import TransportClient
from .store import ensure_session, get_last_persisted, upsert_bill

LOGGER = logging.getLogger(__name__)

# Emit a log line after every N bills of one type.
LOG_EVERY = 10


@dataclass
class StreamOptions:
    max_bills: int | None = None
    bill_types: list[str] | None = None
    session_code: str | None = None
    session_name: str | None = None
    batch_delay_ms: int | None = None
    sync_until_complete: bool = True


def sync_bills_with_progress(
    db: Session,
    transport: TransportClient,
    options: StreamOptions | None = None,
    *,
    abort: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[SyncEvent]:
    """Yield events for one full (or *max_bills*-capped) sync run.

    *abort* is checked before every bill and between bill types; setting it
    ends the run after the bill in flight.  Configuration problems yield a
    single :class:`ErrorEvent` before any fetch.  Unexpected exceptions are
    logged and reported as an :class:`ErrorEvent` carrying the traceback.
    """
    options = options or StreamOptions()
    abort = abort or threading.Event()
    started = clock()

    try:
        cfg = resolve_sync_config(
            db,
            session_code=options.session_code,
            session_name=options.session_name,
            bill_types=options.bill_types,
            max_bills=options.max_bills,
            batch_delay_ms=options.batch_delay_ms,
        )
        if not cfg.sync_enabled:
            yield ErrorEvent("Sync is disabled", "Enable sync in settings first.")
            return

        until_complete = options.sync_until_complete
        yield PhaseEvent(
            SyncPhase.INITIALIZING,
            f"Initializing {'full' if until_complete else 'partial'} sync for {cfg.session_name}...",
        )
        scope = "sync until complete" if until_complete else f"maxBills={cfg.max_bills_per_sync}"
        yield LogEvent(
            f"Starting {transport.name} sync: session={cfg.session_code}, {scope}, "
            f"types={','.join(cfg.bill_types)}"
        )

        session_id = ensure_session(db, cfg.session_code, cfg.session_name).id
        db.commit()

        last_synced = {t: get_last_persisted(db, t) for t in cfg.bill_types}
        for bill_type, last in last_synced.items():
            yield LogEvent(f"Last synced {bill_type}: {f'{bill_type} {last}' if last else 'none'}")

        # ── Scan ──
        yield PhaseEvent(SyncPhase.SCANNING, "Scanning source for available bills...")
        scanner = BillScanner(transport, AvailableBillsCache())
        summary = SyncSummary()
        to_sync: dict[str, list[int]] = {}
        for bill_type in cfg.bill_types:
            if abort.is_set():
                break
            yield LogEvent(f"Scanning available {bill_type} bills...")
            try:
                available = scanner.get_available(cfg.session_code, bill_type)
            except SourceListingError as exc:
                summary.errors += 1
                yield LogEvent(str(exc), "error")
                continue
            to_sync[bill_type] = [n for n in available if n > last_synced[bill_type]]
            yield LogEvent(
                f"Found {len(available)} {bill_type} bills total, {len(to_sync[bill_type])} to sync"
            )

        total_available = sum(len(v) for v in to_sync.values())
        if until_complete:
            per_type_cap: int | None = None
            total = total_available
        else:
            per_type_cap = cfg.max_bills_per_sync // max(len(cfg.bill_types), 1)
            total = min(cfg.max_bills_per_sync, total_available)
        yield LogEvent(f"Total bills to sync: {total}")

        # ── Process ──
        current = 0
        for bill_type in cfg.bill_types:
            if abort.is_set():
                yield LogEvent("Sync stopped by user", "warn")
                break
            if bill_type not in to_sync:
                continue
            pending = to_sync[bill_type]
            if not pending:
                yield LogEvent(f"No new {bill_type} bills to sync")
                continue
            if per_type_cap is not None:
                pending = pending[:per_type_cap]

            yield PhaseEvent(SyncPhase.PROCESSING_BILLS, f"Processing {len(pending)} {bill_type} bills...")
            done_for_type = 0
            for bill_number in pending:
                if abort.is_set():
                    yield LogEvent("Sync stopped by user", "warn")
                    break
                current += 1
                done_for_type += 1
                yield ProgressEvent(current, total, progress_percent(current, total), bill_type)

                fetched = fetch_bill(transport, cfg.session_code, bill_type, bill_number)
                if fetched.not_found:
                    summary.skipped += 1
                    yield BillEvent(fetched.bill_id, "skipped", "Not found at source")
                elif fetched.data is None:
                    summary.errors += 1
                    yield BillEvent(fetched.bill_id, "error", fetched.error or "Failed to fetch")
                else:
                    summary.fetched += 1
                    outcome = upsert_bill(db, fetched.data, session_id)
                    if outcome == "created":
                        summary.created += 1
                        yield BillEvent(fetched.bill_id, "created")
                    elif outcome == "updated":
                        summary.updated += 1
                        yield BillEvent(fetched.bill_id, "updated")
                    else:
                        summary.errors += 1
                        yield BillEvent(fetched.bill_id, "error", "Failed to save to database")

                if done_for_type % LOG_EVERY == 0:
                    yield LogEvent(
                        f"Processed {done_for_type} {bill_type} bills "
                        f"({summary.created} created, {summary.updated} updated)"
                    )
                if cfg.rate_limit_every and current % cfg.rate_limit_every == 0:
                    sleep(cfg.batch_delay_s)

            yield LogEvent(f"Finished {bill_type}: processed {done_for_type} bills")

        duration_ms = int((clock() - started) * 1000)
        yield PhaseEvent(SyncPhase.COMPLETE, "Sync complete!")
        yield CompleteEvent(success=True, duration_ms=duration_ms, summary=summary)
        LOGGER.info(
            "Sync complete in %.1fs: %d fetched, %d created, %d updated, %d skipped, %d errors",
            duration_ms / 1000,
            summary.fetched,
            summary.created,
            summary.updated,
            summary.skipped,
            summary.errors,
        )
    except Exception as exc:
        LOGGER.exception("Sync failed")
        yield ErrorEvent(str(exc) or type(exc).__name__, traceback.format_exc())
