"""Persisted, resumable sync jobs processed in bounded batches.

A job walks its bill types in order.  Each :func:`process_batch` call takes
up to ``batch_size`` pending bills of the first unfinished type, fetches and
upserts them, and records the per-type watermark, so a scheduler with a short
time budget can call it repeatedly until ``is_complete``.

Pause and stop are written to the job row by other callers (web request,
CLI) and polled before every bill; the row is the only signal channel.

States::

    PENDING ─▶ RUNNING ⇄ PAUSED
                  │         │
                  ▼         ▼
              COMPLETED  STOPPED
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import (
    InvalidJobTransitionError,
    JobAlreadyActiveError,
    JobNotFoundError,
    SourceListingError,
    SyncDisabledError,
)
from .events import BillOutcome
from .pipeline import fetch_bill
from .scanner import AvailableBillsCache, BillScanner
from .settings import SyncConfig, get_setting, resolve_sync_config
from .sources import TransportClient
from .store import ensure_session, get_last_persisted, upsert_bill
from .tables import ACTIVE_JOB_STATUSES, SyncJob, SyncJobStatus

LOGGER = logging.getLogger(__name__)

ALL_SYNCED_MESSAGE = "All bill types have been fully synced"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BatchResult:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    bills_processed: list[tuple[str, BillOutcome]] = field(default_factory=list)
    is_complete: bool = False
    message: str = ""
    # Set when the type's source directory could not be listed.
    source_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "billsProcessed": [{"billId": b, "status": s} for b, s in self.bills_processed],
            "isComplete": self.is_complete,
            "message": self.message,
            "sourceError": self.source_error,
        }


# ── Lookup ───────────────────────────────────────────────────────────────────


def get_active_job(db: Session) -> SyncJob | None:
    """Most recent job in PENDING, RUNNING or PAUSED."""
    return db.scalar(
        select(SyncJob)
        .where(SyncJob.status.in_(ACTIVE_JOB_STATUSES))
        .order_by(SyncJob.created_at.desc())
        .limit(1)
    )


def get_job(db: Session, job_id: str) -> SyncJob | None:
    return db.get(SyncJob, job_id)


def _require_job(db: Session, job_id: str) -> SyncJob:
    job = get_job(db, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


def _current_status(db: Session, job_id: str) -> SyncJobStatus | None:
    """Status as committed in the database, bypassing the identity map."""
    return db.scalar(select(SyncJob.status).where(SyncJob.id == job_id))


def _config_snapshot(cfg: SyncConfig) -> dict[str, int]:
    return {
        "maxBillsPerSync": cfg.max_bills_per_sync,
        "batchDelayMs": cfg.batch_delay_ms,
        "batchSize": cfg.batch_size,
        "rateLimitEvery": cfg.rate_limit_every,
    }


def job_config(db: Session, job: SyncJob) -> SyncConfig:
    """The job's creation-time config; only the ``SYNC_ENABLED`` kill switch is read live."""
    snapshot = job.sync_config or {}
    if not snapshot:
        base = resolve_sync_config(
            db, session_code=job.session_code, session_name=job.session_name, bill_types=job.bill_types
        )
        snapshot = _config_snapshot(base)
    return SyncConfig(
        session_code=job.session_code,
        session_name=job.session_name,
        bill_types=tuple(job.bill_types),
        max_bills_per_sync=snapshot["maxBillsPerSync"],
        batch_delay_ms=snapshot["batchDelayMs"],
        sync_enabled=bool(get_setting(db, "SYNC_ENABLED")),
        batch_size=snapshot["batchSize"],
        rate_limit_every=snapshot["rateLimitEvery"],
    )


# ── Operator controls ────────────────────────────────────────────────────────


def create_job(db: Session, cfg: SyncConfig | None = None) -> SyncJob:
    """Start a new RUNNING job seeded from what is already stored.

    Raises :class:`SyncDisabledError` if the kill switch is off and
    :class:`JobAlreadyActiveError` if another job is not yet terminal.
    """
    cfg = cfg or resolve_sync_config(db)
    if not cfg.sync_enabled:
        raise SyncDisabledError("Sync is disabled")

    existing = get_active_job(db)
    if existing is not None:
        raise JobAlreadyActiveError(existing.id)

    progress = {t: get_last_persisted(db, t) for t in cfg.bill_types}
    now = _now()
    job = SyncJob(
        status=SyncJobStatus.RUNNING,
        session_code=cfg.session_code,
        session_name=cfg.session_name,
        bill_types=list(cfg.bill_types),
        progress_by_type=progress,
        completed_types={},
        sync_config=_config_snapshot(cfg),
        started_at=now,
        last_activity_at=now,
        created_at=now,
    )
    db.add(job)
    db.commit()
    LOGGER.info(
        "Created sync job %s for %s (%s), starting from %s",
        job.id,
        job.session_code,
        ",".join(job.bill_types),
        progress,
    )
    return job


def _transition(
    db: Session,
    job_id: str,
    action: str,
    allowed: tuple[SyncJobStatus, ...],
    apply: Callable[[SyncJob], None],
) -> SyncJob:
    job = _require_job(db, job_id)
    db.refresh(job)
    if job.status not in allowed:
        raise InvalidJobTransitionError(job.id, job.status.value, action)
    apply(job)
    job.last_activity_at = _now()
    db.commit()
    LOGGER.info("Sync job %s: %s → %s", job.id, action, job.status.value)
    return job


def pause_job(db: Session, job_id: str) -> SyncJob:
    def _apply(job: SyncJob) -> None:
        job.status = SyncJobStatus.PAUSED
        job.paused_at = _now()

    return _transition(db, job_id, "pause", (SyncJobStatus.RUNNING,), _apply)


def resume_job(db: Session, job_id: str) -> SyncJob:
    def _apply(job: SyncJob) -> None:
        job.status = SyncJobStatus.RUNNING
        job.paused_at = None
        if job.started_at is None:
            job.started_at = _now()

    return _transition(
        db, job_id, "resume", (SyncJobStatus.PAUSED, SyncJobStatus.PENDING), _apply
    )


def stop_job(db: Session, job_id: str) -> SyncJob:
    def _apply(job: SyncJob) -> None:
        job.status = SyncJobStatus.STOPPED
        job.completed_at = _now()

    return _transition(db, job_id, "stop", ACTIVE_JOB_STATUSES, _apply)


# ── Batch processing ─────────────────────────────────────────────────────────


def process_batch(
    db: Session,
    job_id: str,
    transport: TransportClient,
    *,
    cfg: SyncConfig | None = None,
    scanner: BillScanner | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchResult:
    """Advance *job_id* by at most one batch of bills.

    A job that is not RUNNING is left untouched.  Per-bill failures are
    counted, never raised; the type's watermark moves past every bill
    attempted, so a broken or missing bill is not retried.  A type whose
    directory cannot be listed is recorded as an error and left unfinished.

    Without *cfg*, tuning comes from the snapshot taken at job creation
    (:func:`job_config`), so settings edits apply to the next job.
    """
    job = _require_job(db, job_id)
    db.refresh(job)
    if job.status is not SyncJobStatus.RUNNING:
        return BatchResult(
            is_complete=job.status is SyncJobStatus.COMPLETED,
            message=f"Job is {job.status.value.lower()}",
        )

    cfg = cfg or job_config(db, job)
    if not cfg.sync_enabled:
        raise SyncDisabledError("Sync is disabled")
    scanner = scanner or BillScanner(transport)

    session_row = ensure_session(db, job.session_code, job.session_name)
    session_id = session_row.id
    db.commit()

    bill_types = list(job.bill_types)
    progress = dict(job.progress_by_type or {})
    completed = dict(job.completed_types or {})

    bill_type = next((t for t in bill_types if not completed.get(t)), None)
    if bill_type is None:
        now = _now()
        job.status = SyncJobStatus.COMPLETED
        job.completed_at = now
        job.last_activity_at = now
        db.commit()
        return BatchResult(is_complete=True, message=ALL_SYNCED_MESSAGE)

    try:
        pending = scanner.delta(job.session_code, bill_type, progress.get(bill_type, 0))
    except SourceListingError as exc:
        # The type stays unfinished; the next batch lists it again.
        job.total_errors = (job.total_errors or 0) + 1
        job.last_error = str(exc)
        job.last_activity_at = _now()
        db.commit()
        LOGGER.error("Job %s: %s", job.id, exc)
        return BatchResult(errors=1, message=str(exc), source_error=str(exc))

    if not pending:
        completed[bill_type] = True
        all_done = all(completed.get(t) for t in bill_types)
        now = _now()
        job.completed_types = completed
        job.last_activity_at = now
        if all_done:
            job.status = SyncJobStatus.COMPLETED
            job.completed_at = now
        db.commit()
        LOGGER.info("Job %s: no %s bills left", job.id, bill_type)
        return BatchResult(
            is_complete=all_done,
            message=ALL_SYNCED_MESSAGE if all_done else f"Completed {bill_type}, moving to next type",
        )

    result = BatchResult()
    last_error: str | None = None

    for bill_number in pending[: cfg.batch_size]:
        if _current_status(db, job.id) is not SyncJobStatus.RUNNING:
            LOGGER.info("Job %s is no longer running; ending batch early", job.id)
            break

        fetched = fetch_bill(transport, job.session_code, bill_type, bill_number)
        outcome: BillOutcome
        if fetched.not_found:
            outcome = "skipped"
            result.skipped += 1
        elif fetched.data is None:
            outcome = "error"
            result.errors += 1
            last_error = f"{fetched.bill_id}: {fetched.error}"
            LOGGER.warning("Job %s: %s", job.id, last_error)
        else:
            outcome = upsert_bill(db, fetched.data, session_id)
            if outcome == "created":
                result.created += 1
            elif outcome == "updated":
                result.updated += 1
            else:
                result.errors += 1
                last_error = f"{fetched.bill_id}: failed to save"

        result.bills_processed.append((fetched.bill_id, outcome))
        result.processed += 1
        progress[bill_type] = bill_number

        if cfg.rate_limit_every and result.processed % cfg.rate_limit_every == 0:
            sleep(cfg.batch_delay_s)

    if not scanner.delta(job.session_code, bill_type, progress.get(bill_type, 0)):
        completed[bill_type] = True
    all_done = all(completed.get(t) for t in bill_types)

    # Never overwrite a pause/stop that landed mid-batch.
    current = _current_status(db, job.id)
    now = _now()
    job.progress_by_type = progress
    job.completed_types = completed
    job.total_processed = (job.total_processed or 0) + result.processed
    job.total_created = (job.total_created or 0) + result.created
    job.total_updated = (job.total_updated or 0) + result.updated
    job.total_errors = (job.total_errors or 0) + result.errors
    job.last_activity_at = now
    if last_error is not None:
        job.last_error = last_error
    if all_done and current is not SyncJobStatus.STOPPED:
        job.status = SyncJobStatus.COMPLETED
        job.completed_at = now
    db.commit()

    result.is_complete = all_done
    result.message = (
        ALL_SYNCED_MESSAGE if all_done else f"Processed {result.processed} bills ({bill_type})"
    )
    LOGGER.info(
        "Job %s batch: %d processed (%d created, %d updated, %d skipped, %d errors)",
        job.id,
        result.processed,
        result.created,
        result.updated,
        result.skipped,
        result.errors,
    )
    return result


def run_until_complete(
    db: Session,
    job_id: str,
    transport: TransportClient,
    *,
    cfg: SyncConfig | None = None,
    max_batches: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_batch: Callable[[BatchResult], None] | None = None,
) -> BatchResult:
    """Call :func:`process_batch` until the job completes, stops running or
    its source cannot be listed.

    One scan cache serves every batch of this loop.  Returns the last batch.
    """
    scanner = BillScanner(transport, AvailableBillsCache())
    batches = 0
    while True:
        result = process_batch(db, job_id, transport, cfg=cfg, scanner=scanner, sleep=sleep)
        batches += 1
        if on_batch is not None:
            on_batch(result)
        if result.is_complete or result.source_error:
            return result
        if _current_status(db, job_id) is not SyncJobStatus.RUNNING:
            return result
        if max_batches is not None and batches >= max_batches:
            return result
