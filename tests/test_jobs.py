"""Tests for persisted, resumable sync jobs."""

from __future__ import annotations

from dataclasses import replace

import pytest
from sqlalchemy.orm import Session

from txleg_sync.errors import (
    InvalidJobTransitionError,
    JobAlreadyActiveError,
    JobNotFoundError,
    SyncDisabledError,
)
from txleg_sync.jobs import (
    ALL_SYNCED_MESSAGE,
    BatchResult,
    create_job,
    get_active_job,
    get_job,
    job_config,
    pause_job,
    process_batch,
    resume_job,
    run_until_complete,
    stop_job,
)
from txleg_sync.models import BillData
from txleg_sync.scanner import AvailableBillsCache, BillScanner
from txleg_sync.settings import SyncConfig, set_setting
from txleg_sync.sources import FtpTransport
from txleg_sync.sources.ftp import SharedFtpConnection
from txleg_sync.store import bill_counts_by_type, upsert_bill
from txleg_sync.tables import SyncJobStatus


def _stored(db: Session, bill_type: str, number: int) -> None:
    upsert_bill(db, BillData(f"{bill_type} {number}", bill_type, number, "Already stored."))


class _UnreachableFtp:
    """``ftplib.FTP`` stand-in whose directory listings time out."""

    def __init__(self, host: str, timeout: float) -> None:
        self.host = host

    def login(self) -> None:
        pass

    def set_pasv(self, value: bool) -> None:
        pass

    def nlst(self, path: str) -> list[str]:
        raise OSError("Connection timed out")

    def quit(self) -> None:
        pass

    def close(self) -> None:
        pass


# ── Creation ──────────────────────────────────────────────────────────────────


class TestCreateJob:
    def test_seeds_progress_from_store(self, db: Session, cfg: SyncConfig) -> None:
        _stored(db, "HB", 150)
        _stored(db, "SB", 9)
        job = create_job(db, replace(cfg, bill_types=("HB", "SB")))
        assert job.status is SyncJobStatus.RUNNING
        assert job.progress_by_type == {"HB": 150, "SB": 9}
        assert job.completed_types == {}
        assert job.started_at is not None
        assert len(job.id) == 32

    def test_uses_settings_when_no_config_given(self, db: Session) -> None:
        set_setting(db, "BILL_TYPES", ["SJR"])
        set_setting(db, "SESSION_CODE", "89R")
        db.commit()
        job = create_job(db)
        assert job.bill_types == ["SJR"]
        assert job.session_code == "89R"

    def test_one_active_job(self, db: Session, cfg: SyncConfig) -> None:
        first = create_job(db, cfg)
        with pytest.raises(JobAlreadyActiveError) as exc_info:
            create_job(db, cfg)
        assert exc_info.value.job_id == first.id

        pause_job(db, first.id)
        with pytest.raises(JobAlreadyActiveError):
            create_job(db, cfg)

        stop_job(db, first.id)
        second = create_job(db, cfg)
        assert get_active_job(db).id == second.id

    def test_disabled(self, db: Session, cfg: SyncConfig) -> None:
        with pytest.raises(SyncDisabledError):
            create_job(db, replace(cfg, sync_enabled=False))

    def test_disabled_via_setting(self, db: Session) -> None:
        set_setting(db, "SYNC_ENABLED", False)
        db.commit()
        with pytest.raises(SyncDisabledError):
            create_job(db)


# ── Transitions ───────────────────────────────────────────────────────────────


class TestTransitions:
    def test_pause_resume_stop(self, db: Session, cfg: SyncConfig) -> None:
        job = create_job(db, cfg)
        assert pause_job(db, job.id).status is SyncJobStatus.PAUSED
        assert job.paused_at is not None
        assert resume_job(db, job.id).status is SyncJobStatus.RUNNING
        assert job.paused_at is None
        stopped = stop_job(db, job.id)
        assert stopped.status is SyncJobStatus.STOPPED
        assert stopped.completed_at is not None
        assert get_active_job(db) is None

    @pytest.mark.parametrize(
        "setup, action",
        [
            ((), resume_job),
            ((pause_job,), pause_job),
            ((stop_job,), resume_job),
            ((stop_job,), stop_job),
            ((stop_job,), pause_job),
        ],
    )
    def test_invalid(self, db: Session, cfg: SyncConfig, setup, action) -> None:
        job = create_job(db, cfg)
        for step in setup:
            step(db, job.id)
        with pytest.raises(InvalidJobTransitionError):
            action(db, job.id)

    def test_transition_on_completed_job(self, db: Session, cfg: SyncConfig, transport) -> None:
        job = create_job(db, cfg)
        process_batch(db, job.id, transport, cfg=cfg)
        assert get_job(db, job.id).status is SyncJobStatus.COMPLETED
        with pytest.raises(InvalidJobTransitionError, match="completed"):
            pause_job(db, job.id)

    def test_unknown_job(self, db: Session, transport) -> None:
        with pytest.raises(JobNotFoundError):
            pause_job(db, "nope")
        with pytest.raises(JobNotFoundError):
            process_batch(db, "nope", transport)


# ── Batches ───────────────────────────────────────────────────────────────────


class TestProcessBatch:
    def test_end_to_end(self, db: Session, cfg: SyncConfig, transport, sleeps) -> None:
        for n in (1, 2, 3):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)

        result = process_batch(db, job.id, transport, cfg=cfg, sleep=sleeps.append)

        assert (result.processed, result.created, result.errors) == (3, 3, 0)
        assert result.is_complete
        assert result.message == ALL_SYNCED_MESSAGE
        assert result.bills_processed == [("HB 1", "created"), ("HB 2", "created"), ("HB 3", "created")]
        job = get_job(db, job.id)
        assert job.status is SyncJobStatus.COMPLETED
        assert job.progress_by_type == {"HB": 3}
        assert job.completed_types == {"HB": True}
        assert job.total_created == 3
        assert bill_counts_by_type(db) == {"HB": 3}

    def test_resumes_above_stored_bills(self, db: Session, cfg: SyncConfig, transport) -> None:
        _stored(db, "HB", 150)
        for n in (149, 150, 151, 152):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)
        result = process_batch(db, job.id, transport, cfg=cfg)
        assert transport.fetch_calls == [("HB", 151), ("HB", 152)]
        assert result.created == 2

    def test_existing_bill_updated(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("HB", 1)
        job = create_job(db, cfg)
        _stored(db, "HB", 1)  # lands after the job seeded its watermark
        result = process_batch(db, job.id, transport, cfg=cfg)
        assert result.bills_processed == [("HB 1", "updated")]
        assert get_job(db, job.id).total_updated == 1

    def test_batch_size_bound(self, db: Session, cfg: SyncConfig, transport, sleeps) -> None:
        for n in range(1, 26):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)

        first = process_batch(db, job.id, transport, cfg=cfg, sleep=sleeps.append)
        assert first.processed == 20
        assert not first.is_complete
        assert first.message == "Processed 20 bills (HB)"
        assert get_job(db, job.id).progress_by_type == {"HB": 20}

        second = process_batch(db, job.id, transport, cfg=cfg, sleep=sleeps.append)
        assert second.processed == 5
        assert second.is_complete

    def test_rate_limit_pause(self, db: Session, cfg: SyncConfig, transport, sleeps) -> None:
        for n in range(1, 11):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)
        process_batch(db, job.id, transport, cfg=replace(cfg, batch_delay_ms=250), sleep=sleeps.append)
        assert sleeps == [0.25, 0.25]

    def test_not_found_skipped_and_watermark_advances(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("HB", 1)
        transport.list_only("HB", 2)
        transport.add_bill("HB", 3)
        job = create_job(db, cfg)
        result = process_batch(db, job.id, transport, cfg=cfg)
        assert (result.created, result.skipped, result.errors) == (2, 1, 0)
        assert ("HB 2", "skipped") in result.bills_processed
        assert get_job(db, job.id).progress_by_type == {"HB": 3}

    def test_errors_counted_not_raised(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("HB", 1)
        transport.add_bill("HB", 2)
        transport.errors[("HB", 2)] = "FTP error: timed out"
        transport.add_bill("HB", 3, "<billhistory>garbage</billhistory>")
        job = create_job(db, cfg)

        result = process_batch(db, job.id, transport, cfg=cfg)

        assert (result.created, result.errors) == (1, 2)
        job = get_job(db, job.id)
        assert job.total_errors == 2
        assert job.last_error == "HB 3: Failed to parse bill history"
        assert job.status is SyncJobStatus.COMPLETED

    def test_types_in_order(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("SB", 1)
        cfg = replace(cfg, bill_types=("HB", "SB"))
        job = create_job(db, cfg)

        first = process_batch(db, job.id, transport, cfg=cfg)
        assert first.processed == 0
        assert first.message == "Completed HB, moving to next type"
        assert not first.is_complete
        assert get_job(db, job.id).completed_types == {"HB": True}

        second = process_batch(db, job.id, transport, cfg=cfg)
        assert second.bills_processed == [("SB 1", "created")]
        assert second.is_complete

    def test_unlistable_source_is_an_error_not_completion(self, db: Session, cfg: SyncConfig) -> None:
        job = create_job(db, cfg)
        conn = SharedFtpConnection("ftp.example", ftp_factory=_UnreachableFtp)
        with FtpTransport(connection=conn) as ftp:
            result = process_batch(db, job.id, ftp, cfg=cfg)

        assert not result.is_complete
        assert result.errors == 1
        assert "Connection timed out" in result.source_error
        job = get_job(db, job.id)
        assert job.status is SyncJobStatus.RUNNING
        assert job.total_errors == 1
        assert "Connection timed out" in job.last_error
        assert job.completed_types == {}

    def test_listing_retried_on_next_batch(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("HB", 1)
        transport.listing_errors["HB"] = "FTP error: 421 Service not available"
        scanner = BillScanner(transport, AvailableBillsCache())
        job = create_job(db, cfg)

        failed = process_batch(db, job.id, transport, cfg=cfg, scanner=scanner)
        assert failed.source_error == "Could not list HB bills: FTP error: 421 Service not available"
        assert len(scanner.cache) == 0

        del transport.listing_errors["HB"]
        result = process_batch(db, job.id, transport, cfg=cfg, scanner=scanner)
        assert result.bills_processed == [("HB 1", "created")]
        assert result.is_complete
        assert transport.list_calls == ["HB", "HB"]
        assert get_job(db, job.id).total_errors == 1

    def test_not_running_is_noop(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("HB", 1)
        job = create_job(db, cfg)
        pause_job(db, job.id)
        result = process_batch(db, job.id, transport, cfg=cfg)
        assert result == BatchResult(message="Job is paused")
        assert transport.fetch_calls == []

        stop_job(db, job.id)
        assert process_batch(db, job.id, transport, cfg=cfg).message == "Job is stopped"

    def test_completed_job_reports_complete(self, db: Session, cfg: SyncConfig, transport) -> None:
        job = create_job(db, cfg)
        process_batch(db, job.id, transport, cfg=cfg)
        again = process_batch(db, job.id, transport, cfg=cfg)
        assert again.is_complete
        assert again.message == "Job is completed"

    def test_pause_mid_batch(self, db: Session, cfg: SyncConfig, transport) -> None:
        for n in (1, 2, 3):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)

        def _pause_on_second(bill_type: str, bill_number: int) -> None:
            if bill_number == 2:
                pause_job(db, job.id)

        transport.on_fetch = _pause_on_second
        result = process_batch(db, job.id, transport, cfg=cfg)

        assert result.processed == 2
        assert not result.is_complete
        paused = get_job(db, job.id)
        assert paused.status is SyncJobStatus.PAUSED
        assert paused.progress_by_type == {"HB": 2}

        transport.on_fetch = None
        resume_job(db, job.id)
        result = process_batch(db, job.id, transport, cfg=cfg)
        assert result.bills_processed == [("HB 3", "created")]
        assert get_job(db, job.id).status is SyncJobStatus.COMPLETED

    def test_stop_mid_batch_is_never_completed(self, db: Session, cfg: SyncConfig, transport) -> None:
        for n in (1, 2):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)

        def _stop_on_last(bill_type: str, bill_number: int) -> None:
            if bill_number == 2:
                stop_job(db, job.id)

        transport.on_fetch = _stop_on_last
        result = process_batch(db, job.id, transport, cfg=cfg)
        assert result.processed == 2
        assert get_job(db, job.id).status is SyncJobStatus.STOPPED

    def test_disabled_after_creation(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("HB", 1)
        job = create_job(db, cfg)
        with pytest.raises(SyncDisabledError):
            process_batch(db, job.id, transport, cfg=replace(cfg, sync_enabled=False))

    def test_to_dict(self, db: Session, cfg: SyncConfig, transport) -> None:
        transport.add_bill("HB", 1)
        job = create_job(db, cfg)
        result = process_batch(db, job.id, transport, cfg=cfg)
        assert result.to_dict()["billsProcessed"] == [{"billId": "HB 1", "status": "created"}]
        body = get_job(db, job.id).to_dict()
        assert body["status"] == "COMPLETED"
        assert body["progressByType"] == {"HB": 1}
        assert body["totalCreated"] == 1


class TestRunUntilComplete:
    def test_runs_all_batches_with_one_scan(self, db: Session, cfg: SyncConfig, transport, sleeps) -> None:
        for n in range(1, 46):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)
        seen: list[BatchResult] = []

        last = run_until_complete(db, job.id, transport, cfg=cfg, sleep=sleeps.append, on_batch=seen.append)

        assert [b.processed for b in seen] == [20, 20, 5]
        assert last.is_complete
        assert transport.list_calls == ["HB"]
        assert get_job(db, job.id).total_processed == 45

    def test_max_batches(self, db: Session, cfg: SyncConfig, transport, sleeps) -> None:
        for n in range(1, 46):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)
        last = run_until_complete(db, job.id, transport, cfg=cfg, max_batches=1, sleep=sleeps.append)
        assert not last.is_complete
        assert get_job(db, job.id).status is SyncJobStatus.RUNNING

    def test_stops_when_paused(self, db: Session, cfg: SyncConfig, transport, sleeps) -> None:
        for n in range(1, 46):
            transport.add_bill("HB", n)
        job = create_job(db, cfg)
        seen: list[BatchResult] = []

        def _pause_after_first(result: BatchResult) -> None:
            seen.append(result)
            if len(seen) == 1:
                pause_job(db, job.id)

        run_until_complete(db, job.id, transport, cfg=cfg, sleep=sleeps.append, on_batch=_pause_after_first)
        assert len(seen) == 1
        assert get_job(db, job.id).progress_by_type == {"HB": 20}

    def test_stops_on_listing_failure(self, db: Session, cfg: SyncConfig, transport, sleeps) -> None:
        transport.listing_errors["HB"] = "HTTP error: timed out"
        job = create_job(db, cfg)
        seen: list[BatchResult] = []

        last = run_until_complete(db, job.id, transport, cfg=cfg, sleep=sleeps.append, on_batch=seen.append)

        assert len(seen) == 1
        assert last.source_error == "Could not list HB bills: HTTP error: timed out"
        assert last.to_dict()["sourceError"] == last.source_error
        assert get_job(db, job.id).status is SyncJobStatus.RUNNING


class TestJobConfig:
    def test_settings_edit_does_not_change_running_job(self, db: Session, transport, sleeps) -> None:
        set_setting(db, "BILL_TYPES", ["HB"])
        set_setting(db, "BATCH_DELAY_MS", 0)
        db.commit()
        for n in range(1, 6):
            transport.add_bill("HB", n)
        job = create_job(db)

        set_setting(db, "BATCH_DELAY_MS", 900)
        set_setting(db, "BILL_TYPES", ["SB"])
        db.commit()
        result = process_batch(db, job.id, transport, sleep=sleeps.append)

        assert result.processed == 5
        assert sleeps == [0.0]
        job = get_job(db, job.id)
        assert job_config(db, job).batch_delay_ms == 0
        assert job_config(db, job).bill_types == ("HB",)
        assert job.to_dict()["config"]["batchDelayMs"] == 0

    def test_kill_switch_read_live(self, db: Session, transport) -> None:
        job = create_job(db)
        set_setting(db, "SYNC_ENABLED", False)
        db.commit()
        with pytest.raises(SyncDisabledError):
            process_batch(db, job.id, transport)
