"""Append-only run log for sync invocations.

One JSON object per line in ``.run_log.jsonl`` (override with
``TXLEG_RUN_LOG``): which task ran, when, how long each phase took, how it
ended, and task-specific counts.  ``scripts/sync_job.py history`` reads it
back to show recent runs.

Usage:
    from txleg_sync.run_log import RunLogger

    with RunLogger("sync_stream", meta={"session": "89R"}) as log:
        with log.phase_ctx("Scan"):
            ...
        log.meta["created"] = 12
    # On exit, the run is appended to the log file
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_LOG_PATH = Path(".run_log.jsonl")


@dataclass
class RunRecord:
    """One line in the run log."""

    run_id: str
    task: str  # sync_stream | sync_batch | sync_run
    started_at: str  # ISO
    ended_at: str | None = None
    duration_s: float | None = None
    status: str = "running"  # ok | error | aborted | running
    phases: list[dict] = field(default_factory=list)  # [{name, duration_s, detail}]
    error: str | None = None
    meta: dict = field(default_factory=dict)  # e.g. job_id, created, errors

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json_line(cls, line: str) -> RunRecord | None:
        line = line.strip()
        if not line:
            return None
        try:
            d = json.loads(line)
            return cls(
                run_id=d.get("run_id", ""),
                task=d.get("task", ""),
                started_at=d.get("started_at", ""),
                ended_at=d.get("ended_at"),
                duration_s=d.get("duration_s"),
                status=d.get("status", "ok"),
                phases=d.get("phases", []),
                error=d.get("error"),
                meta=d.get("meta", {}),
            )
        except (json.JSONDecodeError, TypeError, AttributeError):
            return None


class RunLogger:
    """Context manager and programmatic API for logging a single run."""

    def __init__(
        self,
        task: str,
        *,
        log_path: Path | None = None,
        meta: dict | None = None,
    ):
        self.task = task
        self.log_path = log_path if log_path is not None else get_log_path()
        self.meta = dict(meta or {})
        self.run_id = uuid.uuid4().hex[:8]
        self.status = "ok"
        self.error: str | None = None
        self._started_at: str | None = None
        self._start_time: float | None = None
        self._phases: list[dict] = []

    def start(self) -> None:
        self._started_at = datetime.now(timezone.utc).isoformat()
        self._start_time = time.perf_counter()
        self._phases = []
        self.status = "ok"
        self.error = None

    def add_phase(self, name: str, duration_s: float, detail: str | None = None) -> None:
        self._phases.append({"name": name, "duration_s": round(duration_s, 2), "detail": detail})

    @contextmanager
    def phase_ctx(self, name: str, detail: str | None = None):
        """Time a phase; recorded even if the block raises."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.add_phase(name, time.perf_counter() - t0, detail)

    def end(self, status: str | None = None, error: str | None = None) -> RunRecord | None:
        if status is not None:
            self.status = status
        if error is not None:
            self.error = error
        return self._write()

    def _write(self) -> RunRecord | None:
        if self._start_time is None:
            return None
        ended_at = datetime.now(timezone.utc).isoformat()
        record = RunRecord(
            run_id=self.run_id,
            task=self.task,
            started_at=self._started_at or ended_at,
            ended_at=ended_at,
            duration_s=round(time.perf_counter() - self._start_time, 2),
            status=self.status,
            phases=self._phases,
            error=self.error,
            meta=self.meta,
        )
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(record.to_json_line() + "\n")
        except OSError as e:
            LOGGER.warning("Run log append failed: %s", e)
        return record

    def __enter__(self) -> RunLogger:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is KeyboardInterrupt:
            self.status = "aborted"
        elif exc_type is not None:
            self.status = "error"
            self.error = f"{exc_type.__name__}: {exc_val}" if exc_val else exc_type.__name__
        self.end()
        return None  # do not suppress


def load_recent_runs(
    n: int = 20,
    *,
    task: str | None = None,
    log_path: Path | None = None,
) -> list[RunRecord]:
    """Last *n* runs, newest first, optionally filtered by task."""
    path = log_path or get_log_path()
    if not path.exists():
        return []
    records: list[RunRecord] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            rec = RunRecord.from_json_line(line)
            if rec is None:
                continue
            if task is None or rec.task == task:
                records.append(rec)
    return records[::-1][:n]


def get_log_path() -> Path:
    return Path(os.environ.get("TXLEG_RUN_LOG", str(DEFAULT_LOG_PATH)))
