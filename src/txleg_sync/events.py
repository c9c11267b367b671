"""Typed progress events emitted by the sync loops.

Consumers (rich console, SSE endpoint, tests) iterate a stream of these; the
loops never know how they are rendered.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Literal, Union

BillOutcome = Literal["created", "updated", "skipped", "error"]
LogLevel = Literal["info", "warn", "error"]


class SyncPhase(str, enum.Enum):
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    PROCESSING_BILLS = "processing_bills"
    COMPLETE = "complete"


@dataclass
class PhaseEvent:
    type: ClassVar[str] = "phase"
    phase: SyncPhase
    message: str


@dataclass
class ProgressEvent:
    type: ClassVar[str] = "progress"
    current: int
    total: int
    percent: int
    bill_type: str


@dataclass
class BillEvent:
    type: ClassVar[str] = "bill"
    bill_id: str
    status: BillOutcome
    message: str | None = None


@dataclass
class SyncSummary:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class CompleteEvent:
    type: ClassVar[str] = "complete"
    success: bool
    duration_ms: int
    summary: SyncSummary = field(default_factory=SyncSummary)


@dataclass
class ErrorEvent:
    type: ClassVar[str] = "error"
    message: str
    details: str | None = None


@dataclass
class LogEvent:
    type: ClassVar[str] = "log"
    message: str
    level: LogLevel = "info"


SyncEvent = Union[PhaseEvent, ProgressEvent, BillEvent, CompleteEvent, ErrorEvent, LogEvent]


def progress_percent(current: int, total: int) -> int:
    """Rounded percentage, held at 99 until the run reports complete."""
    if total <= 0:
        return 0
    return min(round(current / total * 100), 99)


def event_payload(event: SyncEvent) -> dict[str, Any]:
    """JSON-ready body (camelCase keys, enums as values)."""
    data = asdict(event)
    out: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, enum.Enum):
            value = value.value
        head, *rest = key.split("_")
        out[head + "".join(p.title() for p in rest)] = value
    return out
