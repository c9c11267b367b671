"""HTTP surface for operating the sync: job controls, live stream, settings.

Run with::

    uvicorn txleg_sync.api:app --port 8000
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import iterate_in_threadpool

from .config import API_KEY, CORS_ORIGINS
from .database import get_session_factory
from .errors import (
    InvalidJobTransitionError,
    JobAlreadyActiveError,
    JobNotFoundError,
    SettingValueError,
    SyncDisabledError,
    SyncError,
)
from .events import SyncEvent, event_payload
from .jobs import create_job, get_active_job, get_job, pause_job, process_batch, resume_job, stop_job
from .scanner import AvailableBillsCache, BillScanner
from .settings import get_setting, list_settings, set_setting
from .sources import TransportClient, build_transport, close_shared_client
from .store import bill_counts_by_type, delete_all_bills
from .stream import StreamOptions, sync_bills_with_progress
from .tables import ACTIVE_JOB_STATUSES, BillRecord

# ── Configure logging ────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:     %(message)s",
    stream=sys.stderr,
)
LOGGER = logging.getLogger(__name__)

CLEAR_CONFIRMATION = "CONFIRM_DELETE_ALL_DATA"


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    close_transport()
    LOGGER.info("Transport closed")


app = FastAPI(title="txleg-sync", lifespan=lifespan)

# Scan results per job, reused across its batches; dropped once the job ends.
_scan_caches: dict[str, AvailableBillsCache] = {}
_scan_caches_lock = threading.Lock()


# ── Dependencies ─────────────────────────────────────────────────────────────


def get_session_maker() -> sessionmaker[Session]:
    return get_session_factory()


def get_db(factory: sessionmaker[Session] = Depends(get_session_maker)) -> Iterator[Session]:
    db = factory()
    try:
        yield db
    finally:
        db.close()


_transport: TransportClient | None = None
_transport_lock = threading.Lock()


def get_transport() -> TransportClient:
    """The app-wide transport, built on first use and closed on shutdown."""
    global _transport
    with _transport_lock:
        if _transport is None:
            _transport = build_transport()
        return _transport


def close_transport() -> None:
    global _transport
    with _transport_lock:
        if _transport is not None:
            _transport.close()
            _transport = None
    close_shared_client()


# ── CORS middleware ──────────────────────────────────────────────────────────
_cors_origins = [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API key authentication middleware ────────────────────────────────────────
@app.middleware("http")
async def _api_key_middleware(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    """Require ``X-API-Key`` when ``TXLEG_API_KEY`` is set (health and docs exempt)."""
    if API_KEY:
        exempt = {"/health", "/docs", "/openapi.json", "/redoc"}
        if request.url.path not in exempt and request.method != "OPTIONS":
            if request.headers.get("X-API-Key", "") != API_KEY:
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Invalid or missing API key"},
                )
    return await call_next(request)


# ── Request logging middleware ───────────────────────────────────────────────
@app.middleware("http")
async def _request_logging_middleware(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    t0 = time.perf_counter()
    response: Response = await call_next(request)
    LOGGER.info(
        "%s %s %d (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - t0) * 1000,
    )
    return response


# ── Error mapping ────────────────────────────────────────────────────────────
_ERROR_STATUS: dict[type[SyncError], int] = {
    SyncDisabledError: 403,
    JobNotFoundError: 404,
    JobAlreadyActiveError: 409,
    InvalidJobTransitionError: 409,
}


@app.exception_handler(SyncError)
async def _sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    status = _ERROR_STATUS.get(type(exc), 500)
    return JSONResponse(status_code=status, content={"error": str(exc)})


@app.exception_handler(SettingValueError)
async def _setting_error_handler(request: Request, exc: SettingValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


# ── Health ───────────────────────────────────────────────────────────────────
@app.get("/health")
def health(db: Session = Depends(get_db)) -> dict:
    return {
        "status": "ok",
        "bills": db.scalar(select(func.count(BillRecord.id))) or 0,
    }


# ── Sync jobs ────────────────────────────────────────────────────────────────


class JobAction(BaseModel):
    action: str = ""
    jobId: str | None = None


def _scanner_for(job_id: str, transport: TransportClient) -> BillScanner:
    with _scan_caches_lock:
        cache = _scan_caches.setdefault(job_id, AvailableBillsCache())
    return BillScanner(transport, cache)


def _forget_scan_cache(job_id: str) -> None:
    with _scan_caches_lock:
        _scan_caches.pop(job_id, None)


@app.get("/sync/job")
def active_job(db: Session = Depends(get_db)) -> dict:
    job = get_active_job(db)
    return {"job": job.to_dict() if job else None}


@app.get("/sync/job/{job_id}")
def job_by_id(job_id: str, db: Session = Depends(get_db)) -> dict:
    job = get_job(db, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return {"job": job.to_dict()}


@app.post("/sync/job")
def job_action(
    body: JobAction,
    db: Session = Depends(get_db),
    transport: TransportClient = Depends(get_transport),
) -> Any:
    action = body.action
    if action == "start":
        job = create_job(db)
        return {"job": job.to_dict(), "message": "Sync job started"}

    if action not in ("pause", "resume", "stop", "process"):
        return JSONResponse(status_code=400, content={"error": "Invalid action"})
    if not body.jobId:
        return JSONResponse(status_code=400, content={"error": "Missing jobId"})

    if action == "pause":
        return {"job": pause_job(db, body.jobId).to_dict(), "message": "Sync job paused"}
    if action == "resume":
        return {"job": resume_job(db, body.jobId).to_dict(), "message": "Sync job resumed"}
    if action == "stop":
        job = stop_job(db, body.jobId)
        _forget_scan_cache(job.id)
        return {"job": job.to_dict(), "message": "Sync job stopped"}

    result = process_batch(db, body.jobId, transport, scanner=_scanner_for(body.jobId, transport))
    job = get_job(db, body.jobId)
    if job is not None and job.status not in ACTIVE_JOB_STATUSES:
        _forget_scan_cache(job.id)
    return {"job": job.to_dict() if job else None, "batch": result.to_dict()}


# ── Streaming sync (Server-Sent Events) ──────────────────────────────────────


class StreamRequest(BaseModel):
    maxBills: int | None = None
    billTypes: list[str] | None = None
    syncUntilComplete: bool | None = None


def format_sse(event: SyncEvent) -> str:
    return f"event: {event.type}\ndata: {json.dumps(event_payload(event))}\n\n"


def _stream_events(
    factory: sessionmaker[Session],
    transport: TransportClient,
    options: StreamOptions,
    abort: threading.Event,
) -> Iterator[SyncEvent]:
    db = factory()
    try:
        yield from sync_bills_with_progress(db, transport, options, abort=abort)
    finally:
        db.close()


@app.post("/sync/stream")
def sync_stream(
    request: Request,
    body: StreamRequest | None = None,
    factory: sessionmaker[Session] = Depends(get_session_maker),
    transport: TransportClient = Depends(get_transport),
) -> StreamingResponse:
    body = body or StreamRequest()
    options = StreamOptions(
        max_bills=body.maxBills,
        bill_types=body.billTypes,
        sync_until_complete=True if body.syncUntilComplete is None else body.syncUntilComplete,
    )
    abort = threading.Event()

    async def _frames() -> AsyncIterator[str]:
        try:
            async for event in iterate_in_threadpool(_stream_events(factory, transport, options, abort)):
                if await request.is_disconnected():
                    LOGGER.info("Sync stream cancelled by client")
                    abort.set()
                yield format_sse(event)
        finally:
            abort.set()

    return StreamingResponse(
        _frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ── Status / maintenance ─────────────────────────────────────────────────────


@app.get("/sync/status")
def sync_status(db: Session = Depends(get_db)) -> dict:
    latest = db.scalar(select(BillRecord).order_by(BillRecord.updated_at.desc()).limit(1))
    by_type = bill_counts_by_type(db)
    return {
        "status": {
            "totalBills": sum(by_type.values()),
            "billsByType": by_type,
            "lastSyncAt": latest.updated_at.isoformat() if latest else None,
            "lastSyncedBill": latest.bill_id if latest else None,
            "syncEnabled": bool(get_setting(db, "SYNC_ENABLED")),
            "sessionCode": get_setting(db, "SESSION_CODE"),
        }
    }


@app.delete("/sync/clear")
def clear_bills(
    db: Session = Depends(get_db),
    x_confirm_delete: str | None = Header(default=None),
) -> Any:
    if x_confirm_delete != CLEAR_CONFIRMATION:
        return JSONResponse(status_code=400, content={"error": "Missing confirmation header"})
    return {"success": True, "deleted": {"bills": delete_all_bills(db)}}


# ── Settings ─────────────────────────────────────────────────────────────────


class SettingUpdate(BaseModel):
    value: Any
    updatedBy: str | None = None


@app.get("/settings")
def read_settings(category: str | None = None, db: Session = Depends(get_db)) -> dict:
    return {"settings": list_settings(db, category)}


@app.put("/settings/{key}")
def update_setting(key: str, body: SettingUpdate, db: Session = Depends(get_db)) -> dict:
    row = set_setting(db, key, body.value, updated_by=body.updatedBy)
    db.commit()
    return {"key": row.key, "value": row.value, "type": row.type.value}
