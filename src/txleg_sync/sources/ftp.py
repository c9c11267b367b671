"""FTP transport against ``ftp.legis.state.tx.us``.

Connection setup (login, passive mode) costs more than a small ``RETR``, and a
full session is thousands of files, so one connection is shared process-wide
and reused while it has been idle less than ``FTP_IDLE_TIMEOUT_S``.  The
server drops idle clients; a stale connection is closed and reopened before
the caller ever sees the failure.
"""

from __future__ import annotations

import ftplib
import io
import logging
import posixpath
import threading
import time
from collections.abc import Callable

from ..config import FTP_HOST, FTP_IDLE_TIMEOUT_S, FTP_TIMEOUT_S
from ..errors import SourceListingError
from .base import (
    FetchResult,
    TransportClient,
    bill_history_path,
    bill_history_root,
    bill_number_from_filename,
    bucket_dir_pattern,
    looks_like_bill_history,
)

LOGGER = logging.getLogger(__name__)

# Errors that mean "this connection is unusable", as opposed to a reply.
_CONNECTION_ERRORS = (EOFError, OSError, ftplib.error_temp, ftplib.error_reply, ftplib.error_proto)


class SharedFtpConnection:
    """Lazily opened, idle-expiring FTP connection."""

    def __init__(
        self,
        host: str = FTP_HOST,
        *,
        timeout: float = FTP_TIMEOUT_S,
        idle_timeout: float = FTP_IDLE_TIMEOUT_S,
        ftp_factory: Callable[..., ftplib.FTP] = ftplib.FTP,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.host = host
        self.timeout = timeout
        self.idle_timeout = idle_timeout
        self._factory = ftp_factory
        self._clock = clock
        self._ftp: ftplib.FTP | None = None
        self._last_used = 0.0
        self._lock = threading.RLock()

    def acquire(self) -> tuple[ftplib.FTP, bool]:
        """Return ``(connection, fresh)``; *fresh* is True if just opened."""
        with self._lock:
            now = self._clock()
            if self._ftp is not None and now - self._last_used < self.idle_timeout:
                self._last_used = now
                return self._ftp, False
            self.reset()
            LOGGER.debug("Connecting to ftp://%s ...", self.host)
            ftp = self._factory(self.host, timeout=self.timeout)
            ftp.login()
            ftp.set_pasv(True)
            self._ftp = ftp
            self._last_used = now
            return ftp, True

    def touch(self) -> None:
        with self._lock:
            self._last_used = self._clock()

    def reset(self) -> None:
        """Drop the current connection, politely if possible."""
        with self._lock:
            ftp, self._ftp = self._ftp, None
            if ftp is None:
                return
            try:
                ftp.quit()
            except ftplib.all_errors:
                ftp.close()


_shared: SharedFtpConnection | None = None
_shared_lock = threading.Lock()


def shared_connection() -> SharedFtpConnection:
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = SharedFtpConnection()
        return _shared


def close_shared_client() -> None:
    """Close the process-wide connection (end of a run, or shutdown)."""
    global _shared
    with _shared_lock:
        if _shared is not None:
            _shared.reset()
            _shared = None


def _is_not_found(exc: ftplib.error_perm) -> bool:
    return str(exc).strip().startswith("550")


class FtpTransport(TransportClient):
    """Reads bill history straight off the legislature's FTP server."""

    name = "ftp"

    def __init__(self, connection: SharedFtpConnection | None = None, **kwargs):
        super().__init__(**kwargs)
        self._conn = connection

    @property
    def connection(self) -> SharedFtpConnection:
        return self._conn if self._conn is not None else shared_connection()

    def _retrieve(self, path: str) -> bytes:
        """RETR *path*, reopening once if a reused connection turns out stale."""
        conn = self.connection
        while True:
            ftp, fresh = conn.acquire()
            buf = io.BytesIO()
            try:
                ftp.retrbinary(f"RETR {path}", buf.write)
            except _CONNECTION_ERRORS:
                conn.reset()
                if fresh:
                    raise
                LOGGER.debug("Stale FTP connection, reconnecting for %s", path)
                continue
            conn.touch()
            return buf.getvalue()

    def _list(self, path: str) -> list[str]:
        conn = self.connection
        while True:
            ftp, fresh = conn.acquire()
            try:
                names = ftp.nlst(path)
            except ftplib.error_perm as exc:
                # Some servers answer 550 for an empty directory.
                if _is_not_found(exc):
                    return []
                raise
            except _CONNECTION_ERRORS:
                conn.reset()
                if fresh:
                    raise
                continue
            conn.touch()
            return [posixpath.basename(n.rstrip("/")) for n in names]

    def fetch_bill_document(self, session_code: str, bill_type: str, bill_number: int) -> FetchResult:
        path = bill_history_path(session_code, bill_type, bill_number)
        try:
            raw = self._retrieve(path)
        except ftplib.error_perm as exc:
            if _is_not_found(exc):
                return FetchResult.not_found()
            LOGGER.warning("FTP refused %s: %s", path, exc)
            return FetchResult.failed(f"FTP error: {exc}")
        except ftplib.all_errors as exc:
            self.connection.reset()
            LOGGER.warning("FTP fetch failed for %s: %s", path, exc)
            return FetchResult.failed(f"FTP error: {exc}")

        content = raw.decode("utf-8", errors="replace")
        if not looks_like_bill_history(content):
            LOGGER.warning("Malformed response for %s (%d bytes)", path, len(raw))
            return FetchResult.failed("Malformed response: not a bill-history document")
        return FetchResult.ok(content)

    def list_available_bill_numbers(self, session_code: str, bill_type: str) -> list[int]:
        root = bill_history_root(session_code, bill_type)
        pattern = bucket_dir_pattern(bill_type)
        try:
            buckets = sorted(d for d in self._list(root) if pattern.match(d))
        except ftplib.all_errors as exc:
            self.connection.reset()
            LOGGER.warning("Failed to list %s: %s", root, exc)
            raise SourceListingError(bill_type, f"FTP error: {exc}") from exc

        numbers: set[int] = set()
        for bucket in buckets:
            try:
                names = self._list(f"{root}/{bucket}")
            except ftplib.all_errors as exc:
                self.connection.reset()
                LOGGER.warning("Failed to list %s/%s: %s", root, bucket, exc)
                continue
            for name in names:
                n = bill_number_from_filename(name)
                if n is not None:
                    numbers.add(n)
        LOGGER.info("  ✓ %d %s bills listed across %d directories", len(numbers), bill_type, len(buckets))
        return sorted(numbers)

    def close(self) -> None:
        super().close()
        if self._conn is not None:
            self._conn.reset()
