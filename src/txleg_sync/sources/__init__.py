"""Remote sources for bill-history documents.

The pipeline only sees :class:`TransportClient`; which implementation runs is
a configuration choice (``TXLEG_TRANSPORT=ftp|http``).
"""

from __future__ import annotations

from ..config import TRANSPORT
from .base import (
    DirectoryRange,
    FetchResult,
    FetchStatus,
    TransportClient,
    bill_history_path,
    bill_type_path,
    directory_range,
)
from .ftp import FtpTransport, close_shared_client
from .http import HttpTransport

_TRANSPORTS: dict[str, type[TransportClient]] = {
    "ftp": FtpTransport,
    "http": HttpTransport,
}


def build_transport(kind: str | None = None) -> TransportClient:
    kind = (kind or TRANSPORT).lower().strip()
    try:
        cls = _TRANSPORTS[kind]
    except KeyError:
        raise ValueError(f"Unknown transport {kind!r} (expected one of {sorted(_TRANSPORTS)})") from None
    return cls()


__all__ = [
    "DirectoryRange",
    "FetchResult",
    "FetchStatus",
    "FtpTransport",
    "HttpTransport",
    "TransportClient",
    "bill_history_path",
    "bill_type_path",
    "build_transport",
    "close_shared_client",
    "directory_range",
]
