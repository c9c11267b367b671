"""Transport contract shared by the FTP and HTTP sources.

The remote layout is fixed by the legislature::

    /bills/<session>/billhistory/<house_bills|senate_bills>/
        <TYPE><start:05d>_<TYPE><end:05d>/<TYPE> <number>.xml

Bills 1-99 share the first bucket; from 100 on, buckets hold 100 bills each
(``HB00100_HB00199``, ``HB00200_HB00299``, ...).
"""

from __future__ import annotations

import abc
import enum
import logging
import re
from dataclasses import dataclass

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_TIMEOUT_S, USER_AGENT
from ..normalize import clean_bill_text_html

LOGGER = logging.getLogger(__name__)

_HOUSE_TYPES = frozenset({"HB", "HJR", "HCR"})
_RE_BILL_NUMBER = re.compile(r"\d+")
_XML_MARKERS = ("<?xml", "<billhistory", "<BillHistory")


# ── Fetch results ────────────────────────────────────────────────────────────


class FetchStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class FetchResult:
    """Outcome of one document fetch.

    ``NOT_FOUND`` means the bill does not exist at the source (expected);
    ``ERROR`` is a genuine transport failure or a malformed response.
    """

    status: FetchStatus
    content: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, content: str) -> FetchResult:
        return cls(FetchStatus.OK, content=content)

    @classmethod
    def not_found(cls) -> FetchResult:
        return cls(FetchStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: str) -> FetchResult:
        return cls(FetchStatus.ERROR, error=error)


# ── Path convention ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DirectoryRange:
    start: int
    end: int
    dirname: str  # e.g. "HB00100_HB00199"

    def __contains__(self, bill_number: object) -> bool:
        return isinstance(bill_number, int) and self.start <= bill_number <= self.end


def directory_range(bill_type: str, bill_number: int) -> DirectoryRange:
    """Bucket directory holding *bill_number*.

    >>> directory_range("HB", 1).dirname
    'HB00001_HB00099'
    >>> directory_range("SB", 250).dirname
    'SB00200_SB00299'
    """
    bill_type = bill_type.upper()
    if bill_number < 1:
        raise ValueError(f"bill number must be positive, got {bill_number}")
    if bill_number <= 99:
        start, end = 1, 99
    else:
        start = (bill_number - 100) // 100 * 100 + 100
        end = start + 99
    return DirectoryRange(start, end, f"{bill_type}{start:05d}_{bill_type}{end:05d}")


def bill_type_path(bill_type: str) -> str:
    return "house_bills" if bill_type.upper() in _HOUSE_TYPES else "senate_bills"


def bill_history_root(session_code: str, bill_type: str) -> str:
    return f"/bills/{session_code}/billhistory/{bill_type_path(bill_type)}"


def bill_history_path(session_code: str, bill_type: str, bill_number: int) -> str:
    bill_type = bill_type.upper()
    bucket = directory_range(bill_type, bill_number)
    return f"{bill_history_root(session_code, bill_type)}/{bucket.dirname}/{bill_type} {bill_number}.xml"


def bucket_dir_pattern(bill_type: str) -> re.Pattern[str]:
    t = re.escape(bill_type.upper())
    return re.compile(rf"^{t}\d{{5}}_{t}\d{{5}}$")


def bill_number_from_filename(filename: str) -> int | None:
    """``"HB 123.xml"`` → ``123``; ``None`` for anything that isn't an XML file."""
    if not filename.lower().endswith(".xml"):
        return None
    m = _RE_BILL_NUMBER.search(filename)
    return int(m.group(0)) if m else None


def looks_like_bill_history(content: str) -> bool:
    return any(marker in content for marker in _XML_MARKERS)


# ── HTTP session (bill text, HTTP mirror) ────────────────────────────────────


def build_http_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[429, 500, 502, 503, 504],
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=5, pool_maxsize=5)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = USER_AGENT
    return session


# ── Transport interface ──────────────────────────────────────────────────────


class TransportClient(abc.ABC):
    """Source of bill-history documents and bill-text pages.

    Implementations never raise for network trouble: failures come back as
    :class:`FetchResult` errors, empty listings, or ``None`` text.
    """

    name: str = "base"

    def __init__(self, http_session: requests.Session | None = None, timeout: float | None = None):
        self._http = http_session
        self.timeout = HTTP_TIMEOUT_S if timeout is None else timeout

    @property
    def http(self) -> requests.Session:
        if self._http is None:
            self._http = build_http_session()
        return self._http

    @abc.abstractmethod
    def fetch_bill_document(self, session_code: str, bill_type: str, bill_number: int) -> FetchResult:
        """Fetch ``<TYPE> <n>.xml`` for one bill."""

    @abc.abstractmethod
    def list_available_bill_numbers(self, session_code: str, bill_type: str) -> list[int]:
        """All bill numbers present at the source for *bill_type*, ascending.

        An absent type directory gives ``[]``; failing to list it raises
        :class:`~txleg_sync.errors.SourceListingError`.  A bucket that cannot
        be listed is logged and skipped.
        """

    def fetch_text_document(self, url: str) -> str | None:
        """Download a bill-text HTML page and normalize it.

        Bill text is always served over HTTP(S), whichever transport fetched
        the history document.
        """
        try:
            resp = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Failed to fetch bill text %s: %s", url, exc)
            return None
        if not resp.ok:
            LOGGER.debug("Bill text %s returned HTTP %d", url, resp.status_code)
            return None
        return clean_bill_text_html(resp.text)

    def close(self) -> None:
        """Release any pooled connections."""
        if self._http is not None:
            self._http.close()
            self._http = None

    def __enter__(self) -> TransportClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
