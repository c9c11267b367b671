"""HTTP transport for a web mirror of the FTP tree.

Same path layout as the FTP server, served as static files with HTML
directory index pages.  Stateless apart from the pooled ``requests.Session``.
"""

from __future__ import annotations

import logging
import posixpath
from urllib.parse import quote, unquote, urlparse

import requests
from bs4 import BeautifulSoup

from ..config import HTTP_BASE_URL
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


class HttpTransport(TransportClient):
    name = "http"

    def __init__(self, base_url: str = HTTP_BASE_URL, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return self.base_url + quote(path)

    def _index_entries(self, path: str) -> list[str]:
        """Names linked from the directory index at *path* (trailing ``/`` stripped).

        Raises ``requests.RequestException`` on failure.
        """
        url = self._url(path.rstrip("/") + "/")
        resp = self.http.get(url, timeout=self.timeout)
        resp.raise_for_status()
        soup = BeautifulSoup(resp.text, "html.parser")
        entries: list[str] = []
        for link in soup.find_all("a", href=True):
            href = link["href"]
            if href.startswith(("?", "#")) or href in ("../", "/"):
                continue
            name = posixpath.basename(unquote(urlparse(href).path).rstrip("/"))
            if name:
                entries.append(name)
        return entries

    def fetch_bill_document(self, session_code: str, bill_type: str, bill_number: int) -> FetchResult:
        url = self._url(bill_history_path(session_code, bill_type, bill_number))
        try:
            resp = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Failed to fetch %s: %s", url, exc)
            return FetchResult.failed(f"HTTP error: {exc}")

        if resp.status_code == 404:
            return FetchResult.not_found()
        if not resp.ok:
            LOGGER.warning("HTTP %d for %s", resp.status_code, url)
            return FetchResult.failed(f"HTTP {resp.status_code}")

        content = resp.text
        if not looks_like_bill_history(content):
            LOGGER.warning("Malformed response for %s", url)
            return FetchResult.failed("Malformed response: not a bill-history document")
        return FetchResult.ok(content)

    def list_available_bill_numbers(self, session_code: str, bill_type: str) -> list[int]:
        root = bill_history_root(session_code, bill_type)
        pattern = bucket_dir_pattern(bill_type)
        try:
            buckets = sorted({d for d in self._index_entries(root) if pattern.match(d)})
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                LOGGER.info("No %s directory at %s", bill_type, root)
                return []
            LOGGER.warning("Failed to list %s: %s", root, exc)
            raise SourceListingError(bill_type, f"HTTP error: {exc}") from exc
        except requests.RequestException as exc:
            LOGGER.warning("Failed to list %s: %s", root, exc)
            raise SourceListingError(bill_type, f"HTTP error: {exc}") from exc

        numbers: set[int] = set()
        for bucket in buckets:
            try:
                names = self._index_entries(f"{root}/{bucket}")
            except requests.RequestException as exc:
                LOGGER.warning("Failed to list %s/%s: %s", root, bucket, exc)
                continue
            for name in names:
                n = bill_number_from_filename(name)
                if n is not None:
                    numbers.add(n)
        LOGGER.info("  ✓ %d %s bills listed across %d directories", len(numbers), bill_type, len(buckets))
        return sorted(numbers)
