"""Bill-number scanning: what exists remotely vs. what is already stored.

Directory enumeration gives an exact work list per type, so a run never has
to guess where a type ends by counting consecutive misses.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from .sources import TransportClient
from .store import get_last_persisted

LOGGER = logging.getLogger(__name__)


class AvailableBillsCache:
    """Remote listings keyed by ``(session_code, bill_type)``.

    Owned by one run; the remote tree does not change mid-run.  Call
    :meth:`clear` (or make a new cache) before the next run.
    """

    def __init__(self) -> None:
        self._lists: dict[tuple[str, str], list[int]] = {}

    def get(self, session_code: str, bill_type: str) -> list[int] | None:
        return self._lists.get((session_code, bill_type.upper()))

    def put(self, session_code: str, bill_type: str, numbers: list[int]) -> None:
        self._lists[(session_code, bill_type.upper())] = sorted(set(numbers))

    def clear(self) -> None:
        self._lists.clear()

    def __len__(self) -> int:
        return len(self._lists)


class BillScanner:
    def __init__(self, transport: TransportClient, cache: AvailableBillsCache | None = None):
        self.transport = transport
        self.cache = cache if cache is not None else AvailableBillsCache()

    def get_last_persisted(self, db: Session, bill_type: str) -> int:
        return get_last_persisted(db, bill_type)

    def get_available(self, session_code: str, bill_type: str) -> list[int]:
        cached = self.cache.get(session_code, bill_type)
        if cached is not None:
            return cached
        LOGGER.info("Scanning available %s bills for session %s ...", bill_type, session_code)
        numbers = self.transport.list_available_bill_numbers(session_code, bill_type)
        self.cache.put(session_code, bill_type, numbers)
        LOGGER.info("  ✓ %d %s bills available", len(numbers), bill_type)
        return self.cache.get(session_code, bill_type) or []

    def delta(self, session_code: str, bill_type: str, watermark: int) -> list[int]:
        """Available numbers strictly above *watermark*, ascending."""
        return [n for n in self.get_available(session_code, bill_type) if n > watermark]

    def pending_for(self, db: Session, session_code: str, bill_type: str) -> list[int]:
        """Delta against the highest number already stored."""
        return self.delta(session_code, bill_type, self.get_last_persisted(db, bill_type))
