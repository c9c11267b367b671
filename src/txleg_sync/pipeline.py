"""Fetch one bill end to end: history document → parse → bill text → BillData."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .bill_history import parse_bill_history
from .models import BillData, make_bill_id
from .sources import FetchStatus, TransportClient

LOGGER = logging.getLogger(__name__)


@dataclass
class BillFetch:
    """Outcome of :func:`fetch_bill`: exactly one of data / not_found / error."""

    bill_id: str
    data: BillData | None = None
    not_found: bool = False
    error: str | None = None


def fetch_bill(
    transport: TransportClient,
    session_code: str,
    bill_type: str,
    bill_number: int,
) -> BillFetch:
    bill_id = make_bill_id(bill_type, bill_number)
    result = transport.fetch_bill_document(session_code, bill_type, bill_number)

    if result.status is FetchStatus.NOT_FOUND:
        return BillFetch(bill_id, not_found=True)
    if result.status is FetchStatus.ERROR or not result.content:
        return BillFetch(bill_id, error=result.error or "Empty response")

    parsed = parse_bill_history(result.content)
    if parsed is None:
        LOGGER.error("Failed to parse bill history for %s", bill_id)
        return BillFetch(bill_id, error="Failed to parse bill history")
    if parsed.bill_id != bill_id:
        # The path, not the bill attribute, identifies the record.
        LOGGER.warning("%s document claims to be %s", bill_id, parsed.bill_id)
        return BillFetch(bill_id, error=f"Document is for {parsed.bill_id}")

    content = transport.fetch_text_document(parsed.text_url) if parsed.text_url else None
    return BillFetch(bill_id, data=BillData.from_parsed(parsed, content))
