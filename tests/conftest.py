from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from txleg_sync.database import init_db, make_engine, make_session_factory
from txleg_sync.errors import SourceListingError
from txleg_sync.normalize import clean_bill_text_html
from txleg_sync.settings import SyncConfig
from txleg_sync.sources import FetchResult, TransportClient

# ── Bill-history XML builder ──────────────────────────────────────────────────


def make_bill_xml(
    bill_type: str,
    bill_number: int,
    *,
    caption: str | None = None,
    authors: str = "Bonnen",
    actions: list[tuple[str, str]] | None = None,
    committees: list[tuple[str, str, str]] | None = None,
    last_action: str = "01/22/2025 H Filed",
    last_update: str = "3/20/2025",
    text_url: str | None = None,
    session_label: str = "89(R)",
) -> str:
    """A bill-history document shaped like the ones on the legislature FTP site."""
    caption = caption if caption is not None else f"Relating to {bill_type} {bill_number}."
    actions = actions if actions is not None else [("1/22/2025", "Filed")]
    committees = committees or []
    action_xml = "".join(
        f"<action><date>{d}</date><description>{desc}</description></action>"
        for d, desc in actions
    )
    committee_xml = "".join(
        f'<{chamber} name="{name}" status="{status}"/>' for chamber, name, status in committees
    )
    billtext = f"<billtext><WebHTMLURL>{text_url}</WebHTMLURL></billtext>" if text_url else "<billtext/>"
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<billhistory bill="{session_label} {bill_type} {bill_number}" lastUpdate="{last_update}">\n'
        f"  <caption>{caption}</caption>\n"
        f"  <authors>{authors}</authors>\n"
        "  <coauthors/>\n"
        "  <sponsors/>\n"
        "  <cosponsors/>\n"
        "  <subjects><subject>State Finances--Appropriations (I0746)</subject></subjects>\n"
        f"  <lastaction>{last_action}</lastaction>\n"
        f"  <committees>{committee_xml}</committees>\n"
        f"  <actions>{action_xml}</actions>\n"
        f"  {billtext}\n"
        "</billhistory>"
    )


# ── Fake transport ────────────────────────────────────────────────────────────


class FakeTransport(TransportClient):
    """In-memory source: documents, listings and bill-text pages keyed by bill."""

    name = "fake"

    def __init__(self) -> None:
        super().__init__()
        self.documents: dict[tuple[str, int], str] = {}
        self.available: dict[str, list[int]] = {}
        self.errors: dict[tuple[str, int], str] = {}
        self.listing_errors: dict[str, str] = {}
        self.text_pages: dict[str, str] = {}
        self.fetch_calls: list[tuple[str, int]] = []
        self.list_calls: list[str] = []
        self.on_fetch: Callable[[str, int], None] | None = None

    def add_bill(self, bill_type: str, bill_number: int, xml: str | None = None, **kwargs) -> None:
        """Serve a document for the bill and list it."""
        self.documents[(bill_type, bill_number)] = xml or make_bill_xml(bill_type, bill_number, **kwargs)
        self.list_only(bill_type, bill_number)

    def list_only(self, bill_type: str, *numbers: int) -> None:
        """List bill numbers without serving documents (fetch → not found)."""
        listed = self.available.setdefault(bill_type, [])
        for n in numbers:
            if n not in listed:
                listed.append(n)

    def fetch_bill_document(self, session_code: str, bill_type: str, bill_number: int) -> FetchResult:
        self.fetch_calls.append((bill_type, bill_number))
        if self.on_fetch is not None:
            self.on_fetch(bill_type, bill_number)
        key = (bill_type, bill_number)
        if key in self.errors:
            return FetchResult.failed(self.errors[key])
        if key in self.documents:
            return FetchResult.ok(self.documents[key])
        return FetchResult.not_found()

    def list_available_bill_numbers(self, session_code: str, bill_type: str) -> list[int]:
        self.list_calls.append(bill_type)
        if bill_type in self.listing_errors:
            raise SourceListingError(bill_type, self.listing_errors[bill_type])
        return sorted(self.available.get(bill_type, []))

    def fetch_text_document(self, url: str) -> str | None:
        page = self.text_pages.get(url)
        return clean_bill_text_html(page) if page else None


# ── Database fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def engine() -> Iterator[Engine]:
    """In-memory SQLite shared by every session (and thread) in one test."""
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def bill_xml() -> Callable[..., str]:
    return make_bill_xml


@pytest.fixture()
def sleeps() -> list[float]:
    """Collects requested sleep durations; pass ``sleeps.append`` as ``sleep=``."""
    return []


@pytest.fixture()
def cfg() -> SyncConfig:
    """HB-only config with no delays."""
    return SyncConfig(
        session_code="89R",
        session_name="89th Regular Session",
        bill_types=("HB",),
        max_bills_per_sync=100,
        batch_delay_ms=0,
        sync_enabled=True,
        batch_size=20,
        rate_limit_every=5,
    )
