"""In-memory shapes that flow between the parser, the fetch pipeline and the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


@dataclass
class ParsedAction:
    date: str  # as written in the source, e.g. "1/22/2025"
    description: str  # e.g. "Referred to Appropriations"


@dataclass
class ParsedCommittee:
    chamber: str  # "house" | "senate"
    name: str  # e.g. "Appropriations"
    status: str  # e.g. "In committee", "Reported"


@dataclass
class ParsedBill:
    """One bill-history document, parsed but not yet persisted."""

    bill_id: str  # e.g. "HB 1"
    bill_type: str  # "HB", "SB", "HJR", "SJR", "HCR", "SCR"
    bill_number: int
    description: str  # caption, ≤2000 chars
    authors: list[str] = field(default_factory=list)
    coauthors: list[str] = field(default_factory=list)
    sponsors: list[str] = field(default_factory=list)
    cosponsors: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)  # codes stripped
    actions: list[ParsedAction] = field(default_factory=list)
    committees: list[ParsedCommittee] = field(default_factory=list)
    status: str = "Filed"
    last_action: str = ""  # ≤500 chars
    last_action_date: date | None = None
    last_update: date | None = None  # source's lastUpdate attribute
    text_url: str | None = None


@dataclass
class BillData:
    """A BillRecord-shaped value ready for upsert."""

    bill_id: str
    bill_type: str
    bill_number: int
    description: str
    content: str | None = None
    authors: list[str] = field(default_factory=list)
    coauthors: list[str] = field(default_factory=list)
    sponsors: list[str] = field(default_factory=list)
    cosponsors: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)
    status: str = "Filed"
    last_action: str = ""
    last_action_date: date | None = None
    last_update_ftp: date | None = None
    committee_name: str | None = None
    committee_status: str | None = None

    @classmethod
    def from_parsed(cls, parsed: ParsedBill, content: str | None = None) -> BillData:
        """Build the record value, picking the most relevant committee.

        A committee whose status reads "in committee" wins; otherwise the
        first listed (house before senate).
        """
        committee_name: str | None = None
        committee_status: str | None = None
        if parsed.committees:
            committee = next(
                (c for c in parsed.committees if "in committee" in c.status.lower()),
                parsed.committees[0],
            )
            committee_name = committee.name
            committee_status = committee.status

        return cls(
            bill_id=parsed.bill_id,
            bill_type=parsed.bill_type,
            bill_number=parsed.bill_number,
            description=parsed.description,
            content=content,
            authors=list(parsed.authors),
            coauthors=list(parsed.coauthors),
            sponsors=list(parsed.sponsors),
            cosponsors=list(parsed.cosponsors),
            subjects=list(parsed.subjects),
            status=parsed.status,
            last_action=parsed.last_action,
            last_action_date=parsed.last_action_date,
            last_update_ftp=parsed.last_update,
            committee_name=committee_name,
            committee_status=committee_status,
        )


def make_bill_id(bill_type: str, bill_number: int) -> str:
    """Natural key, e.g. ``make_bill_id("hb", 1) == "HB 1"``."""
    return f"{bill_type.upper()} {int(bill_number)}"
