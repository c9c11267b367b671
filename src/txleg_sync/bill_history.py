"""Parser for Texas Legislature bill-history XML.

One file per bill lives under ``/bills/<session>/billhistory/...``::

    <billhistory bill="89(R) HB 1" lastUpdate="3/20/2025">
      <caption>General Appropriations Bill.</caption>
      <authors>Bonnen</authors>
      <coauthors>Kitzman | Lopez, Janie</coauthors>
      <subjects><subject>State Finances--Appropriations (I0746)</subject></subjects>
      <lastaction>02/25/2025 H Referred to Appropriations</lastaction>
      <committees><house name="Appropriations" status="In committee"/></committees>
      <actions><action><date>1/22/2025</date><description>Filed</description></action></actions>
      <billtext><WebHTMLURL>http://capitol.texas.gov/tlodocs/...HTM</WebHTMLURL></billtext>
    </billhistory>

The feed is regular enough that targeted regexes are more forgiving than a
strict XML parser: the root tag's case varies (``BillHistory``), some files
carry stray markup, and we only need a handful of fields.
"""

from __future__ import annotations

import logging
import re

from .config import VALID_BILL_TYPES
from .models import ParsedAction, ParsedBill, ParsedCommittee, make_bill_id
from .normalize import decode_xml_text, parse_leading_date, parse_source_date

LOGGER = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 2000
MAX_LAST_ACTION_CHARS = 500

_RE_ROOT = re.compile(r"<billhistory\b", re.IGNORECASE)
_RE_BILL_ID = re.compile(r"([A-Z]{2,3})\s*(\d+)", re.IGNORECASE)
_RE_SUBJECT = re.compile(r"<subject>([^<]*)</subject>", re.IGNORECASE)
_RE_SUBJECT_CODE = re.compile(r"\s*\([^)]+\)\s*$")
_RE_ACTIONS = re.compile(r"<actions>(.*?)</actions>", re.IGNORECASE | re.DOTALL)
_RE_ACTION = re.compile(r"<action>(.*?)</action>", re.IGNORECASE | re.DOTALL)
_RE_COMMITTEES = re.compile(r"<committees>(.*?)</committees>", re.IGNORECASE | re.DOTALL)
_RE_COMMITTEE = {
    chamber: re.compile(rf'<{chamber}\s+name="([^"]*)"\s+status="([^"]*)"', re.IGNORECASE)
    for chamber in ("house", "senate")
}


# ── Field extraction helpers ─────────────────────────────────────────────────


def _extract_text(xml: str, tag: str) -> str:
    """Text of the first ``<tag>...</tag>``, CDATA unwrapped and entities decoded."""
    m = re.search(rf"<{tag}[^>]*>(.*?)</{tag}>", xml, re.IGNORECASE | re.DOTALL)
    if not m:
        return ""
    return decode_xml_text(m.group(1))


def _extract_root_attribute(xml: str, attr: str) -> str | None:
    m = re.search(rf'<billhistory[^>]*\s{attr}="([^"]*)"', xml, re.IGNORECASE)
    return m.group(1) if m else None


def _parse_name_list(text: str) -> list[str]:
    """``"Kitzman | Lopez, Janie"`` → ``["Kitzman", "Lopez, Janie"]``."""
    if not text:
        return []
    return [name.strip() for name in text.split("|") if name.strip()]


def _parse_subjects(xml: str) -> list[str]:
    subjects: list[str] = []
    for m in _RE_SUBJECT.finditer(xml):
        # "Education--Public Schools (E0321)" → "Education--Public Schools"
        subject = _RE_SUBJECT_CODE.sub("", decode_xml_text(m.group(1))).strip()
        if subject:
            subjects.append(subject)
    return subjects


def _parse_actions(xml: str) -> list[ParsedAction]:
    block = _RE_ACTIONS.search(xml)
    if not block:
        return []
    actions: list[ParsedAction] = []
    for m in _RE_ACTION.finditer(block.group(1)):
        action_date = _extract_text(m.group(1), "date")
        description = _extract_text(m.group(1), "description")
        if action_date and description:
            actions.append(ParsedAction(date=action_date, description=description))
    return actions


def _parse_committees(xml: str) -> list[ParsedCommittee]:
    """House entries first, then senate, each in document order."""
    block = _RE_COMMITTEES.search(xml)
    if not block:
        return []
    committees: list[ParsedCommittee] = []
    for chamber, pattern in _RE_COMMITTEE.items():
        for m in pattern.finditer(block.group(1)):
            committees.append(
                ParsedCommittee(
                    chamber=chamber,
                    name=decode_xml_text(m.group(1)),
                    status=decode_xml_text(m.group(2)),
                )
            )
    return committees


def _parse_text_url(xml: str) -> str | None:
    for tag in ("WebHTMLURL", "WebURL"):
        url = _extract_text(xml, tag)
        if url and url.lower().startswith("http"):
            return url
    return None


# ── Status derivation ────────────────────────────────────────────────────────

# Checked in order against each action's lowercased text; first hit wins.
_ACTION_STATUS_RULES: list[tuple[tuple[str, ...], str]] = [
    (("signed by the governor",), "Signed"),
    (("effective",), "Signed"),
    (("sent to the governor",), "Sent to Governor"),
    (("enrolled",), "Enrolled"),
    (("passed", "senate", "house"), "Passed Both Chambers"),
    (("passed to engrossment",), "Passed"),
    (("passed",), "Passed"),
    (("vetoed",), "Vetoed"),
    (("withdrawn",), "Dead"),
    (("died",), "Dead"),
]


def _status_for_action(description: str) -> str | None:
    desc = description.lower()
    for phrases, status in _ACTION_STATUS_RULES:
        if all(p in desc for p in phrases):
            return status
    return None


def derive_status(actions: list[ParsedAction], committees: list[ParsedCommittee]) -> str:
    """Best-effort lifecycle status from action wording.

    Actions are walked newest to oldest and the first action carrying any
    signal phrase decides the status.  With no signal in any action, an
    exact committee status (``in committee`` / ``reported``) is used, then
    any "referred to" action, then ``"Filed"``.

    This is substring matching over free English text; see DESIGN.md for
    the known ambiguous cases.
    """
    if not actions:
        return "Filed"

    for action in reversed(actions):
        status = _status_for_action(action.description)
        if status is not None:
            return status

    for committee in committees:
        committee_status = committee.status.lower()
        if committee_status == "in committee":
            return "In Committee"
        if committee_status == "reported":
            return "Reported"

    if any("referred to" in a.description.lower() for a in actions):
        return "In Committee"

    return "Filed"


# ── Public entry point ───────────────────────────────────────────────────────


def parse_bill_history(xml: str | None) -> ParsedBill | None:
    """Parse one bill-history document.

    Returns ``None`` (and logs why at DEBUG) when the input is empty, has no
    ``<billhistory>`` root, lacks the ``bill`` attribute, names an unknown
    bill type, or has no caption.
    """
    if not xml or not isinstance(xml, str):
        return None

    if not _RE_ROOT.search(xml):
        LOGGER.debug("No <billhistory> root in document")
        return None

    bill_attr = _extract_root_attribute(xml, "bill")
    if not bill_attr:
        LOGGER.debug("Missing bill attribute on <billhistory>")
        return None

    # "89(R) HB 1" → ("HB", 1)
    m = _RE_BILL_ID.search(bill_attr)
    if not m:
        LOGGER.debug("Unrecognized bill attribute %r", bill_attr)
        return None
    bill_type = m.group(1).upper()
    bill_number = int(m.group(2))
    if bill_type not in VALID_BILL_TYPES:
        LOGGER.debug("Unsupported bill type %r in %r", bill_type, bill_attr)
        return None

    description = _extract_text(xml, "caption")
    if not description:
        LOGGER.debug("%s %d has no caption", bill_type, bill_number)
        return None

    last_update_attr = _extract_root_attribute(xml, "lastUpdate")
    last_action = _extract_text(xml, "lastaction")
    actions = _parse_actions(xml)
    committees = _parse_committees(xml)

    return ParsedBill(
        bill_id=make_bill_id(bill_type, bill_number),
        bill_type=bill_type,
        bill_number=bill_number,
        description=description[:MAX_DESCRIPTION_CHARS],
        authors=_parse_name_list(_extract_text(xml, "authors")),
        coauthors=_parse_name_list(_extract_text(xml, "coauthors")),
        sponsors=_parse_name_list(_extract_text(xml, "sponsors")),
        cosponsors=_parse_name_list(_extract_text(xml, "cosponsors")),
        subjects=_parse_subjects(xml),
        actions=actions,
        committees=committees,
        status=derive_status(actions, committees),
        last_action=last_action[:MAX_LAST_ACTION_CHARS],
        last_action_date=parse_leading_date(last_action),
        last_update=parse_source_date(last_update_attr),
        text_url=_parse_text_url(xml),
    )
