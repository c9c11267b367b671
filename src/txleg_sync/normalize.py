"""Shared text and date normalization utilities.

Centralizes the cleanup applied to everything the legislature publishes so
the parser, the transports and the store agree on one representation.

**Bill text:**
    Bill-text pages are plain HTML (``capitol.texas.gov/tlodocs/...HTM``).
    :func:`clean_bill_text_html` turns one into bounded plain text, keeping
    paragraph breaks, or returns ``None`` for error pages and placeholders.

**Dates:**
    The bill-history feed writes dates as ``M/D/YYYY``
    (``lastUpdate="3/20/2025"``, ``<date>1/22/2025</date>``) and prefixes
    ``<lastaction>`` with ``MM/DD/YYYY``.  All are parsed to :class:`datetime.date`.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime

LOGGER = logging.getLogger(__name__)

# Accepted bill text is truncated to this many characters.
MAX_CONTENT_CHARS = 50_000
# Cleaned text at or below this length is a placeholder, not a bill.
MIN_CONTENT_CHARS = 100

_ERROR_PAGE_MARKERS = ("Website Error", "Page Not Found")

_RE_SCRIPT = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_RE_STYLE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_RE_BR = re.compile(r"<br\s*/?>", re.IGNORECASE)
_RE_BLOCK_CLOSE = re.compile(r"</(?:p|div|h[1-6]|li|tr)>", re.IGNORECASE)
_HTML_ELEMENTS = (
    "a|abbr|address|area|article|aside|b|base|basefont|big|blockquote|body|br|caption|center|"
    "cite|code|col|colgroup|dd|del|dfn|dir|div|dl|dt|em|font|footer|form|frame|frameset|"
    "h[1-6]|head|header|hr|html|i|iframe|img|input|ins|kbd|label|li|link|main|map|menu|meta|"
    "nav|nobr|noscript|ol|option|p|pre|q|s|samp|script|section|select|small|span|strike|"
    "strong|style|sub|sup|table|tbody|td|textarea|tfoot|th|thead|title|tr|tt|u|ul|var|wbr"
)
# Real markup only: known elements, namespaced Office tags (<o:p>), comments,
# doctype and processing instructions.  "< 5 percent >" and "<angle>" are text.
_RE_TAG = re.compile(
    r"<!--.*?-->"
    r"|<![A-Za-z][^<>]*>"
    r"|<\?[^<>]*\?>"
    rf"|</?(?:{_HTML_ELEMENTS}|[A-Za-z][\w-]*:[A-Za-z][\w-]*)(?=[\s/>])[^<>]*>",
    re.IGNORECASE | re.DOTALL,
)
_RE_ENTITY = re.compile(r"&(#[0-9]+|#[xX][0-9a-fA-F]+|[a-zA-Z][a-zA-Z0-9]*);")
_RE_HSPACE = re.compile(r"[ \t]+")
_RE_NEWLINE_INDENT = re.compile(r"\n +")
_RE_MULTI_BLANK = re.compile(r"\n{3,}")
_RE_CDATA = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_RE_LEADING_DATE = re.compile(r"^(\d{1,2}/\d{1,2}/\d{4})")

# Named entities seen on bill-text pages.  Numeric aliases map to the same
# (ASCII-folded) replacement so "&rdquo;" and "&#8221;" agree.
_NAMED_ENTITIES: dict[str, str] = {
    "nbsp": " ",
    "#160": " ",
    "#xa0": " ",
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "#39": "'",
    "apos": "'",
    "mdash": "—",
    "ndash": "–",
    "hellip": "...",
    "#8230": "...",
    "ldquo": '"',
    "#8220": '"',
    "rdquo": '"',
    "#8221": '"',
    "lsquo": "'",
    "#8216": "'",
    "rsquo": "'",
    "#8217": "'",
    "sect": "§",
    "para": "¶",
    "deg": "°",
    "cent": "¢",
    "copy": "©",
    "reg": "®",
    "frac12": "½",
    "frac14": "¼",
    "frac34": "¾",
    "bull": "•",
    "middot": "·",
}

# The five XML predefined entities; bill-history fields use nothing else.
_XML_ENTITIES: dict[str, str] = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
}


def _decode_numeric(ref: str) -> str | None:
    try:
        if ref[1] in "xX":
            code = int(ref[2:], 16)
        else:
            code = int(ref[1:], 10)
    except ValueError:
        return None
    if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
        return None
    return chr(code)


def _replace_entity(match: re.Match[str]) -> str:
    ref = match.group(1)
    named = _NAMED_ENTITIES.get(ref.lower())
    if named is not None:
        return named
    if ref.startswith("#"):
        decoded = _decode_numeric(ref)
        if decoded is not None:
            return decoded
    return match.group(0)


def decode_html_entities(text: str) -> str:
    """Decode the named-entity table plus any decimal/hex numeric reference.

    Single pass, so ``&amp;lt;`` becomes ``&lt;`` (not ``<``).  Unknown
    names and out-of-range code points are left untouched.
    """
    if not text:
        return ""
    return _RE_ENTITY.sub(_replace_entity, text)


def decode_xml_text(raw: str) -> str:
    """Unwrap CDATA and decode the XML predefined entities, then trim."""
    if not raw:
        return ""
    text = _RE_CDATA.sub(lambda m: m.group(1), raw)

    def _xml(match: re.Match[str]) -> str:
        return _XML_ENTITIES.get(match.group(1), match.group(0))

    text = re.sub(r"&(amp|lt|gt|quot|apos);", _xml, text)
    return text.strip()


def collapse_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n")
    text = _RE_HSPACE.sub(" ", text)
    text = _RE_NEWLINE_INDENT.sub("\n", text)
    text = _RE_MULTI_BLANK.sub("\n\n", text)
    return text.strip()


def is_error_page(html: str) -> bool:
    return any(marker in html for marker in _ERROR_PAGE_MARKERS)


def clean_bill_text_html(html: str | None) -> str | None:
    """Convert a bill-text HTML page to storage-ready plain text.

    Parameters
    ----------
    html:
        Raw page body as returned by the server.

    Returns
    -------
    str | None
        Cleaned text truncated to ``MAX_CONTENT_CHARS``, or ``None`` when the
        page is a known error page or yields ``MIN_CONTENT_CHARS`` characters
        or fewer.  Pure and idempotent: cleaning the returned text again gives
        the same text back.

    Markup stripping and entity decoding repeat until the text stops
    changing, so doubly-escaped input (``&amp;lt;``) ends as ``<`` and no
    entity or tag survives for a later pass to act on.
    """
    if not html:
        return None
    if is_error_page(html):
        return None

    text = html
    while True:
        stripped = _strip_markup(text)
        decoded = decode_html_entities(stripped)
        if decoded == text:
            break
        text = decoded
    text = collapse_whitespace(text)

    if is_error_page(text) or len(text) <= MIN_CONTENT_CHARS:
        return None
    return text[:MAX_CONTENT_CHARS].rstrip()


def _strip_markup(html: str) -> str:
    text = _RE_SCRIPT.sub("", html)
    text = _RE_STYLE.sub("", text)
    text = _RE_BR.sub("\n", text)
    text = _RE_BLOCK_CLOSE.sub("\n", text)
    return _RE_TAG.sub("", text)


# ── Dates ────────────────────────────────────────────────────────────────────

_DATE_FORMATS = [
    "%m/%d/%Y",  # "3/20/2025" (lastUpdate attribute, <date>)
    "%Y-%m-%d",  # ISO
    "%m/%d/%Y %I:%M:%S %p",  # "3/20/2025 12:00:00 AM" (occasional)
]


def parse_source_date(date_str: str | None) -> date | None:
    """Parse a date as written by the legislature feed.

    Returns ``None`` if the input is None, empty, or unparseable.

    Examples::

        >>> parse_source_date("3/20/2025")
        datetime.date(2025, 3, 20)
        >>> parse_source_date("not a date") is None
        True
    """
    if not date_str or not isinstance(date_str, str):
        return None
    date_str = date_str.strip()
    if not date_str:
        return None

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue

    LOGGER.debug("Could not parse date: %r", date_str)
    return None


def parse_leading_date(text: str | None) -> date | None:
    """Date token at the start of free text, e.g. ``"02/25/2025 H Referred to ..."``."""
    if not text:
        return None
    m = _RE_LEADING_DATE.match(text.strip())
    if not m:
        return None
    return parse_source_date(m.group(1))
