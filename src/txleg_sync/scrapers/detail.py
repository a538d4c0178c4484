"""Bill detail scraper: History.aspx pages.

Fetches one bill's history page and extracts caption, author, status and last
action.  Extraction is delegated to a :class:`FieldExtractor` so the fragile
markup matching can be swapped or tested without the network.

Every field is best effort: a page missing a marker yields an empty / ``None``
value (or the ``"<TYPE> <n>"`` caption fallback), never an exception.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from datetime import date
from typing import Protocol

import requests
from bs4 import BeautifulSoup

from ..config import BASE_URL, REQUEST_TIMEOUT
from ..models import (
    DESCRIPTION_MAX_LEN,
    LAST_ACTION_MAX_LEN,
    BillStatus,
    DetailResult,
    ParsedRecord,
)
from .listing import build_session

LOGGER = logging.getLogger(__name__)

# ── Pre-compiled regex patterns ──────────────────────────────────────────────

_RE_CAPTION = re.compile(r"Caption[^>]*>([^<]+)", re.IGNORECASE)
_RE_CAPTION_SPAN = re.compile(
    r"<span[^>]*id=\"[^\"]*Caption[^\"]*\"[^>]*>([^<]+)", re.IGNORECASE
)
_RE_AUTHOR = re.compile(r"Author[^>]*>([^<]+)", re.IGNORECASE)
_RE_LAST_ACTION = re.compile(r"<strong>Last Action:</strong>\s*<em>([^<]+)</em>", re.IGNORECASE)
_RE_ACTION_DATE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})")
_RE_ACTION_PREFIX = re.compile(r"^\d{2}/\d{2}/\d{4}\s+[HS]\s+")
_RE_WHITESPACE = re.compile(r"\s+")

# Checked in order; the first phrase found on the page wins.
STATUS_MARKERS: tuple[tuple[str, BillStatus], ...] = (
    ("Signed by the Governor", BillStatus.SIGNED),
    ("Sent to the Governor", BillStatus.SENT_TO_GOVERNOR),
    ("passed", BillStatus.PASSED),
    ("committee", BillStatus.IN_COMMITTEE),
)


def _clean(text: str) -> str:
    return _RE_WHITESPACE.sub(" ", html_lib.unescape(text)).strip()


def truncate(text: str, limit: int) -> str:
    return text[:limit]


def parse_last_action(raw: str) -> tuple[str, date | None]:
    """Split ``"02/25/2025 H Referred to Appropriations"`` into text and date."""
    raw = raw.strip()
    action_date: date | None = None
    m = _RE_ACTION_DATE.match(raw)
    if m:
        month, day, year = (int(g) for g in m.groups())
        try:
            action_date = date(year, month, day)
        except ValueError:
            action_date = None
    return _RE_ACTION_PREFIX.sub("", raw), action_date


# ── Extractor strategies ─────────────────────────────────────────────────────


class FieldExtractor(Protocol):
    def description(self, html: str, bill_type: str, bill_number: int) -> str: ...

    def authors(self, html: str) -> list[str]: ...

    def status(self, html: str) -> BillStatus: ...

    def last_action(self, html: str) -> tuple[str, date | None]: ...


class RegexFieldExtractor:
    """Pattern matching straight over the page markup."""

    def description(self, html: str, bill_type: str, bill_number: int) -> str:
        for pattern in (_RE_CAPTION, _RE_CAPTION_SPAN):
            for m in pattern.finditer(html):
                text = _clean(m.group(1))
                if text:
                    return text
        return f"{bill_type} {bill_number}"

    def authors(self, html: str) -> list[str]:
        for m in _RE_AUTHOR.finditer(html):
            name = _clean(m.group(1))
            if name:
                return [name]
        return []

    def status(self, html: str) -> BillStatus:
        for phrase, status in STATUS_MARKERS:
            if phrase in html:
                return status
        return BillStatus.FILED

    def last_action(self, html: str) -> tuple[str, date | None]:
        m = _RE_LAST_ACTION.search(html)
        if not m:
            return ("", None)
        return parse_last_action(_clean(m.group(1)))


class SoupFieldExtractor(RegexFieldExtractor):
    """Reads the history page's labelled cells, falling back to regex per field.

    The page keeps its fields in ``<td id="cellCaptionText">``,
    ``<td id="cellAuthors">`` and a ``<strong>Last Action:</strong><em>``
    pair; authors are ``|``-separated.
    """

    def description(self, html: str, bill_type: str, bill_number: int) -> str:
        cell = BeautifulSoup(html, "html.parser").find(id=re.compile(r"CaptionText", re.I))
        if cell:
            text = _RE_WHITESPACE.sub(" ", cell.get_text(" ", strip=True)).strip()
            if text:
                return text
        return super().description(html, bill_type, bill_number)

    def authors(self, html: str) -> list[str]:
        cell = BeautifulSoup(html, "html.parser").find(id=re.compile(r"cellAuthors", re.I))
        if cell:
            names = [n.strip() for n in cell.get_text(" ", strip=True).split("|")]
            names = [n for n in names if n]
            if names:
                return names
        return super().authors(html)

    def last_action(self, html: str) -> tuple[str, date | None]:
        soup = BeautifulSoup(html, "html.parser")
        label = soup.find("strong", string=re.compile(r"Last Action", re.I))
        em = label.find_next("em") if label else None
        if em:
            text = _RE_WHITESPACE.sub(" ", em.get_text(" ", strip=True)).strip()
            if text:
                return parse_last_action(text)
        return super().last_action(html)


DEFAULT_EXTRACTOR: FieldExtractor = RegexFieldExtractor()


# ── Detail page ──────────────────────────────────────────────────────────────


def detail_url(bill_type: str, bill_number: int, session_code: str) -> str:
    return (
        f"{BASE_URL}BillLookup/History.aspx"
        f"?LegSess={session_code}&Bill={bill_type.upper()}{bill_number}"
    )


def parse_bill_detail(
    html: str,
    bill_type: str,
    bill_number: int,
    extractor: FieldExtractor | None = None,
) -> ParsedRecord:
    """Build a length-capped :class:`ParsedRecord` from history page markup."""
    ex = extractor or DEFAULT_EXTRACTOR
    bill_type = bill_type.upper()
    description = ex.description(html, bill_type, bill_number)
    last_action, last_action_date = ex.last_action(html)
    return ParsedRecord(
        bill_type=bill_type,
        bill_number=bill_number,
        description=truncate(description, DESCRIPTION_MAX_LEN),
        authors=ex.authors(html),
        status=ex.status(html),
        last_action=truncate(last_action, LAST_ACTION_MAX_LEN),
        last_action_date=last_action_date,
    )


def fetch_bill_detail(
    bill_type: str,
    bill_number: int,
    session_code: str,
    *,
    session: requests.Session | None = None,
    extractor: FieldExtractor | None = None,
    timeout: float = REQUEST_TIMEOUT,
) -> DetailResult:
    """Fetch and parse one bill.  Failures come back as a record-less result."""
    sess = session or build_session()
    url = detail_url(bill_type, bill_number, session_code)

    try:
        resp = sess.get(url, timeout=timeout)
    except requests.RequestException as exc:
        LOGGER.warning("Failed to fetch %s %d: %s", bill_type, bill_number, exc)
        return DetailResult(error=str(exc))

    if resp.status_code == 404:
        return DetailResult(not_found=True, error="HTTP 404")
    if not resp.ok:
        LOGGER.warning("Failed to fetch %s %d: HTTP %d", bill_type, bill_number, resp.status_code)
        return DetailResult(error=f"HTTP {resp.status_code}")

    return DetailResult(record=parse_bill_detail(resp.text, bill_type, bill_number, extractor))
