"""Bill listing scraper: one report page per bill type.

The Texas Legislature Online "all bills by number" report lists every filed
bill of a type for a session.  We only need the bill numbers out of it; the
detail scraper fetches everything else.
"""

from __future__ import annotations

import logging
import re

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import BASE_URL, REQUEST_TIMEOUT, USER_AGENT

LOGGER = logging.getLogger(__name__)

# Bill numbers at or above this are page noise (years, phone numbers, ...).
MAX_BILL_NUMBER = 10000


# ── Session builder ──────────────────────────────────────────────────────────


def build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[429, 500, 502, 503, 504],
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=2, pool_maxsize=2)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = USER_AGENT
    return session


# ── Listing page ─────────────────────────────────────────────────────────────


def listing_url(bill_type: str, session_code: str) -> str:
    return f"{BASE_URL}Reports/Report.aspx?LegSess={session_code}&ID={bill_type.upper()}ALLBYNUM"


def extract_bill_numbers(html: str, bill_type: str) -> set[int]:
    """Pull every distinct ``<TYPE> <n>`` bill number out of a listing page."""
    pattern = re.compile(rf"({re.escape(bill_type)})\s*(\d+)", re.IGNORECASE)
    numbers: set[int] = set()
    for m in pattern.finditer(html):
        num = int(m.group(2))
        if 0 < num < MAX_BILL_NUMBER:
            numbers.add(num)
    return numbers


def fetch_bill_numbers(
    bill_type: str,
    session_code: str,
    *,
    session: requests.Session | None = None,
    timeout: float = REQUEST_TIMEOUT,
) -> set[int]:
    """Fetch the listing for *bill_type* and return its bill numbers.

    Never raises: a failed fetch logs a warning and returns an empty set so
    one bill type's outage doesn't block the others.
    """
    sess = session or build_session()
    url = listing_url(bill_type, session_code)

    try:
        resp = sess.get(url, timeout=timeout)
    except requests.RequestException as exc:
        LOGGER.warning("Failed to fetch %s list %s: %s", bill_type, url, exc)
        return set()

    if not resp.ok:
        LOGGER.warning("Failed to fetch %s list: HTTP %d", bill_type, resp.status_code)
        return set()

    numbers = extract_bill_numbers(resp.text, bill_type)
    LOGGER.info("Found %d %s bills (session %s)", len(numbers), bill_type, session_code)
    return numbers
