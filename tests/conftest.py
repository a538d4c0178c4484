from __future__ import annotations

from collections.abc import Callable, Iterable

import pytest
import requests

from txleg_sync.controller import SyncController
from txleg_sync.jobs import MemoryJobRepository
from txleg_sync.models import DetailResult, ParsedRecord
from txleg_sync.settings import MemorySettingsStore
from txleg_sync.store import MemoryBillStore

# ── Sample pages ──────────────────────────────────────────────────────────────

LISTING_HTML = """
<html><body>
<table>
  <tr><td><a href="/BillLookup/History.aspx?LegSess=89R&Bill=HB1">HB 1</a></td>
      <td>Relating to the state budget.</td></tr>
  <tr><td><a href="/BillLookup/History.aspx?LegSess=89R&Bill=HB3">HB 3</a></td>
      <td>Relating to school finance; see also SB 7.</td></tr>
  <tr><td><a href="/BillLookup/History.aspx?LegSess=89R&Bill=HB3">HB 3</a></td>
      <td>Duplicate row.</td></tr>
  <tr><td>Phone: HB 12000</td><td>noise</td></tr>
</table>
</body></html>
"""

DETAIL_HTML = """
<html><body>
<table>
  <tr><td>Caption Text:</td><td id="cellCaptionText">Relating to school funding.</td></tr>
  <tr><td>Author:</td><td id="cellAuthors">Buckley | Talarico</td></tr>
</table>
<p><strong>Last Action:</strong> <em>03/04/2025 H Referred to Public Education</em></p>
<table>
  <tr><td>H</td><td>Left pending in committee</td></tr>
</table>
</body></html>
"""

# ── Fake requests objects ─────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "") -> None:
        self.status_code = status_code
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class FakeSession:
    """Stands in for ``requests.Session``; answers by URL substring."""

    def __init__(self, routes: dict[str, FakeResponse | Exception] | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[str] = []

    def get(self, url: str, timeout: float | None = None) -> FakeResponse:
        self.calls.append(url)
        for fragment, answer in self.routes.items():
            if fragment in url:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        return FakeResponse(404, "Not Found")


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")


# ── In-memory controller ──────────────────────────────────────────────────────


class FakeCatalog:
    """Listing + detail source for the controller, with a call log."""

    def __init__(
        self,
        listings: dict[str, Iterable[int]],
        missing: Iterable[tuple[str, int]] = (),
    ) -> None:
        self.listings = {t: set(nums) for t, nums in listings.items()}
        self.missing = set(missing)
        self.failing: set[tuple[str, int]] = set()
        self.listing_calls: list[str] = []
        self.visited: list[tuple[str, int]] = []
        self.on_detail: Callable[[str, int], None] | None = None

    def fetch_numbers(self, bill_type: str, session_code: str) -> set[int]:
        self.listing_calls.append(bill_type)
        return set(self.listings.get(bill_type, set()))

    def fetch_detail(self, bill_type: str, bill_number: int, session_code: str) -> DetailResult:
        self.visited.append((bill_type, bill_number))
        if self.on_detail is not None:
            self.on_detail(bill_type, bill_number)
        if (bill_type, bill_number) in self.missing:
            return DetailResult(not_found=True, error="HTTP 404")
        if (bill_type, bill_number) in self.failing:
            return DetailResult(error="HTTP 500")
        return DetailResult(
            record=ParsedRecord(
                bill_type=bill_type,
                bill_number=bill_number,
                description=f"Relating to {bill_type} {bill_number}.",
                authors=["Buckley"],
            )
        )


class Harness:
    def __init__(self, controller: SyncController, catalog: FakeCatalog) -> None:
        self.controller = controller
        self.catalog = catalog
        self.sleeps: list[float] = []


@pytest.fixture
def make_harness(tmp_path) -> Callable[..., Harness]:
    """Build a controller over in-memory stores and a :class:`FakeCatalog`.

    Extra keyword arguments go to :class:`SyncController`; pass ``jobs`` /
    ``store`` to share state between two controllers.
    """

    def _make(
        listings: dict[str, Iterable[int]] | None = None,
        *,
        missing: Iterable[tuple[str, int]] = (),
        settings: dict[str, str] | None = None,
        jobs: MemoryJobRepository | None = None,
        store: MemoryBillStore | None = None,
        **kwargs,
    ) -> Harness:
        catalog = FakeCatalog(listings or {}, missing)
        sleeps: list[float] = []
        kwargs.setdefault("run_log_path", tmp_path / "runs.jsonl")
        controller = SyncController(
            MemorySettingsStore(settings or {}),
            jobs if jobs is not None else MemoryJobRepository(),
            store if store is not None else MemoryBillStore(),
            fetch_numbers=catalog.fetch_numbers,
            fetch_detail=catalog.fetch_detail,
            sleep=sleeps.append,
            **kwargs,
        )
        harness = Harness(controller, catalog)
        harness.sleeps = sleeps
        return harness

    return _make
