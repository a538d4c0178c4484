from __future__ import annotations

from conftest import LISTING_HTML, FakeResponse, FakeSession

from txleg_sync.scrapers.listing import (
    build_session,
    extract_bill_numbers,
    fetch_bill_numbers,
    listing_url,
)


class TestListingUrl:
    def test_builds_report_url(self) -> None:
        url = listing_url("hb", "89R")
        assert url == "https://capitol.texas.gov/Reports/Report.aspx?LegSess=89R&ID=HBALLBYNUM"


class TestExtractBillNumbers:
    def test_dedupes_and_drops_out_of_range(self) -> None:
        assert extract_bill_numbers(LISTING_HTML, "HB") == {1, 3}

    def test_ignores_other_types(self) -> None:
        assert extract_bill_numbers(LISTING_HTML, "SB") == {7}

    def test_no_space_between_type_and_number(self) -> None:
        assert extract_bill_numbers("<a>HB42</a> <a>hb 43</a>", "HB") == {42, 43}

    def test_zero_is_not_a_bill(self) -> None:
        assert extract_bill_numbers("HB 0 HB 9999 HB 10000", "HB") == {9999}

    def test_empty_page(self) -> None:
        assert extract_bill_numbers("", "HB") == set()


class TestFetchBillNumbers:
    def test_success(self) -> None:
        session = FakeSession({"ID=HBALLBYNUM": FakeResponse(200, LISTING_HTML)})
        assert fetch_bill_numbers("HB", "89R", session=session) == {1, 3}
        assert session.calls == [listing_url("HB", "89R")]

    def test_http_error_returns_empty(self) -> None:
        session = FakeSession({"ID=SBALLBYNUM": FakeResponse(503, "busy")})
        assert fetch_bill_numbers("SB", "89R", session=session) == set()

    def test_network_error_returns_empty(self, connection_error) -> None:
        session = FakeSession({"ID=HBALLBYNUM": connection_error})
        assert fetch_bill_numbers("HB", "89R", session=session) == set()


class TestBuildSession:
    def test_sets_user_agent_and_retries(self) -> None:
        session = build_session()
        assert session.headers["User-Agent"] == "TexLegAI Bill Sync Bot (educational/research)"
        adapter = session.get_adapter("https://capitol.texas.gov/")
        assert adapter.max_retries.total == 3
        assert 429 in adapter.max_retries.status_forcelist
