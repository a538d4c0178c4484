from __future__ import annotations

from datetime import date

from txleg_sync.models import BillStatus, ParsedRecord
from txleg_sync.reconciler import Reconciler
from txleg_sync.store import JsonBillStore, MemoryBillStore


def _record(number: int = 1, **overrides) -> ParsedRecord:
    fields = {
        "bill_type": "HB",
        "bill_number": number,
        "description": "Relating to school funding.",
        "authors": ["Buckley"],
        "status": BillStatus.IN_COMMITTEE,
        "last_action": "Referred to Public Education",
        "last_action_date": date(2025, 3, 4),
    }
    fields.update(overrides)
    return ParsedRecord(**fields)


class _BrokenStore(MemoryBillStore):
    def create_bill(self, bill):
        raise RuntimeError("disk full")


class TestReconcile:
    def test_create_then_update(self) -> None:
        store = MemoryBillStore()
        rec = Reconciler(store)

        first = rec.reconcile(_record(), "89R", "89th Regular Session")
        second = rec.reconcile(
            _record(status=BillStatus.PASSED, last_action="Passed"), "89R", "89th Regular Session"
        )

        assert first.status == "created"
        assert second.status == "updated"
        assert (rec.created, rec.updated, rec.errors) == (1, 1, 0)
        assert len(store.bills) == 1
        bill = store.find_bill("HB 1")
        assert bill.status == "Passed"
        assert bill.last_action == "Passed"

    def test_new_bill_fields(self) -> None:
        store = MemoryBillStore()
        Reconciler(store).reconcile(_record(12), "89R", "89th Regular Session")
        bill = store.find_bill("HB 12")
        assert bill.filename == "hb12.txt"
        assert bill.subjects == []
        assert bill.last_action_date == "2025-03-04"
        assert bill.session_id == store.sessions["89R"].id
        assert bill.created_at and bill.updated_at

    def test_session_upserted_once(self) -> None:
        store = MemoryBillStore()
        rec = Reconciler(store)
        for n in (1, 2, 3):
            rec.reconcile(_record(n), "89R", "89th Regular Session")
        assert list(store.sessions) == ["89R"]
        assert store.sessions["89R"].start_date == "2025-01-14"

    def test_store_failure_is_counted(self) -> None:
        rec = Reconciler(_BrokenStore())
        outcome = rec.reconcile(_record(), "89R", "89th Regular Session")
        assert outcome.status == "error"
        assert outcome.message == "Failed to save to database"
        assert (rec.created, rec.updated, rec.errors) == (0, 0, 1)

    def test_missing_date_stored_as_none(self) -> None:
        store = MemoryBillStore()
        Reconciler(store).reconcile(_record(last_action_date=None), "89R", "x")
        assert store.find_bill("HB 1").last_action_date is None

    def test_failed_write_is_retried_as_create(self, tmp_path) -> None:
        path = tmp_path / "bills.json"
        rec = Reconciler(JsonBillStore(path))
        rec.reconcile(_record(), "89R", "89th Regular Session")
        blocker = path.with_suffix(".json.tmp")
        blocker.mkdir()

        first = rec.reconcile(_record(2), "89R", "89th Regular Session")
        blocker.rmdir()
        second = rec.reconcile(_record(2), "89R", "89th Regular Session")

        assert (first.status, second.status) == ("error", "created")
        assert (rec.created, rec.updated, rec.errors) == (2, 0, 1)
