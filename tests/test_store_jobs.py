from __future__ import annotations

import json

import pytest

from txleg_sync.errors import JobAlreadyActiveError
from txleg_sync.jobs import JsonJobRepository, MemoryJobRepository
from txleg_sync.models import JobStatus, StoredBill, SyncJob
from txleg_sync.store import DuplicateBillError, JsonBillStore, MemoryBillStore


def _bill(number: int, bill_type: str = "HB") -> StoredBill:
    return StoredBill(
        id="",
        session_id="s1",
        bill_type=bill_type,
        bill_number=number,
        bill_id=f"{bill_type} {number}",
        filename=f"{bill_type.lower()}{number}.txt",
        description="Relating to something.",
    )


def _job(job_id: str, status: JobStatus, created_at: str = "2025-03-01T00:00:00") -> SyncJob:
    return SyncJob(
        id=job_id,
        status=status,
        session_code="89R",
        session_name="89th Regular Session",
        bill_types=["HB"],
        max_bills=10,
        batch_delay_ms=0,
        created_at=created_at,
    )


# ── Bill store ────────────────────────────────────────────────────────────────


class TestMemoryBillStore:
    def test_duplicate_natural_key_rejected(self) -> None:
        store = MemoryBillStore()
        store.create_bill(_bill(1))
        with pytest.raises(DuplicateBillError):
            store.create_bill(_bill(1))

    def test_update_only_touches_mutable_fields(self) -> None:
        store = MemoryBillStore()
        created = store.create_bill(_bill(1))
        updated = store.update_bill(
            "HB 1", {"description": "New caption", "filename": "evil.txt", "id": "x"}
        )
        assert updated.description == "New caption"
        assert updated.filename == "hb1.txt"
        assert updated.id == created.id

    def test_update_missing_raises(self) -> None:
        with pytest.raises(KeyError):
            MemoryBillStore().update_bill("HB 404", {"description": "x"})

    def test_counts_and_max(self) -> None:
        store = MemoryBillStore()
        for n in (3, 9):
            store.create_bill(_bill(n))
        store.create_bill(_bill(2, "SB"))
        assert store.count_by_type() == {"HB": 2, "SB": 1}
        assert store.max_bill_number("HB") == 9
        assert store.max_bill_number("HJR") == 0
        assert MemoryBillStore().last_updated() is None

    def test_session_upsert_is_idempotent(self) -> None:
        store = MemoryBillStore()
        a = store.upsert_session("89R", "89th Regular Session")
        b = store.upsert_session("89R", "renamed")
        assert a.id == b.id
        assert b.name == "89th Regular Session"


class TestJsonBillStore:
    def test_persists_across_instances(self, tmp_path) -> None:
        path = tmp_path / "bills.json"
        store = JsonBillStore(path)
        store.upsert_session("89R", "89th Regular Session")
        store.create_bill(_bill(1))
        store.update_bill("HB 1", {"status": "Passed"})

        reloaded = JsonBillStore(path)
        assert reloaded.find_bill("HB 1").status == "Passed"
        assert reloaded.sessions["89R"].name == "89th Regular Session"
        assert not path.with_suffix(".json.tmp").exists()

    def test_two_instances_share_one_file(self, tmp_path) -> None:
        path = tmp_path / "bills.json"
        cli = JsonBillStore(path)
        api = JsonBillStore(path)

        cli.create_bill(_bill(1))
        assert api.find_bill("HB 1") is not None
        with pytest.raises(DuplicateBillError):
            api.create_bill(_bill(1))
        api.create_bill(_bill(2))
        cli.create_bill(_bill(3))
        api.update_bill("HB 3", {"status": "Passed"})

        on_disk = json.loads(path.read_text())["bills"]
        assert sorted(on_disk) == ["HB 1", "HB 2", "HB 3"]
        assert cli.find_bill("HB 3").status == "Passed"
        assert cli.count_by_type() == {"HB": 3}

    def test_failed_write_leaves_no_phantom_bill(self, tmp_path) -> None:
        path = tmp_path / "bills.json"
        store = JsonBillStore(path)
        blocker = path.with_suffix(".json.tmp")
        blocker.mkdir()

        with pytest.raises(OSError):
            store.create_bill(_bill(1))
        assert store.find_bill("HB 1") is None

        blocker.rmdir()
        created = store.create_bill(_bill(1))
        assert store.find_bill("HB 1") == created

    def test_file_layout(self, tmp_path) -> None:
        path = tmp_path / "nested" / "bills.json"
        JsonBillStore(path).create_bill(_bill(5))
        raw = json.loads(path.read_text())
        assert set(raw) == {"sessions", "bills"}
        assert raw["bills"]["HB 5"]["bill_number"] == 5


# ── Job repository ────────────────────────────────────────────────────────────


class TestMemoryJobRepository:
    def test_create_exclusive_rejects_second_active(self) -> None:
        repo = MemoryJobRepository()
        repo.create_exclusive(_job("a", JobStatus.PAUSED))
        with pytest.raises(JobAlreadyActiveError) as exc_info:
            repo.create_exclusive(_job("b", JobStatus.PENDING))
        assert exc_info.value.job_id == "a"
        assert repo.get("b") is None

    def test_terminal_jobs_do_not_block(self) -> None:
        repo = MemoryJobRepository()
        for i, status in enumerate((JobStatus.COMPLETED, JobStatus.STOPPED, JobStatus.ERROR)):
            repo.save(_job(f"old{i}", status))
        assert repo.get_active() is None
        repo.create_exclusive(_job("new", JobStatus.PENDING))
        assert repo.get_active().id == "new"

    def test_list_recent_newest_first(self) -> None:
        repo = MemoryJobRepository()
        repo.save(_job("a", JobStatus.COMPLETED, "2025-03-01T00:00:00"))
        repo.save(_job("b", JobStatus.COMPLETED, "2025-03-02T00:00:00"))
        repo.save(_job("c", JobStatus.COMPLETED, "2025-03-03T00:00:00"))
        assert [j.id for j in repo.list_recent(2)] == ["c", "b"]

    def test_get_returns_a_copy(self) -> None:
        repo = MemoryJobRepository()
        repo.save(_job("a", JobStatus.RUNNING))
        job = repo.get("a")
        job.total_processed = 99
        assert repo.get("a").total_processed == 0


class TestJsonJobRepository:
    def test_state_survives_new_instance(self, tmp_path) -> None:
        path = tmp_path / "sync_jobs.json"
        job = _job("a", JobStatus.RUNNING)
        job.cursors = {"HB": 41}
        job.completed_types = {"HB": False}
        JsonJobRepository(path).save(job)

        loaded = JsonJobRepository(path).get("a")
        assert loaded.status == JobStatus.RUNNING
        assert loaded.cursors == {"HB": 41}
        assert loaded.completed_types == {"HB": False}

    def test_two_instances_share_single_flight(self, tmp_path) -> None:
        path = tmp_path / "sync_jobs.json"
        JsonJobRepository(path).create_exclusive(_job("a", JobStatus.RUNNING))
        with pytest.raises(JobAlreadyActiveError):
            JsonJobRepository(path).create_exclusive(_job("b", JobStatus.PENDING))

    def test_corrupt_file_reads_empty(self, tmp_path) -> None:
        path = tmp_path / "sync_jobs.json"
        path.write_text("[[[")
        assert JsonJobRepository(path).get_active() is None
