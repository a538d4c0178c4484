"""Persistence collaborator for synced bills.

The reconciler only needs four operations -- upsert a session, find a bill by
natural key, create, update -- so that is the whole :class:`BillStore`
protocol (plus two read helpers for the status endpoint).

:class:`JsonBillStore` keeps everything in one JSON document.  Every call
re-reads the file, and every mutation rewrites it atomically (temp file +
replace), so the API and the CLI can share one data directory.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections import Counter
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Protocol

from .models import SessionRecord, StoredBill, utc_now

LOGGER = logging.getLogger(__name__)

# Fields the reconciler may overwrite on an existing bill.
MUTABLE_FIELDS = ("description", "authors", "status", "last_action", "last_action_date")


class BillStore(Protocol):
    def upsert_session(self, code: str, name: str) -> SessionRecord: ...

    def find_bill(self, bill_id: str) -> StoredBill | None: ...

    def create_bill(self, bill: StoredBill) -> StoredBill: ...

    def update_bill(self, bill_id: str, fields: dict[str, Any]) -> StoredBill: ...

    def count_by_type(self) -> dict[str, int]: ...

    def last_updated(self) -> StoredBill | None: ...

    def max_bill_number(self, bill_type: str) -> int: ...


class DuplicateBillError(Exception):
    pass


class MemoryBillStore:
    """Dict-backed store.  Mutations build a new state and hand it to ``_write_state``."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._bills: dict[str, StoredBill] = {}
        self._lock = threading.RLock()

    def _read_state(self) -> tuple[dict[str, SessionRecord], dict[str, StoredBill]]:
        return self._sessions, self._bills

    def _write_state(
        self, sessions: dict[str, SessionRecord], bills: dict[str, StoredBill]
    ) -> None:
        self._sessions = sessions
        self._bills = bills

    @property
    def sessions(self) -> dict[str, SessionRecord]:
        with self._lock:
            return dict(self._read_state()[0])

    @property
    def bills(self) -> dict[str, StoredBill]:
        with self._lock:
            return dict(self._read_state()[1])

    def upsert_session(self, code: str, name: str) -> SessionRecord:
        with self._lock:
            sessions, bills = self._read_state()
            existing = sessions.get(code)
            if existing is not None:
                return existing
            session = SessionRecord(id=str(uuid.uuid4())[:8], code=code, name=name)
            self._write_state({**sessions, code: session}, bills)
            return session

    def find_bill(self, bill_id: str) -> StoredBill | None:
        return self.bills.get(bill_id)

    def create_bill(self, bill: StoredBill) -> StoredBill:
        with self._lock:
            sessions, bills = self._read_state()
            if bill.bill_id in bills:
                raise DuplicateBillError(bill.bill_id)
            now = utc_now()
            stored = replace(
                bill,
                id=bill.id or str(uuid.uuid4())[:8],
                created_at=bill.created_at or now,
                updated_at=now,
            )
            self._write_state(sessions, {**bills, stored.bill_id: stored})
            return stored

    def update_bill(self, bill_id: str, fields: dict[str, Any]) -> StoredBill:
        with self._lock:
            sessions, bills = self._read_state()
            existing = bills.get(bill_id)
            if existing is None:
                raise KeyError(bill_id)
            changes = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS}
            updated = replace(existing, **changes, updated_at=utc_now())
            self._write_state(sessions, {**bills, bill_id: updated})
            return updated

    def count_by_type(self) -> dict[str, int]:
        return dict(Counter(b.bill_type for b in self.bills.values()))

    def last_updated(self) -> StoredBill | None:
        bills = self.bills
        if not bills:
            return None
        return max(bills.values(), key=lambda b: b.updated_at)

    def max_bill_number(self, bill_type: str) -> int:
        """Highest stored bill number of *bill_type*, or 0."""
        numbers = [b.bill_number for b in self.bills.values() if b.bill_type == bill_type]
        return max(numbers, default=0)


class JsonBillStore(MemoryBillStore):
    """File-backed store: ``{"sessions": {...}, "bills": {...}}``, re-read on every access."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path

    def _read_state(self) -> tuple[dict[str, SessionRecord], dict[str, StoredBill]]:
        if not self.path.exists():
            return {}, {}
        with open(self.path, encoding="utf-8") as f:
            raw = json.load(f)
        sessions = {code: SessionRecord(**d) for code, d in raw.get("sessions", {}).items()}
        bills = {bid: StoredBill(**d) for bid, d in raw.get("bills", {}).items()}
        return sessions, bills

    def _write_state(
        self, sessions: dict[str, SessionRecord], bills: dict[str, StoredBill]
    ) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "sessions": {code: asdict(s) for code, s in sessions.items()},
            "bills": {bid: asdict(b) for bid, b in bills.items()},
        }
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self.path)
        LOGGER.debug("Wrote %d bills to %s", len(bills), self.path)
