"""Upsert parsed bills into the store by natural key."""

from __future__ import annotations

import logging

from .models import ItemOutcome, ParsedRecord, StoredBill, make_filename
from .store import BillStore

LOGGER = logging.getLogger(__name__)


class Reconciler:
    """Create-or-update bills, keeping running created/updated/error tallies.

    :meth:`reconcile` never raises: a store failure is logged and reported as
    an ``"error"`` outcome so the caller can move on to the next bill.
    """

    def __init__(self, store: BillStore) -> None:
        self.store = store
        self.created = 0
        self.updated = 0
        self.errors = 0
        self._session_ids: dict[str, str] = {}

    def ensure_session(self, session_code: str, session_name: str) -> str:
        session_id = self._session_ids.get(session_code)
        if session_id is None:
            session_id = self.store.upsert_session(session_code, session_name).id
            self._session_ids[session_code] = session_id
        return session_id

    def reconcile(
        self, record: ParsedRecord, session_code: str, session_name: str
    ) -> ItemOutcome:
        bill_id = record.bill_id
        date_str = record.last_action_date.isoformat() if record.last_action_date else None
        try:
            session_id = self.ensure_session(session_code, session_name)
            existing = self.store.find_bill(bill_id)
            if existing is not None:
                self.store.update_bill(
                    bill_id,
                    {
                        "description": record.description,
                        "authors": list(record.authors),
                        "status": record.status.value,
                        "last_action": record.last_action,
                        "last_action_date": date_str,
                    },
                )
                self.updated += 1
                return ItemOutcome(bill_id=bill_id, status="updated")

            self.store.create_bill(
                StoredBill(
                    id="",
                    session_id=session_id,
                    bill_type=record.bill_type,
                    bill_number=record.bill_number,
                    bill_id=bill_id,
                    filename=make_filename(record.bill_type, record.bill_number),
                    description=record.description,
                    authors=list(record.authors),
                    subjects=[],
                    status=record.status.value,
                    last_action=record.last_action,
                    last_action_date=date_str,
                )
            )
            self.created += 1
            return ItemOutcome(bill_id=bill_id, status="created")
        except Exception as exc:
            LOGGER.warning("Error saving bill %s: %s", bill_id, exc)
            self.errors += 1
            return ItemOutcome(
                bill_id=bill_id, status="error", message="Failed to save to database"
            )
