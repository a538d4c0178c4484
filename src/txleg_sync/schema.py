from __future__ import annotations

from enum import Enum

import strawberry

from .models import JobStatus as JobStatusModel
from .models import StoredBill as StoredBillModel
from .models import SyncJob as SyncJobModel

# ── Enums ─────────────────────────────────────────────────────────────────────


@strawberry.enum
class JobStatus(Enum):
    """Lifecycle status of a sync job."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"

    @classmethod
    def from_model(cls, status: JobStatusModel) -> JobStatus:
        return cls(status.value)


# ── Types ─────────────────────────────────────────────────────────────────────


@strawberry.type
class CategoryProgressType:
    """Progress through one bill type within a job."""

    bill_type: str
    completed: bool
    cursor: int = strawberry.field(description="Last bill number processed (0 = none).")
    processed: int


@strawberry.type
class SyncJobType:
    id: str
    status: JobStatus
    session_code: str
    session_name: str
    bill_types: list[str]
    max_bills: int
    batch_delay_ms: int
    categories: list[CategoryProgressType]
    total_processed: int
    total_created: int
    total_updated: int
    total_errors: int
    created_at: str
    started_at: str | None = None
    paused_at: str | None = None
    completed_at: str | None = None
    last_activity_at: str = ""
    last_error: str | None = None

    @classmethod
    def from_model(cls, j: SyncJobModel) -> SyncJobType:
        return cls(
            id=j.id,
            status=JobStatus.from_model(j.status),
            session_code=j.session_code,
            session_name=j.session_name,
            bill_types=list(j.bill_types),
            max_bills=j.max_bills,
            batch_delay_ms=j.batch_delay_ms,
            categories=[
                CategoryProgressType(
                    bill_type=t,
                    completed=bool(j.completed_types.get(t)),
                    cursor=j.cursors.get(t, 0),
                    processed=j.processed_by_type.get(t, 0),
                )
                for t in j.bill_types
            ],
            total_processed=j.total_processed,
            total_created=j.total_created,
            total_updated=j.total_updated,
            total_errors=j.total_errors,
            created_at=j.created_at,
            started_at=j.started_at,
            paused_at=j.paused_at,
            completed_at=j.completed_at,
            last_activity_at=j.last_activity_at,
            last_error=j.last_error,
        )


@strawberry.type
class BillCountType:
    bill_type: str
    count: int


@strawberry.type
class SyncStatusType:
    """Store-wide sync statistics."""

    total_bills: int
    bills_by_type: list[BillCountType]
    last_sync_at: str | None
    last_synced_bill: str | None
    sync_enabled: bool
    session_code: str

    @classmethod
    def from_status(cls, status: dict) -> SyncStatusType:
        return cls(
            total_bills=status["totalBills"],
            bills_by_type=[
                BillCountType(bill_type=t, count=c)
                for t, c in sorted(status["billsByType"].items())
            ],
            last_sync_at=status["lastSyncAt"],
            last_synced_bill=status["lastSyncedBill"],
            sync_enabled=status["syncEnabled"],
            session_code=status["sessionCode"],
        )


@strawberry.type
class BillType:
    bill_id: str
    bill_type: str
    bill_number: int
    description: str
    authors: list[str]
    status: str
    last_action: str
    last_action_date: str | None
    updated_at: str

    @classmethod
    def from_model(cls, b: StoredBillModel) -> BillType:
        return cls(
            bill_id=b.bill_id,
            bill_type=b.bill_type,
            bill_number=b.bill_number,
            description=b.description,
            authors=list(b.authors),
            status=b.status,
            last_action=b.last_action,
            last_action_date=b.last_action_date,
            updated_at=b.updated_at,
        )
