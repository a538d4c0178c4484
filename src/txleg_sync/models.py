from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

# Storage bounds for free-text fields scraped from the history page.
DESCRIPTION_MAX_LEN = 2000
LAST_ACTION_MAX_LEN = 500


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_bill_id(bill_type: str, bill_number: int) -> str:
    """Natural key used for upserts, e.g. ``"HB 1"``."""
    return f"{bill_type.upper()} {bill_number}"


def make_filename(bill_type: str, bill_number: int) -> str:
    return f"{bill_type.lower()}{bill_number}.txt"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


class BillStatus(str, Enum):
    FILED = "Filed"
    IN_COMMITTEE = "In Committee"
    PASSED = "Passed"
    SENT_TO_GOVERNOR = "Sent to Governor"
    SIGNED = "Signed"


@dataclass(frozen=True)
class CandidateItem:
    bill_type: str  # "HB" or "SB"
    bill_number: int

    @property
    def bill_id(self) -> str:
        return make_bill_id(self.bill_type, self.bill_number)


@dataclass
class ParsedRecord:
    bill_type: str
    bill_number: int
    description: str
    authors: list[str] = field(default_factory=list)
    status: BillStatus = BillStatus.FILED
    last_action: str = ""
    last_action_date: date | None = None

    @property
    def bill_id(self) -> str:
        return make_bill_id(self.bill_type, self.bill_number)


@dataclass
class DetailResult:
    """Outcome of one detail fetch: a record, or an explicit miss."""

    record: ParsedRecord | None = None
    not_found: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None


@dataclass
class SessionRecord:
    id: str
    code: str  # e.g. "89R"
    name: str  # e.g. "89th Regular Session"
    start_date: str = "2025-01-14"
    is_active: bool = True


@dataclass
class StoredBill:
    id: str
    session_id: str
    bill_type: str
    bill_number: int
    bill_id: str  # natural key -- unique
    filename: str
    description: str
    authors: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)
    status: str = BillStatus.FILED.value
    last_action: str = ""
    last_action_date: str | None = None  # ISO date
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ItemOutcome:
    bill_id: str
    status: str  # "created" | "updated" | "error"
    message: str | None = None


@dataclass
class SyncOptions:
    """Caller overrides for a run; ``None`` means use the settings store."""

    max_bills: int | None = None
    bill_types: list[str] | None = None
    session_code: str | None = None
    session_name: str | None = None
    batch_delay_ms: int | None = None
    # Skip bills numbered at or below the highest one already stored.
    only_new: bool = False


@dataclass
class FetchSettings:
    """Effective configuration for one run, resolved at trigger time."""

    session_code: str
    session_name: str
    max_bills: int
    batch_delay_ms: int
    sync_enabled: bool
    bill_types: list[str]


@dataclass
class SyncJob:
    id: str
    status: JobStatus
    session_code: str
    session_name: str
    bill_types: list[str]
    max_bills: int
    batch_delay_ms: int
    completed_types: dict[str, bool] = field(default_factory=dict)
    cursors: dict[str, int] = field(default_factory=dict)  # last bill number per type
    processed_by_type: dict[str, int] = field(default_factory=dict)
    total_processed: int = 0
    total_created: int = 0
    total_updated: int = 0
    total_errors: int = 0
    created_at: str = ""
    started_at: str | None = None
    paused_at: str | None = None
    completed_at: str | None = None
    last_activity_at: str = ""
    last_error: str | None = None

    @property
    def current_type(self) -> str | None:
        """First bill type not yet marked complete."""
        for bill_type in self.bill_types:
            if not self.completed_types.get(bill_type):
                return bill_type
        return None

    @property
    def per_type_cap(self) -> int:
        return max(1, self.max_bills // max(1, len(self.bill_types)))

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> SyncJob:
        return cls(
            id=d["id"],
            status=JobStatus(d["status"]),
            session_code=d.get("session_code", ""),
            session_name=d.get("session_name", ""),
            bill_types=list(d.get("bill_types", [])),
            max_bills=int(d.get("max_bills", 0)),
            batch_delay_ms=int(d.get("batch_delay_ms", 0)),
            completed_types=dict(d.get("completed_types", {})),
            cursors={k: int(v) for k, v in d.get("cursors", {}).items()},
            processed_by_type={k: int(v) for k, v in d.get("processed_by_type", {}).items()},
            total_processed=int(d.get("total_processed", 0)),
            total_created=int(d.get("total_created", 0)),
            total_updated=int(d.get("total_updated", 0)),
            total_errors=int(d.get("total_errors", 0)),
            created_at=d.get("created_at", ""),
            started_at=d.get("started_at"),
            paused_at=d.get("paused_at"),
            completed_at=d.get("completed_at"),
            last_activity_at=d.get("last_activity_at", ""),
            last_error=d.get("last_error"),
        )


@dataclass
class BatchResult:
    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    bill_type: str | None = None
    items: list[ItemOutcome] = field(default_factory=list)
    category_completed: bool = False
    is_complete: bool = False
    message: str = ""


@dataclass
class SyncSummary:
    job_id: str
    status: str
    fetched: int
    created: int
    updated: int
    errors: int
    duration_ms: int
    timestamp: str
    session_code: str
    max_bills: int
    batch_delay_ms: int
    bill_types: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.status != JobStatus.ERROR.value,
            "jobId": self.job_id,
            "status": self.status,
            "timestamp": self.timestamp,
            "duration": f"{self.duration_ms}ms",
            "bills": {
                "fetched": self.fetched,
                "created": self.created,
                "updated": self.updated,
                "errors": self.errors,
            },
            "settings": {
                "sessionCode": self.session_code,
                "maxBills": self.max_bills,
                "batchDelay": self.batch_delay_ms,
                "billTypes": list(self.bill_types),
            },
        }
