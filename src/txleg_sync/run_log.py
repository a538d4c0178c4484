"""Run log for bill sync runs.

Append-only JSONL: one line per ``SyncController.run`` with the job it drove,
how long each bill type took, the final job status and the bill counts.
scripts/log_dashboard.py reads it back to show which syncs failed and which
bill type ate the time.

Usage:
    from txleg_sync.run_log import RunLogger

    with RunLogger("bill_sync", meta={"job_id": job.id}) as log:
        log.start_type("HB")
        ...  # process HB batches
        log.finish_type("HB", bills=50)
        log.meta.update(status="COMPLETED", created=12)
    # On exit, the run is appended to .run_log.jsonl
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

LOGGER = logging.getLogger(__name__)

# Append-only; one JSON object per line.
DEFAULT_LOG_PATH = Path(".run_log.jsonl")


@dataclass
class TypePhase:
    """Time spent on one bill type within a run."""

    bill_type: str
    duration_s: float
    bills: int = 0


@dataclass
class RunRecord:
    """One line in the run log."""

    run_id: str
    task: str
    started_at: str  # ISO
    ended_at: str | None = None
    duration_s: float | None = None
    status: str = "running"  # ok | error | running
    phases: list[TypePhase] = field(default_factory=list)
    error: str | None = None
    meta: dict = field(default_factory=dict)  # job_id, job status, counts

    @property
    def job_id(self) -> str | None:
        return self.meta.get("job_id")

    @property
    def job_status(self) -> str:
        """Final job status, or the run status when the job never reported one."""
        return self.meta.get("status") or self.status

    def slowest(self, n: int = 2) -> list[TypePhase]:
        return sorted(self.phases, key=lambda p: p.duration_s, reverse=True)[:n]

    def to_json_line(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json_line(cls, line: str) -> RunRecord | None:
        line = line.strip()
        if not line:
            return None
        try:
            d = json.loads(line)
            return cls(
                run_id=d.get("run_id", ""),
                task=d.get("task", ""),
                started_at=d.get("started_at", ""),
                ended_at=d.get("ended_at"),
                duration_s=d.get("duration_s"),
                status=d.get("status", "ok"),
                phases=[TypePhase(**p) for p in d.get("phases", [])],
                error=d.get("error"),
                meta=d.get("meta", {}),
            )
        except (json.JSONDecodeError, TypeError, AttributeError):
            return None


class RunLogger:
    """Context manager that times bill types and appends the run on exit."""

    def __init__(
        self,
        task: str,
        *,
        log_path: Path | None = None,
        meta: dict | None = None,
    ):
        self.task = task
        self.log_path = log_path if log_path is not None else get_log_path()
        self.meta = dict(meta or {})
        self.run_id = str(uuid.uuid4())[:8]
        self.phases: list[TypePhase] = []
        self._started_at: str | None = None
        self._start_time: float | None = None
        self._type_started: dict[str, float] = {}
        self._status = "ok"
        self._error: str | None = None

    def start(self) -> None:
        self._started_at = datetime.now(timezone.utc).isoformat()
        self._start_time = time.perf_counter()
        self.phases = []
        self._type_started = {}
        self._status = "ok"
        self._error = None

    def start_type(self, bill_type: str) -> None:
        self._type_started[bill_type] = time.perf_counter()

    def finish_type(self, bill_type: str, *, bills: int) -> TypePhase:
        """Close the phase for *bill_type*; timed from run start if never started."""
        t0 = self._type_started.pop(bill_type, self._start_time)
        elapsed = time.perf_counter() - t0 if t0 is not None else 0.0
        phase = TypePhase(bill_type=bill_type, duration_s=round(elapsed, 2), bills=bills)
        self.phases.append(phase)
        return phase

    def end(self, status: str = "ok", error: str | None = None) -> None:
        self._status = status
        self._error = error
        self._write()

    def _write(self) -> None:
        if self._start_time is None:
            return
        ended_at = datetime.now(timezone.utc).isoformat()
        record = RunRecord(
            run_id=self.run_id,
            task=self.task,
            started_at=self._started_at or ended_at,
            ended_at=ended_at,
            duration_s=round(time.perf_counter() - self._start_time, 2),
            status=self._status,
            phases=self.phases,
            error=self._error,
            meta=self.meta,
        )
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(record.to_json_line() + "\n")
        except OSError as e:
            LOGGER.warning("Run log append failed: %s", e)

    def __enter__(self) -> RunLogger:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self._status = "error"
            self._error = f"{exc_type.__name__}: {exc_val}" if exc_val else exc_type.__name__
        self.end(self._status, self._error)
        return None  # do not suppress


def load_recent_runs(
    n: int = 100,
    *,
    task: str | None = None,
    log_path: Path | None = None,
) -> list[RunRecord]:
    """Load the last n runs (newest first). Optionally filter by task."""
    path = log_path or get_log_path()
    if not path.exists():
        return []
    records: list[RunRecord] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            rec = RunRecord.from_json_line(line)
            if rec is None:
                continue
            if task is None or rec.task == task:
                records.append(rec)
    return records[-n:][::-1]


def get_log_path() -> Path:
    """Path to the run log file; ``TXLEG_RUN_LOG`` overrides the default."""
    return Path(os.environ.get("TXLEG_RUN_LOG", str(DEFAULT_LOG_PATH)))
