"""Job repository: durable home of :class:`SyncJob` state.

The controller never holds job state between calls -- every batch step loads
the job, works, and saves it back -- so whatever repository is injected here
is what makes a sync resumable across process restarts.

``create_exclusive`` performs the single-flight check and the insert under one
lock, so two triggers racing each other can't both create an active job.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from .errors import JobAlreadyActiveError
from .models import SyncJob

LOGGER = logging.getLogger(__name__)


class JobRepository(Protocol):
    def get(self, job_id: str) -> SyncJob | None: ...

    def get_active(self) -> SyncJob | None: ...

    def create_exclusive(self, job: SyncJob) -> SyncJob: ...

    def save(self, job: SyncJob) -> SyncJob: ...

    def list_recent(self, n: int = 20) -> list[SyncJob]: ...


class MemoryJobRepository:
    """In-process repository.  State is lost on restart."""

    def __init__(self) -> None:
        self._jobs: dict[str, dict] = {}
        self._lock = threading.RLock()

    def _read_all(self) -> dict[str, dict]:
        return self._jobs

    def _write_all(self, jobs: dict[str, dict]) -> None:
        self._jobs = jobs

    def get(self, job_id: str) -> SyncJob | None:
        with self._lock:
            d = self._read_all().get(job_id)
            return SyncJob.from_dict(d) if d else None

    def get_active(self) -> SyncJob | None:
        with self._lock:
            jobs = [SyncJob.from_dict(d) for d in self._read_all().values()]
        active = [j for j in jobs if j.status.is_active]
        if not active:
            return None
        return max(active, key=lambda j: j.created_at)

    def create_exclusive(self, job: SyncJob) -> SyncJob:
        with self._lock:
            existing = self.get_active()
            if existing is not None:
                raise JobAlreadyActiveError(existing.id)
            jobs = dict(self._read_all())
            jobs[job.id] = job.to_dict()
            self._write_all(jobs)
        return job

    def save(self, job: SyncJob) -> SyncJob:
        with self._lock:
            jobs = dict(self._read_all())
            jobs[job.id] = job.to_dict()
            self._write_all(jobs)
        return job

    def list_recent(self, n: int = 20) -> list[SyncJob]:
        with self._lock:
            jobs = [SyncJob.from_dict(d) for d in self._read_all().values()]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:n]


class JsonJobRepository(MemoryJobRepository):
    """Jobs persisted to one JSON file, re-read on every access."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path

    def _read_all(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            LOGGER.warning("Failed to load sync jobs from %s: %s", self.path, e)
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write_all(self, jobs: dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(jobs, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self.path)
