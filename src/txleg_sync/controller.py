"""Resumable bill sync job controller.

A sync job walks each configured bill type in order: fetch the listing once,
sort the bill numbers, then work through them a batch at a time.  The batch
step (:meth:`SyncController.process_next_batch`) is the only unit of forward
progress and the only persistence checkpoint -- it loads the job, processes up
to ``batch_size`` bills, and saves the job back in a single write.  That is
what lets the same job be driven by a polling UI (one batch per request), by
the streaming endpoint, or by :meth:`SyncController.run`, and survive a
process restart in between.

State machine::

    PENDING -> RUNNING <-> PAUSED
    RUNNING -> COMPLETED | ERROR
    PENDING | RUNNING | PAUSED -> STOPPED
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from pathlib import Path

import requests

from .config import BATCH_SIZE
from .errors import InvalidTransitionError, JobNotFoundError, SyncDisabledError
from .jobs import JobRepository
from .models import (
    BatchResult,
    CandidateItem,
    DetailResult,
    ItemOutcome,
    JobStatus,
    SyncJob,
    SyncOptions,
    SyncSummary,
    utc_now,
)
from .reconciler import Reconciler
from .run_log import RunLogger
from .scrapers.detail import fetch_bill_detail
from .scrapers.listing import build_session, fetch_bill_numbers
from .settings import SettingsStore, get_setting, get_setting_typed, resolve_fetch_settings
from .store import BillStore

LOGGER = logging.getLogger(__name__)

FetchNumbers = Callable[[str, str], set[int]]
FetchDetail = Callable[[str, int, str], DetailResult]


class SyncController:
    def __init__(
        self,
        settings: SettingsStore,
        jobs: JobRepository,
        store: BillStore,
        *,
        fetch_numbers: FetchNumbers | None = None,
        fetch_detail: FetchDetail | None = None,
        sleep: Callable[[float], None] = time.sleep,
        batch_size: int = BATCH_SIZE,
        run_log_path: Path | None = None,
    ) -> None:
        self.settings = settings
        self.jobs = jobs
        self.store = store
        self.sleep = sleep
        self.batch_size = max(1, batch_size)
        self.run_log_path = run_log_path
        self._http: requests.Session | None = None
        self._fetch_numbers = fetch_numbers or self._default_fetch_numbers
        self._fetch_detail = fetch_detail or self._default_fetch_detail
        # Sorted listing per (session, bill type).  Process-local: a restarted
        # process re-fetches the listing and continues from the job's cursor.
        self._candidates: dict[tuple[str, str], list[int]] = {}

    # ── Network defaults ─────────────────────────────────────────────────

    @property
    def http(self) -> requests.Session:
        if self._http is None:
            self._http = build_session()
        return self._http

    def _default_fetch_numbers(self, bill_type: str, session_code: str) -> set[int]:
        return fetch_bill_numbers(bill_type, session_code, session=self.http)

    def _default_fetch_detail(
        self, bill_type: str, bill_number: int, session_code: str
    ) -> DetailResult:
        return fetch_bill_detail(bill_type, bill_number, session_code, session=self.http)

    # ── Queries ──────────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> SyncJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_active_job(self) -> SyncJob | None:
        return self.jobs.get_active()

    def sync_status(self) -> dict:
        """Store-level stats for the admin status panel."""
        by_type = self.store.count_by_type()
        last = self.store.last_updated()
        return {
            "totalBills": sum(by_type.values()),
            "lastSyncAt": last.updated_at if last else None,
            "lastSyncedBill": last.bill_id if last else None,
            "billsByType": by_type,
            "syncEnabled": get_setting_typed(self.settings, "SYNC_ENABLED") is not False,
            "sessionCode": get_setting(self.settings, "SESSION_CODE") or "89R",
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    def trigger(self, options: SyncOptions | None = None) -> SyncJob:
        """Create a new job and start it.

        Raises :class:`SyncDisabledError` or :class:`JobAlreadyActiveError`
        without touching any state.
        """
        opts = options or SyncOptions()
        fs = resolve_fetch_settings(self.settings, opts)
        if not fs.sync_enabled:
            raise SyncDisabledError()

        cursors = {t: 0 for t in fs.bill_types}
        if opts.only_new:
            cursors = {t: self.store.max_bill_number(t) for t in fs.bill_types}

        now = utc_now()
        job = SyncJob(
            id=str(uuid.uuid4())[:8],
            status=JobStatus.PENDING,
            session_code=fs.session_code,
            session_name=fs.session_name,
            bill_types=list(fs.bill_types),
            max_bills=fs.max_bills,
            batch_delay_ms=fs.batch_delay_ms,
            completed_types={t: False for t in fs.bill_types},
            cursors=cursors,
            processed_by_type={t: 0 for t in fs.bill_types},
            created_at=now,
            last_activity_at=now,
        )
        self.jobs.create_exclusive(job)

        # Fresh run, fresh catalog snapshot.
        for bill_type in fs.bill_types:
            self._candidates.pop((fs.session_code, bill_type), None)

        job.status = JobStatus.RUNNING
        job.started_at = now
        self.jobs.save(job)
        LOGGER.info(
            "Started sync job %s: session=%s, maxBills=%d, types=%s",
            job.id,
            job.session_code,
            job.max_bills,
            ",".join(job.bill_types),
        )
        return job

    def pause(self, job_id: str) -> SyncJob:
        job = self.get_job(job_id)
        if job.status != JobStatus.RUNNING:
            raise InvalidTransitionError(job_id, job.status.value, "pause")
        job.status = JobStatus.PAUSED
        job.paused_at = job.last_activity_at = utc_now()
        LOGGER.info("Paused sync job %s", job_id)
        return self.jobs.save(job)

    def resume(self, job_id: str) -> SyncJob:
        job = self.get_job(job_id)
        if job.status != JobStatus.PAUSED:
            raise InvalidTransitionError(job_id, job.status.value, "resume")
        job.status = JobStatus.RUNNING
        job.paused_at = None
        job.last_activity_at = utc_now()
        LOGGER.info("Resumed sync job %s", job_id)
        return self.jobs.save(job)

    def stop(self, job_id: str) -> SyncJob:
        job = self.get_job(job_id)
        if job.status.is_terminal:
            return job
        job.status = JobStatus.STOPPED
        job.completed_at = job.last_activity_at = utc_now()
        LOGGER.info("Stopped sync job %s", job_id)
        return self.jobs.save(job)

    # ── Listings ─────────────────────────────────────────────────────────

    def candidates(self, session_code: str, bill_type: str) -> list[int]:
        """Sorted bill numbers for *bill_type*, fetched once per process."""
        key = (session_code, bill_type)
        cached = self._candidates.get(key)
        if cached is not None:
            return cached
        LOGGER.info("Scanning available %s bills (session %s)", bill_type, session_code)
        numbers = sorted(self._fetch_numbers(bill_type, session_code))
        # An empty listing is usually a failed fetch; don't pin it.
        if numbers:
            self._candidates[key] = numbers
        return numbers

    def remaining_by_type(self, job_id: str) -> dict[str, int]:
        """How many bills each unfinished type will still process (cap applied)."""
        job = self.get_job(job_id)
        remaining: dict[str, int] = {}
        for bill_type in job.bill_types:
            if job.completed_types.get(bill_type):
                remaining[bill_type] = 0
                continue
            cursor = job.cursors.get(bill_type, 0)
            pending = [n for n in self.candidates(job.session_code, bill_type) if n > cursor]
            cap_left = job.per_type_cap - job.processed_by_type.get(bill_type, 0)
            remaining[bill_type] = max(0, min(len(pending), cap_left))
        return remaining

    # ── Batch step ───────────────────────────────────────────────────────

    def process_next_batch(self, job_id: str) -> BatchResult:
        """Advance a RUNNING job by one batch and persist it.

        Fetch and save failures for individual bills are counted, not raised.
        Anything else that escapes moves the job to ERROR and propagates.
        """
        job = self.get_job(job_id)
        if job.status != JobStatus.RUNNING:
            return BatchResult(
                is_complete=job.status == JobStatus.COMPLETED,
                message=f"Job is {job.status.value.lower()}",
            )
        try:
            return self._run_batch(job)
        except Exception as exc:
            LOGGER.exception("Sync batch failed for job %s", job_id)
            self._mark_error(job_id, exc)
            raise

    def _mark_error(self, job_id: str, exc: Exception) -> None:
        job = self.jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return
        job.status = JobStatus.ERROR
        job.last_error = f"{type(exc).__name__}: {exc}"
        job.completed_at = job.last_activity_at = utc_now()
        self.jobs.save(job)

    def _run_batch(self, job: SyncJob) -> BatchResult:
        bill_type = job.current_type
        if bill_type is None:
            return self._finish(job, BatchResult(message="All bill types have been fully synced"))

        candidates = self.candidates(job.session_code, bill_type)
        pending = [n for n in candidates if n > job.cursors.get(bill_type, 0)]
        cap_left = job.per_type_cap - job.processed_by_type.get(bill_type, 0)
        result = BatchResult(bill_type=bill_type)

        reconciler = Reconciler(self.store)
        take = max(0, min(self.batch_size, cap_left))
        batch = [CandidateItem(bill_type, n) for n in pending[:take]]
        for i, item in enumerate(batch):
            if i > 0 and job.batch_delay_ms > 0:
                self.sleep(job.batch_delay_ms / 1000)

            # A pause/stop from another caller ends the batch early.
            current = self.jobs.get(job.id)
            if current is None or current.status != JobStatus.RUNNING:
                break

            detail = self._fetch_detail(item.bill_type, item.bill_number, job.session_code)
            if not detail.ok:
                reason = "Bill not found" if detail.not_found else "Failed to fetch bill details"
                result.items.append(ItemOutcome(item.bill_id, "error", reason))
                result.errors += 1
            else:
                outcome = reconciler.reconcile(detail.record, job.session_code, job.session_name)
                result.items.append(outcome)

            result.processed += 1
            job.cursors[bill_type] = item.bill_number
            job.processed_by_type[bill_type] = job.processed_by_type.get(bill_type, 0) + 1

        result.created = reconciler.created
        result.updated = reconciler.updated
        result.errors += reconciler.errors

        exhausted = not any(n > job.cursors.get(bill_type, 0) for n in candidates)
        capped = job.processed_by_type.get(bill_type, 0) >= job.per_type_cap
        if exhausted or capped:
            job.completed_types[bill_type] = True
            result.category_completed = True
            LOGGER.info(
                "Finished %s for job %s: %d bills processed",
                bill_type,
                job.id,
                job.processed_by_type.get(bill_type, 0),
            )

        job.total_processed += result.processed
        job.total_created += result.created
        job.total_updated += result.updated
        job.total_errors += result.errors

        if result.category_completed and job.current_type is None:
            result.message = "All bill types have been fully synced"
            return self._finish(job, result)

        if result.category_completed:
            result.message = f"Completed {bill_type}, moving to next type"
        else:
            result.message = f"Processed {result.processed} bills ({bill_type})"
        self._save_progress(job)
        return result

    def _finish(self, job: SyncJob, result: BatchResult) -> BatchResult:
        self._save_progress(job, complete=True)
        result.is_complete = job.status == JobStatus.COMPLETED
        return result

    def _save_progress(self, job: SyncJob, *, complete: bool = False) -> None:
        """Write the batch's progress without clobbering a concurrent pause/stop."""
        now = utc_now()
        latest = self.jobs.get(job.id)
        if latest is not None and latest.status != JobStatus.RUNNING:
            job.status = latest.status
            job.paused_at = latest.paused_at
            job.completed_at = latest.completed_at
        elif complete:
            job.status = JobStatus.COMPLETED
            job.completed_at = now
        job.last_activity_at = now
        self.jobs.save(job)

    # ── Whole-run driver ─────────────────────────────────────────────────

    def run(self, options: SyncOptions | None = None) -> SyncSummary:
        """Trigger a job and drive it until it completes, pauses or stops."""
        t0 = time.perf_counter()
        job = self.trigger(options)

        with RunLogger("bill_sync", log_path=self.run_log_path, meta={"job_id": job.id}) as log:
            if job.current_type:
                log.start_type(job.current_type)
            while True:
                batch = self.process_next_batch(job.id)
                job = self.get_job(job.id)
                if batch.category_completed and batch.bill_type:
                    log.finish_type(
                        batch.bill_type, bills=job.processed_by_type.get(batch.bill_type, 0)
                    )
                    if job.current_type:
                        log.start_type(job.current_type)
                if batch.is_complete or job.status != JobStatus.RUNNING:
                    break

            log.meta.update(
                {
                    "status": job.status.value,
                    "fetched": job.total_processed,
                    "created": job.total_created,
                    "updated": job.total_updated,
                    "errors": job.total_errors,
                }
            )

        summary = SyncSummary(
            job_id=job.id,
            status=job.status.value,
            fetched=job.total_processed,
            created=job.total_created,
            updated=job.total_updated,
            errors=job.total_errors,
            duration_ms=int((time.perf_counter() - t0) * 1000),
            timestamp=utc_now(),
            session_code=job.session_code,
            max_bills=job.max_bills,
            batch_delay_ms=job.batch_delay_ms,
            bill_types=list(job.bill_types),
        )
        LOGGER.info(
            "Sync complete: %d fetched, %d created, %d updated, %d errors in %dms",
            summary.fetched,
            summary.created,
            summary.updated,
            summary.errors,
            summary.duration_ms,
        )
        return summary
