"""Live progress for one sync run, as a lazy stream of tagged events.

:func:`stream_sync` drives the controller's batch step in a loop and yields a
:class:`ProgressEvent` for everything an operator watching the run cares
about.  It knows nothing about transports; the HTTP layer turns events into
Server-Sent Events and the CLI prints them.

Event types:

- ``phase``              -- coarse stage change (initializing, scanning, ...)
- ``log``                -- human-readable status line
- ``category_started``   -- work began on a bill type
- ``progress``           -- running count against the planned total
- ``bill``               -- one bill's outcome (created / updated / error)
- ``category_completed`` -- a bill type finished
- ``complete``           -- terminal: the run ended (``success`` may be false)
- ``error``              -- terminal: the run failed or was rejected

Cancellation is cooperative: the token is checked before every batch step.
A cancelled stream just stops yielding; the job stays RUNNING so a poller or
a later stream can pick it up where it left off.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from .controller import SyncController
from .errors import SyncError
from .models import JobStatus, SyncOptions

LOGGER = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in ("complete", "error")


class CancellationToken:
    """Set by the consumer when it stops listening (e.g. the client hung up)."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _log(message: str, level: str = "info") -> ProgressEvent:
    return ProgressEvent("log", {"message": message, "level": level})


def stream_sync(
    controller: SyncController,
    options: SyncOptions | None = None,
    token: CancellationToken | None = None,
    *,
    job_id: str | None = None,
) -> Iterator[ProgressEvent]:
    """Run (or continue) a sync job, yielding progress as it happens.

    With *job_id*, attaches to an existing RUNNING job instead of triggering
    a new one.
    """
    token = token or CancellationToken()
    t0 = time.perf_counter()

    yield ProgressEvent("phase", {"phase": "initializing", "message": "Initializing sync..."})
    try:
        if job_id is None:
            job = controller.trigger(options)
        else:
            job = controller.get_job(job_id)
            if job.status != JobStatus.RUNNING:
                raise SyncError(f"Job {job_id} is {job.status.value.lower()}, not running")
    except SyncError as exc:
        LOGGER.warning("Sync stream rejected: %s", exc)
        yield ProgressEvent("error", {"message": str(exc)})
        return
    except Exception as exc:
        LOGGER.exception("Sync stream failed to start")
        yield ProgressEvent("error", {"message": str(exc) or type(exc).__name__})
        return

    yield _log(
        f"Starting sync: session={job.session_code}, maxBills={job.max_bills}, "
        f"types={','.join(job.bill_types)}"
    )

    try:
        yield ProgressEvent(
            "phase", {"phase": "scanning", "message": "Scanning bill listings..."}
        )
        remaining = controller.remaining_by_type(job.id)
        for bill_type, count in remaining.items():
            yield _log(f"{count} {bill_type} bills to sync")
        total = sum(remaining.values())

        yield ProgressEvent(
            "phase", {"phase": "processing_bills", "message": f"Processing {total} bills..."}
        )
        current = 0
        started_type: str | None = None

        while True:
            if token.cancelled:
                LOGGER.info("Sync stream for job %s cancelled by client", job.id)
                return

            bill_type = controller.get_job(job.id).current_type
            if bill_type is not None and bill_type != started_type:
                started_type = bill_type
                yield ProgressEvent(
                    "category_started",
                    {"billType": bill_type, "total": remaining.get(bill_type, 0)},
                )

            batch = controller.process_next_batch(job.id)

            for item in batch.items:
                current += 1
                yield ProgressEvent(
                    "progress",
                    {
                        "current": current,
                        "total": total,
                        "percent": min(round(current / total * 100), 99) if total else 99,
                        "billType": batch.bill_type,
                    },
                )
                bill_event: dict[str, Any] = {"billId": item.bill_id, "status": item.status}
                if item.message:
                    bill_event["message"] = item.message
                yield ProgressEvent("bill", bill_event)

            if batch.category_completed and batch.bill_type:
                yield ProgressEvent("category_completed", {"billType": batch.bill_type})

            job = controller.get_job(job.id)
            if batch.is_complete or job.status != JobStatus.RUNNING:
                break
    except Exception as exc:
        LOGGER.exception("Sync stream failed for job %s", job.id)
        yield ProgressEvent("error", {"message": str(exc) or type(exc).__name__})
        return

    success = job.status == JobStatus.COMPLETED
    if success:
        yield ProgressEvent("phase", {"phase": "complete", "message": "Sync complete!"})
    else:
        yield _log(f"Sync ended with job {job.status.value.lower()}", "warn")
    yield ProgressEvent(
        "complete",
        {
            "success": success,
            "jobId": job.id,
            "status": job.status.value,
            "duration": int((time.perf_counter() - t0) * 1000),
            "summary": {
                "fetched": job.total_processed,
                "created": job.total_created,
                "updated": job.total_updated,
                "errors": job.total_errors,
            },
        },
    )
