#!/usr/bin/env python3
"""Sync bills from the Texas Legislature website into the local store.

Runs the same controller the API uses, against the same data directory, so a
job started here shows up in ``GET /sync/job`` and vice versa.

Usage::

    python scripts/sync_bills.py                     # settings-store defaults
    python scripts/sync_bills.py --max-bills 40      # cap this run
    python scripts/sync_bills.py --types HB,SB,HJR   # choose bill types
    python scripts/sync_bills.py --only-new          # skip bills already stored
    python scripts/sync_bills.py --stream            # print events as they happen
    python scripts/sync_bills.py --pause JOB_ID      # pause a running job
    python scripts/sync_bills.py --resume JOB_ID     # resume and drive to the end
    python scripts/sync_bills.py --stop JOB_ID
    python scripts/sync_bills.py --status            # store stats + active job
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

# Ensure the project is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from txleg_sync.broadcaster import stream_sync  # noqa: E402
from txleg_sync.config import BILLS_FILE, JOBS_FILE, SETTINGS_FILE  # noqa: E402
from txleg_sync.controller import SyncController  # noqa: E402
from txleg_sync.errors import SyncError  # noqa: E402
from txleg_sync.jobs import JsonJobRepository  # noqa: E402
from txleg_sync.models import JobStatus, SyncJob, SyncOptions  # noqa: E402
from txleg_sync.settings import JsonSettingsStore  # noqa: E402
from txleg_sync.store import JsonBillStore  # noqa: E402

console = Console()

_EVENT_STYLE = {
    "phase": "bold cyan",
    "log": "dim",
    "category_started": "bold",
    "category_completed": "green",
    "complete": "bold green",
    "error": "bold red",
}


def _print_job(job: SyncJob, title: str = "Sync Job") -> None:
    table = Table(title=title, show_lines=True, title_style="bold green")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Job", job.id)
    table.add_row("Status", job.status.value)
    table.add_row("Session", f"{job.session_code} ({job.session_name})")
    table.add_row("Bill types", ", ".join(job.bill_types))
    table.add_row("Max bills", str(job.max_bills))
    for bill_type in job.bill_types:
        done = "done" if job.completed_types.get(bill_type) else "pending"
        table.add_row(
            f"  {bill_type}",
            f"{job.processed_by_type.get(bill_type, 0)} processed, "
            f"cursor {job.cursors.get(bill_type, 0)}, {done}",
        )
    table.add_row("Fetched", str(job.total_processed))
    table.add_row("Created", f"[green]{job.total_created}[/]")
    table.add_row("Updated", f"[cyan]{job.total_updated}[/]")
    table.add_row("Errors", f"[red]{job.total_errors}[/]" if job.total_errors else "0")
    if job.last_error:
        table.add_row("Last error", f"[red]{job.last_error}[/]")
    console.print(table)


def _print_status(controller: SyncController) -> None:
    status = controller.sync_status()
    table = Table(title="Sync Status", show_lines=True, title_style="bold green")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Session", status["sessionCode"])
    table.add_row("Sync enabled", "yes" if status["syncEnabled"] else "[red]no[/]")
    table.add_row("Total bills", str(status["totalBills"]))
    for bill_type, count in sorted(status["billsByType"].items()):
        table.add_row(f"  {bill_type}", str(count))
    table.add_row("Last synced", status["lastSyncedBill"] or "—")
    table.add_row("Last sync at", status["lastSyncAt"] or "—")
    console.print(table)

    active = controller.get_active_job()
    if active is not None:
        _print_job(active, title="Active Job")


def _stream(controller: SyncController, options: SyncOptions, job_id: str | None) -> int:
    ok = False
    for event in stream_sync(controller, options, job_id=job_id):
        style = _EVENT_STYLE.get(event.type)
        if event.type == "progress":
            continue
        if event.type == "bill":
            color = {"created": "green", "updated": "cyan"}.get(event.data["status"], "red")
            note = f"  {event.data['message']}" if event.data.get("message") else ""
            console.print(f"  [{color}]{event.data['status']:8}[/] {event.data['billId']}{note}")
            continue
        message = event.data.get("message") or event.data.get("billType") or ""
        label = f"[{style}]{event.type:18}[/]" if style else f"{event.type:18}"
        console.print(f"{label} {message}")
        if event.type == "complete":
            ok = bool(event.data.get("success"))
            job = controller.get_job(event.data["jobId"])
            _print_job(job, title="Sync Complete" if ok else "Sync Ended")
    return 0 if ok else 1


def _drive(controller: SyncController, job_id: str) -> int:
    """Run batches on an already-RUNNING job until it leaves RUNNING."""
    while True:
        batch = controller.process_next_batch(job_id)
        if batch.message:
            console.print(f"[dim]{batch.message}[/]")
        job = controller.get_job(job_id)
        if batch.is_complete or job.status != JobStatus.RUNNING:
            break
    _print_job(job)
    return 0 if job.status == JobStatus.COMPLETED else 1


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Sync Texas Legislature bills into the local store.",
    )
    parser.add_argument(
        "--max-bills",
        type=int,
        default=None,
        help="Cap on bills processed this run (split evenly across types).",
    )
    parser.add_argument(
        "--types",
        type=str,
        default=None,
        help="Comma-separated bill types, e.g. HB,SB (default: settings store).",
    )
    parser.add_argument(
        "--only-new",
        action="store_true",
        help="Start each type after the highest bill number already stored.",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Print progress events live.",
    )

    # ── Job control ──────────────────────────────────────────────────────
    control = parser.add_mutually_exclusive_group()
    control.add_argument("--status", action="store_true", help="Show store stats and exit.")
    control.add_argument("--pause", metavar="JOB_ID", help="Pause a running job.")
    control.add_argument("--resume", metavar="JOB_ID", help="Resume a paused job and finish it.")
    control.add_argument("--stop", metavar="JOB_ID", help="Stop a job for good.")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    controller = SyncController(
        JsonSettingsStore(SETTINGS_FILE),
        JsonJobRepository(JOBS_FILE),
        JsonBillStore(BILLS_FILE),
    )
    options = SyncOptions(
        max_bills=args.max_bills,
        bill_types=[t for t in args.types.split(",") if t.strip()] if args.types else None,
        only_new=args.only_new,
    )

    try:
        if args.status:
            _print_status(controller)
            return 0
        if args.pause:
            _print_job(controller.pause(args.pause), title="Paused")
            return 0
        if args.stop:
            _print_job(controller.stop(args.stop), title="Stopped")
            return 0
        if args.resume:
            job = controller.resume(args.resume)
            if args.stream:
                return _stream(controller, options, job.id)
            return _drive(controller, job.id)

        if args.stream:
            return _stream(controller, options, None)
        summary = controller.run(options)
    except SyncError as exc:
        console.print(f"[bold red]{exc}[/]")
        return 2

    title = f"Sync Complete ({summary.duration_ms}ms)"
    _print_job(controller.get_job(summary.job_id), title=title)
    return 0 if summary.status == JobStatus.COMPLETED.value else 1


if __name__ == "__main__":
    sys.exit(main())
