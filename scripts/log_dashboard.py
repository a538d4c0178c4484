#!/usr/bin/env python3
"""Terminal view of recent bill sync runs from the run log.

One row per run with its counts, plus the slowest bill types and an average
per type across the window.

Usage:
    python scripts/log_dashboard.py              # last 20 runs
    python scripts/log_dashboard.py --tail 50
    python scripts/log_dashboard.py --failed     # only runs that errored
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from txleg_sync.run_log import RunRecord, get_log_path, load_recent_runs  # noqa: E402

console = Console()


def _t(s: str) -> str:
    """Shorten timestamp to local time."""
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        return dt.astimezone().strftime("%m/%d %H:%M")
    except ValueError:
        return s[:16]


def _fmt_dur(s: float | None) -> str:
    if s is None:
        return "—"
    if s >= 60:
        return f"{s / 60:.1f}m"
    return f"{s:.1f}s"


def _slowest(run: RunRecord) -> str:
    return ", ".join(
        f"{p.bill_type} {_fmt_dur(p.duration_s)} ({p.bills} bills)" for p in run.slowest()
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="View recent bill sync runs.")
    parser.add_argument(
        "--tail",
        "-n",
        type=int,
        default=20,
        help="Number of recent runs to show (default: 20).",
    )
    parser.add_argument(
        "--failed",
        action="store_true",
        help="Only show runs whose status is not ok.",
    )
    args = parser.parse_args()

    path = get_log_path()
    runs = load_recent_runs(n=args.tail, task="bill_sync")
    if args.failed:
        runs = [r for r in runs if r.status != "ok"]
    if not runs:
        console.print(f"[dim]No sync runs in {path}. Run scripts/sync_bills.py first.[/]")
        return 0

    table = Table(title=f"Bill Sync Runs (last {len(runs)})", title_style="bold green")
    table.add_column("Started", style="dim")
    table.add_column("Run")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Fetched", justify="right")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Updated", justify="right", style="cyan")
    table.add_column("Errors", justify="right")
    table.add_column("Slowest", style="dim")

    per_type: dict[str, list[float]] = {}
    for r in runs:
        for p in r.phases:
            per_type.setdefault(p.bill_type, []).append(p.duration_s)
        status = r.job_status
        color = "green" if r.status == "ok" and status == "COMPLETED" else "yellow"
        if r.status != "ok":
            color = "red"
        errors = r.meta.get("errors", 0)
        table.add_row(
            _t(r.started_at),
            r.run_id,
            r.job_id or "—",
            f"[{color}]{status}[/]",
            _fmt_dur(r.duration_s),
            str(r.meta.get("fetched", "—")),
            str(r.meta.get("created", "—")),
            str(r.meta.get("updated", "—")),
            f"[red]{errors}[/]" if errors else "0",
            _slowest(r) or (r.error or ""),
        )
    console.print(table)

    if per_type:
        avg = {name: sum(d) / len(d) for name, d in per_type.items() if d}
        parts = [f"{name}: {_fmt_dur(v)}" for name, v in sorted(avg.items(), key=lambda x: -x[1])]
        console.print(f"[bold]Avg per bill type[/]  {', '.join(parts)}")
    console.print(f"[dim]Log file: {path}[/]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
