"""Exceptions raised by the sync job controller.

Fetch, parse and per-bill persistence failures are never raised -- they are
logged and counted.  Only the conditions below reach callers.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync pipeline errors."""


class SyncConfigError(SyncError):
    """A trigger was rejected before any state was touched."""


class SyncDisabledError(SyncConfigError):
    def __init__(self) -> None:
        super().__init__("Sync is disabled. Enable it in settings first.")


class JobAlreadyActiveError(SyncConfigError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"A sync job is already active ({job_id})")
        self.job_id = job_id


class JobNotFoundError(SyncError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Sync job not found: {job_id}")
        self.job_id = job_id


class InvalidTransitionError(SyncError):
    """Requested a state change the job's current status doesn't allow."""

    def __init__(self, job_id: str, status: str, action: str) -> None:
        super().__init__(f"Cannot {action} job {job_id}: job is {status.lower()}")
        self.job_id = job_id
        self.status = status
        self.action = action
