"""Job-level failures.

Per-bill problems (not found, transport, parse, persistence) are absorbed by
the sync loop and counted; only the exceptions below propagate to callers.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync failures that abort a whole operation."""


class SyncDisabledError(SyncError):
    """Raised when ``SYNC_ENABLED`` is false."""


class JobAlreadyActiveError(SyncError):
    """Raised when creating a job while another is PENDING, RUNNING or PAUSED."""

    def __init__(self, job_id: str):
        super().__init__(f"A sync job is already active ({job_id})")
        self.job_id = job_id


class JobNotFoundError(SyncError):
    def __init__(self, job_id: str):
        super().__init__(f"Sync job not found: {job_id}")
        self.job_id = job_id


class InvalidJobTransitionError(SyncError):
    """Raised for pause/resume/stop requests the job's current status forbids."""

    def __init__(self, job_id: str, current: str, action: str):
        super().__init__(f"Cannot {action} job {job_id} while it is {current.lower()}")
        self.job_id = job_id
        self.current = current
        self.action = action


class SettingValueError(ValueError):
    """A settings value does not match its declared type."""


class SourceListingError(SyncError):
    """The source's directory for a bill type could not be listed.

    Distinct from an empty listing, which means the type has no bills yet.
    """

    def __init__(self, bill_type: str, reason: str):
        super().__init__(f"Could not list {bill_type} bills: {reason}")
        self.bill_type = bill_type
        self.reason = reason
