"""Texas Legislature bill sync.

Pulls bill-history XML from the Legislature's public FTP site (or its HTTP
mirror), normalizes it, and upserts it into a relational store:

- **Streaming sync**: one long run that emits phase/progress/bill events
- **Batch jobs**: persisted, pausable jobs that process ~20 bills per call
- **Settings**: database-backed overrides for session, bill types and limits

Run a stream with ``python scripts/sync_bills.py`` or operate jobs with
``python scripts/sync_job.py``.
"""

__version__ = "0.1.0"
