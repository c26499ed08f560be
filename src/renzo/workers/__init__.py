"""Background workers for async processing tasks."""

from renzo.workers.job_sync_worker import JobSyncScheduler

__all__ = [
    "JobSyncScheduler",
]
