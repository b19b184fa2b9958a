"""Background jobs for Salesister."""

from salesister.jobs.failed_sync_retry_job import run_failed_sync_retry
from salesister.jobs.unprocessed_call_job import run_unprocessed_call_sweep

__all__ = [
    "run_failed_sync_retry",
    "run_unprocessed_call_sweep",
]
