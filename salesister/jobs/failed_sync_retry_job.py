"""Background job that retries failed CRM syncs.

Runs every 5 minutes. Each failed call/actionable record is retried once
its backoff (5, 15, then 45 minutes) has elapsed, at most three times.
"""

import logging
from typing import Any

from salesister.services.crm_sync import get_sync_retry_service

logger = logging.getLogger(__name__)


async def run_failed_sync_retry() -> dict[str, Any]:
    """Retry eligible failed sync records.

    Returns:
        Dict with statistics about the run.
    """
    try:
        stats = await get_sync_retry_service().process_failed_syncs()
    except Exception:
        logger.exception("FAILED_SYNC_RETRY: run failed")
        return {"total_checked": 0, "retried": 0, "succeeded": 0, "skipped": 0, "errors": 1}

    if stats["total_checked"]:
        logger.info(
            "FAILED_SYNC_RETRY: checked %d, retried %d, succeeded %d, skipped %d",
            stats["total_checked"],
            stats["retried"],
            stats["succeeded"],
            stats["skipped"],
        )
    else:
        logger.debug("FAILED_SYNC_RETRY: No failed syncs to retry")
    return stats
