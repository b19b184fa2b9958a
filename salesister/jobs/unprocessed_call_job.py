"""Background job that processes calls left unprocessed.

Runs every minute. Picks up calls whose inline processing at ingestion
failed or never ran, up to UNPROCESSED_CALL_BATCH_SIZE per run.
"""

import logging
from typing import Any

from salesister.core.config import settings
from salesister.services.call_processing import get_call_processor

logger = logging.getLogger(__name__)


async def run_unprocessed_call_sweep(limit: int | None = None) -> dict[str, Any]:
    """Process a batch of unprocessed calls.

    Returns:
        Dict with statistics about the run.
    """
    batch = limit or settings.UNPROCESSED_CALL_BATCH_SIZE
    try:
        stats = await get_call_processor().process_unprocessed_calls(batch)
    except Exception:
        logger.exception("UNPROCESSED_CALL_SWEEP: run failed")
        return {"total_checked": 0, "processed": 0, "failed": 0, "errors": 1}

    if stats["total_checked"]:
        logger.info(
            "UNPROCESSED_CALL_SWEEP: checked %d, processed %d, failed %d",
            stats["total_checked"],
            stats["processed"],
            stats["failed"],
        )
    else:
        logger.debug("UNPROCESSED_CALL_SWEEP: No unprocessed calls")
    return {**stats, "errors": 0}
