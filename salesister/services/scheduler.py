"""Background scheduler for the periodic sweeps.

Uses APScheduler to run:
- the unprocessed-call sweep (every UNPROCESSED_CALL_SWEEP_MINUTES, default 1)
- the failed CRM sync retry sweep (every FAILED_SYNC_SWEEP_MINUTES, default 5)

Controlled by ENABLE_SCHEDULER (default True). Set ENABLE_SCHEDULER=false to
disable during tests or when an external cron drives the jobs.
"""

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from salesister.core.config import settings
from salesister.jobs.failed_sync_retry_job import run_failed_sync_retry
from salesister.jobs.unprocessed_call_job import run_unprocessed_call_sweep

logger = logging.getLogger(__name__)

_scheduler: Any = None


def build_scheduler() -> AsyncIOScheduler:
    """Create a scheduler with both sweeps registered (not started)."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_unprocessed_call_sweep,
        trigger=IntervalTrigger(minutes=settings.UNPROCESSED_CALL_SWEEP_MINUTES),
        id="unprocessed_call_sweep",
        name="Process calls left unprocessed",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_failed_sync_retry,
        trigger=IntervalTrigger(minutes=settings.FAILED_SYNC_SWEEP_MINUTES),
        id="failed_sync_retry",
        name="Retry failed CRM syncs",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


async def start_scheduler() -> None:
    """Start the background scheduler if enabled."""
    global _scheduler

    if not settings.ENABLE_SCHEDULER:
        logger.info("Background scheduler disabled (ENABLE_SCHEDULER != true)")
        return
    if _scheduler is not None:
        return

    try:
        _scheduler = build_scheduler()
        _scheduler.start()
        logger.info(
            "Background scheduler started: unprocessed calls every %d min, "
            "failed CRM syncs every %d min",
            settings.UNPROCESSED_CALL_SWEEP_MINUTES,
            settings.FAILED_SYNC_SWEEP_MINUTES,
        )
    except Exception:
        _scheduler = None
        logger.exception("Failed to start background scheduler")


async def stop_scheduler() -> None:
    """Stop the background scheduler if running."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")
