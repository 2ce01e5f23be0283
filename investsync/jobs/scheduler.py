"""APScheduler configuration and lifecycle management."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from investsync.config import FILE_SYNC_HOUR, SYNC_HOUR, SYNC_TIMEZONE
from investsync.jobs.file_sync import FileSyncService
from investsync.jobs.sync import handle_scheduled_sync
from investsync.services.market_data import MarketDataResolver
from investsync.services.ynab import YnabClient

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def create_scheduler(
    resolver: MarketDataResolver,
    ledger: YnabClient,
    file_sync: FileSyncService,
) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs.

    Services are passed as job kwargs so job functions remain testable
    without global state.
    """
    scheduler = AsyncIOScheduler(timezone=SYNC_TIMEZONE)

    # -- Portfolio sync: daily, the stored schedule decides whether to run --
    scheduler.add_job(
        handle_scheduled_sync,
        trigger="cron",
        hour=SYNC_HOUR,
        minute=0,
        id="portfolio_sync",
        name="Reconcile YNAB accounts with stored holdings",
        kwargs={"resolver": resolver, "ledger": ledger},
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # -- Holdings file: daily refresh + sync (min gap enforced by the job) --
    scheduler.add_job(
        file_sync.handle_scheduled_sync,
        trigger="cron",
        hour=FILE_SYNC_HOUR,
        minute=0,
        timezone="UTC",
        id="file_sync",
        name="Refresh holdings file and reconcile its accounts",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    return scheduler


def start_scheduler(
    resolver: MarketDataResolver,
    ledger: YnabClient,
    file_sync: FileSyncService,
) -> AsyncIOScheduler:
    """Create, start, and return the scheduler."""
    global _scheduler
    _scheduler = create_scheduler(resolver, ledger, file_sync)
    _scheduler.start()
    logger.info("Scheduler started with %d jobs", len(_scheduler.get_jobs()))
    return _scheduler


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        _scheduler = None
