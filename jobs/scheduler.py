"""
Task scheduler.

APScheduler-based periodic scheduling for the affiliate payout jobs.
"""

import sys
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from payout_engine.config.logging import configure_logging  # noqa: E402

from jobs.tasks.affiliate_payouts import (  # noqa: E402
    process_affiliate_payouts,
    sync_affiliate_accounts,
)


def create_scheduler() -> AsyncIOScheduler:
    """
    Create and configure task scheduler.

    Returns:
        Configured AsyncIOScheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    # Account status sync - every hour
    scheduler.add_job(
        sync_affiliate_accounts.send,
        trigger=IntervalTrigger(hours=1),
        id="affiliate_account_sync",
        name="Affiliate Account Sync",
        replace_existing=True,
    )

    # Automatic payouts - every day at 03:00 UTC
    scheduler.add_job(
        process_affiliate_payouts.send,
        trigger=CronTrigger(hour=3, minute=0, timezone="UTC"),
        id="affiliate_payouts",
        name="Automatic Affiliate Payouts",
        replace_existing=True,
    )

    logger.info("Task scheduler configured with 2 jobs")
    return scheduler


async def start_scheduler() -> AsyncIOScheduler:
    """Start the task scheduler."""
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Task scheduler started")
    return scheduler


if __name__ == "__main__":
    import asyncio

    async def main() -> None:
        configure_logging(log_file="logs/scheduler.log")
        await start_scheduler()

        # Keep running
        try:
            await asyncio.Event().wait()
        except KeyboardInterrupt:
            logger.info("Scheduler stopped")

    asyncio.run(main())
