"""
Affiliate payout tasks.

Batch settlement of unpaid commission and periodic account status sync.
"""

import asyncio

import dramatiq
from loguru import logger
from redis.asyncio import Redis as AsyncRedis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_engine.config.database import create_session_factory
from payout_engine.config.settings import settings
from payout_engine.exceptions import AffiliateError, ProcessorUnavailable
from payout_engine.repositories.affiliate_repository import (
    AffiliateRepository,
)
from payout_engine.services.payment_account_service import (
    PaymentAccountService,
)
from payout_engine.services.payment_processor.base import PaymentProcessor
from payout_engine.services.payment_processor.stripe_processor import (
    StripeConnectProcessor,
)
from payout_engine.services.payout_service import PayoutService
from payout_engine.services.program_settings_service import (
    ProgramSettingsService,
)
from payout_engine.utils.affiliate_lock import AffiliateLocks


def create_redis_client() -> AsyncRedis:
    """Redis client for per-affiliate locks."""
    return AsyncRedis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password or None,
        db=settings.redis_db,
        decode_responses=True,
    )


@dramatiq.actor(max_retries=0, time_limit=1_800_000)  # 30 min, no retry
def process_affiliate_payouts() -> None:
    """
    Settle unpaid commission for every eligible affiliate.

    Not retried by the broker: transfers are never repeated blindly, and
    ambiguous payouts stay pending until an operator resolves them.
    """
    logger.info("Starting automatic affiliate payouts...")

    try:
        summary = asyncio.run(_process_affiliate_payouts_async())
        logger.info(f"Automatic affiliate payouts complete: {summary}")

    except Exception as e:
        logger.exception(f"Automatic affiliate payouts failed: {e}")


async def _process_affiliate_payouts_async() -> dict[str, int]:
    """Async implementation of batch settlement."""
    # Dedicated engine per run: each actor call has its own event loop
    engine, session_factory = create_session_factory(null_pool=True)
    # Shared with other worker threads and processes
    redis_client = create_redis_client()

    try:
        async with session_factory() as session:
            config = await ProgramSettingsService(session).get_config()
            payout_service = PayoutService(
                session,
                processor=StripeConnectProcessor(),
                locks=AffiliateLocks(redis_client=redis_client),
                session_factory=session_factory,
            )
            summary = await payout_service.process_automatic_payouts(config)
            return summary.as_dict()

    finally:
        await redis_client.aclose()
        await engine.dispose()


@dramatiq.actor(max_retries=3, time_limit=600_000)  # 10 min timeout
def sync_affiliate_accounts() -> None:
    """
    Refresh the status of every connected payment account.

    Retried by the broker when the processor was unreachable; a sync only
    reads from the processor, so repeating it is harmless.
    """
    logger.info("Starting affiliate account sync...")

    try:
        synced = asyncio.run(_sync_affiliate_accounts_async())
        logger.info(f"Affiliate account sync complete: {synced} synced")

    except ProcessorUnavailable as e:
        logger.warning(f"Affiliate account sync incomplete: {e.message}")
        raise

    except Exception as e:
        logger.exception(f"Affiliate account sync failed: {e}")
        raise


async def _sync_affiliate_accounts_async(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    processor: PaymentProcessor | None = None,
) -> int:
    """
    Async implementation of account sync.

    Every account is attempted; if the processor was unreachable for any
    of them, ProcessorUnavailable is raised at the end so the broker
    retries the run.

    Returns:
        Number of accounts synced
    """
    engine = None
    if session_factory is None:
        # Dedicated engine per run: each actor call has its own event loop
        engine, session_factory = create_session_factory(null_pool=True)
    processor = processor or StripeConnectProcessor()
    synced = 0
    unavailable: list[int] = []

    try:
        async with session_factory() as session:
            affiliates = await AffiliateRepository(session).get_with_account()
            affiliate_ids = [affiliate.id for affiliate in affiliates]

        for affiliate_id in affiliate_ids:
            async with session_factory() as session:
                service = PaymentAccountService(session, processor)
                try:
                    await service.refresh_status(affiliate_id)
                    synced += 1
                except ProcessorUnavailable as e:
                    unavailable.append(affiliate_id)
                    logger.warning(
                        f"Processor unavailable syncing affiliate "
                        f"{affiliate_id}: {e.message}"
                    )
                except AffiliateError as e:
                    logger.warning(
                        f"Account sync failed for affiliate "
                        f"{affiliate_id}: {e.message}"
                    )

        if unavailable:
            raise ProcessorUnavailable(
                f"{len(unavailable)} of {len(affiliate_ids)} accounts "
                f"could not be synced"
            )
        return synced

    finally:
        if engine is not None:
            await engine.dispose()
