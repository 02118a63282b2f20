"""
Dramatiq broker configuration.

Payout tasks use their own Redis namespace so they never share queues with
other workers on the same Redis database.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from loguru import logger

from payout_engine.config.settings import settings

QUEUE_NAMESPACE = "affiliate-payouts"


def create_broker() -> RedisBroker:
    """Redis broker for the payout task queue."""
    return RedisBroker(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password or None,
        db=settings.redis_db,
        namespace=QUEUE_NAMESPACE,
    )


broker = create_broker()
dramatiq.set_broker(broker)

logger.info(
    f"Dramatiq broker initialized: "
    f"redis://{settings.redis_host}:{settings.redis_port}/{settings.redis_db} "
    f"(namespace {QUEUE_NAMESPACE})"
)
