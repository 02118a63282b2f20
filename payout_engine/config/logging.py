"""
Logging configuration.

Loguru sinks for the worker and scheduler entry points.
"""

import sys

from loguru import logger

from payout_engine.config.settings import settings


def configure_logging(log_file: str = "logs/payouts.log") -> None:
    """Replace default sink with stderr + rotating file sinks."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    logger.add(
        log_file,
        rotation="1 day",
        retention="7 days",
        level=settings.log_level,
    )
