"""
Dramatiq worker entry point.

Run with: dramatiq jobs.worker
"""

import sys
from pathlib import Path

from loguru import logger

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from payout_engine.config.logging import configure_logging

configure_logging(log_file="logs/worker.log")

# Import broker to initialize
from jobs.broker import broker  # noqa: F401, E402

# Import all tasks to register them with broker
from jobs.tasks import affiliate_payouts  # noqa: F401, E402

logger.info("Dramatiq worker initialized with affiliate payout tasks")
