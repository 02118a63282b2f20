"""
Background tasks.

Dramatiq task definitions.
"""

from jobs.broker import broker  # noqa: F401
from jobs.tasks.affiliate_payouts import (
    process_affiliate_payouts,
    sync_affiliate_accounts,
)

__all__ = [
    "process_affiliate_payouts",
    "sync_affiliate_accounts",
]
