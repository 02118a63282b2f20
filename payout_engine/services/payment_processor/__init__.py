"""
Payment processor integrations.
"""

from payout_engine.services.payment_processor.base import (
    AccountSnapshot,
    PaymentProcessor,
    TransferResult,
)

__all__ = [
    "AccountSnapshot",
    "PaymentProcessor",
    "TransferResult",
]
