"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from payout_engine.models.account_state import AccountState
from payout_engine.models.affiliate import Affiliate
from payout_engine.models.affiliate_payout import AffiliatePayout
from payout_engine.models.affiliate_referral import AffiliateReferral
from payout_engine.models.base import Base
from payout_engine.models.enums import (
    AccountStatus,
    PaymentMethod,
    PayoutStatus,
)
from payout_engine.models.program_settings import ProgramSettings

__all__ = [
    # Base
    "Base",
    # Enums
    "AccountStatus",
    "PaymentMethod",
    "PayoutStatus",
    # Values
    "AccountState",
    # Models
    "Affiliate",
    "AffiliateReferral",
    "AffiliatePayout",
    "ProgramSettings",
]
