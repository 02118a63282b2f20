"""
Repositories.

Data access layer for all models.
"""

from payout_engine.repositories.affiliate_payout_repository import (
    AffiliatePayoutRepository,
)
from payout_engine.repositories.affiliate_referral_repository import (
    AffiliateReferralRepository,
    ReferralStats,
)
from payout_engine.repositories.affiliate_repository import (
    AffiliateRepository,
    AffiliateWithStats,
)
from payout_engine.repositories.base import BaseRepository
from payout_engine.repositories.program_settings_repository import (
    ProgramSettingsRepository,
)

__all__ = [
    "BaseRepository",
    "AffiliateRepository",
    "AffiliateWithStats",
    "AffiliateReferralRepository",
    "ReferralStats",
    "AffiliatePayoutRepository",
    "ProgramSettingsRepository",
]
