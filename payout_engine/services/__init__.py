"""
Services.

Business logic layer.
"""

from payout_engine.services.affiliate_service import AffiliateService
from payout_engine.services.commission_calculator import (
    CommissionSplit,
    calculate_commission,
    original_commission,
)
from payout_engine.services.ledger_service import LedgerService, LedgerSnapshot
from payout_engine.services.payment_account_service import (
    PaymentAccountService,
)
from payout_engine.services.payout_service import (
    BatchPayoutSummary,
    PayoutResult,
    PayoutService,
)
from payout_engine.services.processor_event_service import (
    ProcessorEventService,
)
from payout_engine.services.program_settings_service import (
    ProgramConfig,
    ProgramSettingsService,
)
from payout_engine.services.referral_service import (
    AttributionResult,
    ReferralService,
    build_affiliate_link,
)

__all__ = [
    "AffiliateService",
    "AttributionResult",
    "BatchPayoutSummary",
    "CommissionSplit",
    "LedgerService",
    "LedgerSnapshot",
    "PaymentAccountService",
    "PayoutResult",
    "PayoutService",
    "ProcessorEventService",
    "ProgramConfig",
    "ProgramSettingsService",
    "ReferralService",
    "build_affiliate_link",
    "calculate_commission",
    "original_commission",
]
