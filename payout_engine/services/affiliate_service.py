"""
Affiliate service.

Enrollment, profile updates, admin toggles and analytics.
"""

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlparse

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.config.settings import settings
from payout_engine.exceptions import (
    AlreadyRegistered,
    CodeGenerationFailed,
    InvalidPaymentLink,
    InvalidRate,
    UnknownAffiliate,
)
from payout_engine.models.affiliate import Affiliate
from payout_engine.models.affiliate_payout import AffiliatePayout
from payout_engine.models.affiliate_referral import AffiliateReferral
from payout_engine.models.base import utcnow
from payout_engine.models.enums import PaymentMethod
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
from payout_engine.services.commission_calculator import validate_rates
from payout_engine.services.program_settings_service import ProgramConfig
from payout_engine.services.referral_service import build_affiliate_link

CODE_ALPHABET = string.ascii_uppercase + string.digits
MIN_PAYMENT_LINK_LENGTH = 10
ANALYTICS_MONTHS = 6


@dataclass(frozen=True)
class MonthlyEarnings:
    """Commission earned in one calendar month."""

    month: str  # YYYY-MM
    earnings: int
    referrals: int


@dataclass
class AffiliateAnalytics:
    """Affiliate dashboard data."""

    affiliate: Affiliate
    stats: ReferralStats
    referrals: list[AffiliateReferral] = field(default_factory=list)
    payouts: list[AffiliatePayout] = field(default_factory=list)
    monthly_earnings: list[MonthlyEarnings] = field(default_factory=list)


def validate_payment_link(payment_link: str | None) -> str:
    """
    Validate a manual payout link.

    Raises:
        InvalidPaymentLink: Missing, too short, not a URL or not https
    """
    if not payment_link or len(payment_link) < MIN_PAYMENT_LINK_LENGTH:
        raise InvalidPaymentLink("Please provide a valid payment link")

    parsed = urlparse(payment_link)
    if not parsed.scheme or not parsed.netloc:
        raise InvalidPaymentLink("Payment link must be a valid URL")
    if parsed.scheme != "https":
        raise InvalidPaymentLink(
            "Payment link must use https:// for security"
        )
    return payment_link


def generate_affiliate_code(length: int) -> str:
    """Random upper-case alphanumeric code."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def _months_back(moment: datetime, months: int) -> datetime:
    """Start of the month `months - 1` months before moment's month."""
    index = moment.year * 12 + (moment.month - 1) - (months - 1)
    return moment.replace(
        year=index // 12,
        month=index % 12 + 1,
        day=1,
        hour=0,
        minute=0,
        second=0,
        microsecond=0,
    )


class AffiliateService:
    """Affiliate registry and dashboard queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize affiliate service."""
        self.session = session
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = AffiliateReferralRepository(session)
        self.payout_repo = AffiliatePayoutRepository(session)

    async def _get_affiliate(self, affiliate_id: int) -> Affiliate:
        affiliate = await self.affiliate_repo.get_by_id(affiliate_id)
        if not affiliate:
            raise UnknownAffiliate(f"Affiliate {affiliate_id} not found")
        return affiliate

    async def _generate_unique_code(self, config: ProgramConfig) -> str:
        for attempt in range(config.affiliate_code_retry_attempts):
            code = generate_affiliate_code(config.affiliate_code_length)
            if not await self.affiliate_repo.code_exists(code):
                return code
            logger.debug(f"Affiliate code collision on attempt {attempt + 1}")

        raise CodeGenerationFailed(
            "Unable to generate unique affiliate code after "
            f"{config.affiliate_code_retry_attempts} attempts"
        )

    async def register_affiliate(
        self,
        user_id: int,
        payment_method: PaymentMethod,
        payment_link: str | None = None,
        config: ProgramConfig | None = None,
    ) -> Affiliate:
        """
        Enroll a user as an affiliate.

        Args:
            user_id: Platform user ID
            payment_method: Manual link or managed account
            payment_link: Required https link for manual payouts
            config: Program settings (commission rate, code generation)

        Returns:
            Created affiliate

        Raises:
            AlreadyRegistered: User already has an affiliate
            InvalidPaymentLink: Bad link for the manual method
            CodeGenerationFailed: No unique code found
        """
        config = config or ProgramConfig()

        if await self.affiliate_repo.get_by_user_id(user_id):
            raise AlreadyRegistered(
                f"User {user_id} is already registered as an affiliate"
            )

        if payment_method == PaymentMethod.MANUAL_LINK:
            validate_payment_link(payment_link)

        code = await self._generate_unique_code(config)

        affiliate = await self.affiliate_repo.create(
            user_id=user_id,
            code=code,
            commission_rate=config.default_commission_rate,
            discount_rate=0,
            payment_method=payment_method,
            payment_link=payment_link or None,
            is_active=True,
            total_earnings=0,
            paid_amount=0,
            unpaid_balance=0,
        )
        await self.session.commit()

        logger.success(
            f"Registered affiliate {affiliate.id} with code {code}",
            extra={
                "affiliate_id": affiliate.id,
                "user_id": user_id,
                "payment_method": payment_method.value,
            },
        )
        return affiliate

    async def update_payment_method(
        self,
        affiliate_id: int,
        payment_method: PaymentMethod,
        payment_link: str | None = None,
    ) -> Affiliate:
        """
        Switch between manual link and managed account payouts.

        Raises:
            UnknownAffiliate: Affiliate not found
            InvalidPaymentLink: Bad link for the manual method
        """
        affiliate = await self._get_affiliate(affiliate_id)

        if payment_method == PaymentMethod.MANUAL_LINK:
            validate_payment_link(payment_link)

        affiliate.payment_method = payment_method
        affiliate.payment_link = payment_link or None
        await self.session.commit()

        logger.info(
            f"Affiliate {affiliate_id} payment method set to "
            f"{payment_method.value}",
            extra={"affiliate_id": affiliate_id},
        )
        return affiliate

    async def update_discount_rate(
        self, affiliate_id: int, discount_rate: int
    ) -> Affiliate:
        """
        Set the share of the commission passed on to buyers.

        Raises:
            UnknownAffiliate: Affiliate not found
            InvalidRate: Outside [0, commission_rate]
        """
        affiliate = await self._get_affiliate(affiliate_id)
        validate_rates(affiliate.commission_rate, discount_rate)

        affiliate.discount_rate = discount_rate
        await self.session.commit()

        logger.info(
            f"Affiliate {affiliate_id} discount rate set to {discount_rate}%",
            extra={"affiliate_id": affiliate_id},
        )
        return affiliate

    async def set_active(self, affiliate_id: int, is_active: bool) -> Affiliate:
        """Admin toggle. Inactive affiliates earn nothing and are not paid."""
        affiliate = await self._get_affiliate(affiliate_id)
        affiliate.is_active = is_active
        await self.session.commit()

        logger.info(
            f"Affiliate {affiliate_id} "
            f"{'activated' if is_active else 'deactivated'}",
            extra={"affiliate_id": affiliate_id, "is_active": is_active},
        )
        return affiliate

    async def update_commission_rate(
        self, affiliate_id: int, commission_rate: int
    ) -> Affiliate:
        """
        Admin override of an affiliate's commission rate.

        Raises:
            UnknownAffiliate: Affiliate not found
            InvalidRate: Outside [0, 100] or below the discount rate
        """
        affiliate = await self._get_affiliate(affiliate_id)
        validate_rates(commission_rate, affiliate.discount_rate)

        affiliate.commission_rate = commission_rate
        await self.session.commit()

        logger.info(
            f"Affiliate {affiliate_id} commission rate set to "
            f"{commission_rate}%",
            extra={"affiliate_id": affiliate_id},
        )
        return affiliate

    async def get_by_user_id(self, user_id: int) -> Affiliate | None:
        """Get the affiliate owned by a user."""
        return await self.affiliate_repo.get_by_user_id(user_id)

    async def validate_code(self, code: str) -> Affiliate | None:
        """Resolve a code to an active affiliate, or None."""
        if not code:
            return None
        return await self.affiliate_repo.get_by_code(code)

    async def get_monthly_earnings(
        self, affiliate_id: int, months: int = ANALYTICS_MONTHS
    ) -> list[MonthlyEarnings]:
        """
        Commission per calendar month, oldest first.

        Months without referrals are omitted.
        """
        since = _months_back(utcnow(), months)
        referrals = await self.referral_repo.get_since(affiliate_id, since)

        buckets: dict[str, list[int]] = {}
        for referral in referrals:
            month = referral.created_at.strftime("%Y-%m")
            bucket = buckets.setdefault(month, [0, 0])
            bucket[0] += referral.commission
            bucket[1] += 1

        return [
            MonthlyEarnings(month=month, earnings=total, referrals=count)
            for month, (total, count) in sorted(buckets.items())
        ]

    async def get_analytics(self, affiliate_id: int) -> AffiliateAnalytics:
        """
        Dashboard data for one affiliate.

        Raises:
            UnknownAffiliate: Affiliate not found
        """
        affiliate = await self._get_affiliate(affiliate_id)

        return AffiliateAnalytics(
            affiliate=affiliate,
            stats=await self.referral_repo.get_stats(affiliate_id),
            referrals=await self.referral_repo.get_by_affiliate(affiliate_id),
            payouts=await self.payout_repo.get_by_affiliate(affiliate_id),
            monthly_earnings=await self.get_monthly_earnings(affiliate_id),
        )

    async def list_affiliates_with_stats(self) -> list[AffiliateWithStats]:
        """Admin listing, highest unpaid balance first."""
        return await self.affiliate_repo.list_with_stats()

    @staticmethod
    def affiliate_link(affiliate: Affiliate, host: str | None = None) -> str:
        """Public link for an affiliate."""
        return build_affiliate_link(host or settings.host_name, affiliate.code)
