"""
Referral attribution service.

Maps a purchase to an affiliate, freezes the commission split and credits
the ledger exactly once per purchase id.
"""

from dataclasses import dataclass
from urllib.parse import urlencode

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.config.settings import settings
from payout_engine.exceptions import (
    InvalidAmount,
    SelfReferral,
    UnknownAffiliate,
)
from payout_engine.models.affiliate_referral import AffiliateReferral
from payout_engine.repositories.affiliate_referral_repository import (
    AffiliateReferralRepository,
)
from payout_engine.repositories.affiliate_repository import (
    AffiliateRepository,
)
from payout_engine.services.commission_calculator import calculate_commission
from payout_engine.services.ledger_service import LedgerService
from payout_engine.utils.affiliate_lock import AffiliateLocks, affiliate_locks

# Attribution cookie set when a visitor arrives through an affiliate link
AFFILIATE_COOKIE_NAME = "affiliate_ref"
AFFILIATE_QUERY_PARAM = "ref"


def build_affiliate_link(host: str, code: str) -> str:
    """Public purchase link carrying the affiliate code."""
    query = urlencode({AFFILIATE_QUERY_PARAM: code})
    return f"{host.rstrip('/')}/purchase?{query}"


def affiliate_cookie_max_age(days: int | None = None) -> int:
    """Attribution cookie lifetime in seconds."""
    return (days or settings.affiliate_cookie_days) * 24 * 60 * 60


@dataclass(frozen=True)
class AttributionResult:
    """Outcome of attributing a purchase."""

    referral: AffiliateReferral
    created: bool


class ReferralService:
    """Referral attribution with idempotent ledger credit."""

    def __init__(
        self,
        session: AsyncSession,
        locks: AffiliateLocks | None = None,
        max_purchase_amount: int | None = None,
    ) -> None:
        """Initialize referral service."""
        self.session = session
        self.locks = locks or affiliate_locks
        self.max_purchase_amount = (
            max_purchase_amount or settings.max_purchase_amount
        )
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = AffiliateReferralRepository(session)
        self.ledger = LedgerService(session)

    def _validate_amount(self, purchase_amount: int) -> None:
        if isinstance(purchase_amount, bool) or not isinstance(
            purchase_amount, int
        ):
            raise InvalidAmount("Purchase amount must be an integer")
        if purchase_amount < 0:
            raise InvalidAmount(
                f"Purchase amount must not be negative, got {purchase_amount}"
            )
        if purchase_amount > self.max_purchase_amount:
            raise InvalidAmount(
                f"Purchase amount {purchase_amount} exceeds maximum "
                f"{self.max_purchase_amount}"
            )

    async def attribute(
        self,
        purchase_id: str,
        affiliate_code: str,
        purchase_amount: int,
        purchaser_id: int | None = None,
        frozen_commission_rate: int | None = None,
        frozen_discount_rate: int | None = None,
    ) -> AttributionResult:
        """
        Attribute a purchase to an affiliate.

        A second call with the same purchase id returns the stored referral
        and credits nothing.

        Args:
            purchase_id: External purchase id
            affiliate_code: Code resolved from the attribution cookie
            purchase_amount: Sale amount in minor units
            purchaser_id: Buyer's user id, used to reject self-referrals
            frozen_commission_rate: Commission percent captured at checkout
            frozen_discount_rate: Discount percent captured at checkout

        Returns:
            AttributionResult with the referral and whether it was created

        Raises:
            InvalidAmount: Negative or oversized amount
            UnknownAffiliate: Code not found or affiliate inactive
            SelfReferral: Buyer owns the affiliate code
            InvalidRate: Invalid rate pair
        """
        self._validate_amount(purchase_amount)

        existing = await self.referral_repo.get_by_purchase_id(purchase_id)
        if existing:
            logger.info(
                f"Purchase {purchase_id} already attributed, skipping",
                extra={
                    "purchase_id": purchase_id,
                    "referral_id": existing.id,
                },
            )
            return AttributionResult(referral=existing, created=False)

        affiliate = await self.affiliate_repo.get_by_code(affiliate_code)
        if not affiliate:
            raise UnknownAffiliate(
                f"No active affiliate for code {affiliate_code!r}"
            )

        if purchaser_id is not None and purchaser_id == affiliate.user_id:
            raise SelfReferral(
                f"User {purchaser_id} cannot use their own affiliate code"
            )

        commission_rate = (
            frozen_commission_rate
            if frozen_commission_rate is not None
            else affiliate.commission_rate
        )
        discount_rate = (
            frozen_discount_rate
            if frozen_discount_rate is not None
            else affiliate.discount_rate
        )
        split = calculate_commission(
            purchase_amount, commission_rate, discount_rate
        )
        affiliate_id = affiliate.id

        async with self.locks.lock(affiliate_id):
            try:
                referral = await self.referral_repo.create(
                    affiliate_id=affiliate_id,
                    purchase_id=purchase_id,
                    purchaser_id=purchaser_id,
                    purchase_amount=purchase_amount,
                    commission=split.affiliate_commission,
                    buyer_discount=split.buyer_discount,
                    commission_rate=commission_rate,
                    discount_rate=discount_rate,
                    is_paid=False,
                )
                if split.affiliate_commission > 0:
                    await self.ledger.credit(
                        affiliate_id, split.affiliate_commission
                    )
                await self.session.commit()
            except IntegrityError:
                # Concurrent attribution of the same purchase won the insert
                await self.session.rollback()
                existing = await self.referral_repo.get_by_purchase_id(
                    purchase_id
                )
                if existing is None:
                    raise
                logger.info(
                    f"Purchase {purchase_id} attributed concurrently",
                    extra={"purchase_id": purchase_id},
                )
                return AttributionResult(referral=existing, created=False)
            except Exception:
                await self.session.rollback()
                raise

        logger.success(
            f"Attributed purchase {purchase_id} to affiliate {affiliate_id}: "
            f"commission {split.affiliate_commission}, "
            f"discount {split.buyer_discount}",
            extra={
                "affiliate_id": affiliate_id,
                "purchase_id": purchase_id,
                "purchase_amount": purchase_amount,
                "commission": split.affiliate_commission,
            },
        )
        return AttributionResult(referral=referral, created=True)
