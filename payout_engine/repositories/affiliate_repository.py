"""
Affiliate repository.

Data access layer for Affiliate model.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, desc, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.models.affiliate import Affiliate
from payout_engine.models.affiliate_payout import AffiliatePayout
from payout_engine.models.affiliate_referral import AffiliateReferral
from payout_engine.models.enums import (
    AccountStatus,
    PaymentMethod,
    PayoutStatus,
)
from payout_engine.repositories.base import BaseRepository


@dataclass(frozen=True)
class AffiliateWithStats:
    """Admin listing row."""

    affiliate: Affiliate
    total_referrals: int
    last_referral_at: datetime | None


class AffiliateRepository(BaseRepository[Affiliate]):
    """Affiliate repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize affiliate repository."""
        super().__init__(Affiliate, session)

    async def get_by_code(
        self, code: str, active_only: bool = True
    ) -> Affiliate | None:
        """
        Get affiliate by code.

        Args:
            code: Affiliate code
            active_only: Ignore deactivated affiliates

        Returns:
            Affiliate or None
        """
        stmt = select(Affiliate).where(Affiliate.code == code)
        if active_only:
            stmt = stmt.where(Affiliate.is_active.is_(True))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: int) -> Affiliate | None:
        """Get affiliate owned by a platform user."""
        return await self.get_by(user_id=user_id)

    async def get_by_account_id(self, account_id: str) -> Affiliate | None:
        """Get affiliate by managed payment account id."""
        return await self.get_by(account_id=account_id)

    async def code_exists(self, code: str) -> bool:
        """Check whether a code is taken, active or not."""
        return await self.exists(code=code)

    async def get_eligible_for_auto_payout(
        self, minimum_payout: int
    ) -> list[Affiliate]:
        """
        Get affiliates eligible for automatic payout.

        Active, paid through a payable managed account, holding at least
        the threshold, and with no unresolved pending payout.

        Args:
            minimum_payout: Smallest balance to settle (minor units)

        Returns:
            List of affiliates ordered by id
        """
        pending_payout = exists().where(
            and_(
                AffiliatePayout.affiliate_id == Affiliate.id,
                AffiliatePayout.status == PayoutStatus.PENDING,
            )
        )
        stmt = (
            select(Affiliate)
            .where(Affiliate.is_active.is_(True))
            .where(
                Affiliate.payment_method == PaymentMethod.MANAGED_ACCOUNT
            )
            .where(Affiliate.account_status == AccountStatus.ACTIVE)
            .where(Affiliate.payouts_enabled.is_(True))
            .where(Affiliate.unpaid_balance >= max(minimum_payout, 1))
            .where(~pending_payout)
            .order_by(Affiliate.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_with_stats(self) -> list[AffiliateWithStats]:
        """
        List all affiliates with referral counts.

        Ordered by unpaid balance, then newest first.
        """
        referral_count = (
            select(func.count(AffiliateReferral.id))
            .where(AffiliateReferral.affiliate_id == Affiliate.id)
            .correlate(Affiliate)
            .scalar_subquery()
        )
        last_referral = (
            select(func.max(AffiliateReferral.created_at))
            .where(AffiliateReferral.affiliate_id == Affiliate.id)
            .correlate(Affiliate)
            .scalar_subquery()
        )
        stmt = select(Affiliate, referral_count, last_referral).order_by(
            desc(Affiliate.unpaid_balance), desc(Affiliate.created_at)
        )
        result = await self.session.execute(stmt)
        return [
            AffiliateWithStats(
                affiliate=row[0],
                total_referrals=row[1] or 0,
                last_referral_at=row[2],
            )
            for row in result.all()
        ]

    async def get_with_account(self) -> list[Affiliate]:
        """Active affiliates with a connected managed account."""
        stmt = (
            select(Affiliate)
            .where(Affiliate.is_active.is_(True))
            .where(Affiliate.account_id.is_not(None))
            .order_by(Affiliate.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
