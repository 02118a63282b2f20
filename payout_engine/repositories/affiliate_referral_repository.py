"""
AffiliateReferral repository.

Data access layer for AffiliateReferral model.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.models.affiliate_referral import AffiliateReferral
from payout_engine.repositories.base import BaseRepository


@dataclass(frozen=True)
class ReferralStats:
    """Aggregated referral totals for one affiliate."""

    total_referrals: int = 0
    total_earnings: int = 0
    unpaid_earnings: int = 0
    paid_earnings: int = 0


class AffiliateReferralRepository(BaseRepository[AffiliateReferral]):
    """AffiliateReferral repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize affiliate referral repository."""
        super().__init__(AffiliateReferral, session)

    async def get_by_purchase_id(
        self, purchase_id: str
    ) -> AffiliateReferral | None:
        """Get referral by external purchase id."""
        return await self.get_by(purchase_id=purchase_id)

    async def get_by_affiliate(
        self, affiliate_id: int, limit: int | None = None
    ) -> list[AffiliateReferral]:
        """
        Get referrals for affiliate, newest first.

        Args:
            affiliate_id: Affiliate ID
            limit: Optional limit

        Returns:
            List of referrals
        """
        stmt = (
            select(AffiliateReferral)
            .where(AffiliateReferral.affiliate_id == affiliate_id)
            .order_by(
                AffiliateReferral.created_at.desc(),
                AffiliateReferral.id.desc(),
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_unpaid_oldest_first(
        self, affiliate_id: int
    ) -> list[AffiliateReferral]:
        """Get unpaid referrals in payout order."""
        stmt = (
            select(AffiliateReferral)
            .where(AffiliateReferral.affiliate_id == affiliate_id)
            .where(AffiliateReferral.is_paid.is_(False))
            .order_by(AffiliateReferral.created_at, AffiliateReferral.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_stats(self, affiliate_id: int) -> ReferralStats:
        """
        Get referral totals for affiliate.

        Args:
            affiliate_id: Affiliate ID

        Returns:
            ReferralStats (zeros when there are no referrals)
        """
        commission = AffiliateReferral.commission
        stmt = select(
            func.count(AffiliateReferral.id),
            func.coalesce(func.sum(commission), 0),
            func.coalesce(
                func.sum(
                    case(
                        (AffiliateReferral.is_paid.is_(False), commission),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(
                        (AffiliateReferral.is_paid.is_(True), commission),
                        else_=0,
                    )
                ),
                0,
            ),
        ).where(AffiliateReferral.affiliate_id == affiliate_id)
        result = await self.session.execute(stmt)
        row = result.one()
        return ReferralStats(
            total_referrals=int(row[0] or 0),
            total_earnings=int(row[1] or 0),
            unpaid_earnings=int(row[2] or 0),
            paid_earnings=int(row[3] or 0),
        )

    async def get_paid_commission_total(self, affiliate_id: int) -> int:
        """Sum of commissions already marked paid."""
        stmt = (
            select(func.coalesce(func.sum(AffiliateReferral.commission), 0))
            .where(AffiliateReferral.affiliate_id == affiliate_id)
            .where(AffiliateReferral.is_paid.is_(True))
        )
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def get_since(
        self, affiliate_id: int, since: datetime
    ) -> list[AffiliateReferral]:
        """Get referrals created at or after a point in time."""
        stmt = (
            select(AffiliateReferral)
            .where(AffiliateReferral.affiliate_id == affiliate_id)
            .where(AffiliateReferral.created_at >= since)
            .order_by(AffiliateReferral.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_paid(self, referral_ids: list[int]) -> int:
        """
        Flip is_paid on the given referrals.

        Args:
            referral_ids: Referral IDs

        Returns:
            Number of rows updated
        """
        if not referral_ids:
            return 0

        stmt = (
            update(AffiliateReferral)
            .where(AffiliateReferral.id.in_(referral_ids))
            .where(AffiliateReferral.is_paid.is_(False))
            .values(is_paid=True)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
