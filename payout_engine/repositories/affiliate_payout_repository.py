"""
AffiliatePayout repository.

Data access layer for AffiliatePayout model.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.models.affiliate_payout import AffiliatePayout
from payout_engine.models.enums import PayoutStatus
from payout_engine.repositories.base import BaseRepository


class AffiliatePayoutRepository(BaseRepository[AffiliatePayout]):
    """AffiliatePayout repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize affiliate payout repository."""
        super().__init__(AffiliatePayout, session)

    async def get_by_affiliate(
        self,
        affiliate_id: int,
        status: PayoutStatus | None = None,
    ) -> list[AffiliatePayout]:
        """
        Get payouts for affiliate, newest first.

        Args:
            affiliate_id: Affiliate ID
            status: Optional status filter

        Returns:
            List of payouts
        """
        stmt = select(AffiliatePayout).where(
            AffiliatePayout.affiliate_id == affiliate_id
        )
        if status is not None:
            stmt = stmt.where(AffiliatePayout.status == status)
        stmt = stmt.order_by(
            AffiliatePayout.created_at.desc(), AffiliatePayout.id.desc()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_pending(
        self, affiliate_id: int | None = None
    ) -> list[AffiliatePayout]:
        """Get unresolved pending payouts."""
        stmt = select(AffiliatePayout).where(
            AffiliatePayout.status == PayoutStatus.PENDING
        )
        if affiliate_id is not None:
            stmt = stmt.where(AffiliatePayout.affiliate_id == affiliate_id)
        result = await self.session.execute(
            stmt.order_by(AffiliatePayout.id)
        )
        return list(result.scalars().all())

    async def has_pending(self, affiliate_id: int) -> bool:
        """Check for an unresolved pending payout."""
        return await self.exists(
            affiliate_id=affiliate_id, status=PayoutStatus.PENDING
        )

    async def claim_pending(
        self, payout_id: int, status: PayoutStatus
    ) -> bool:
        """
        Move a pending payout to its final status.

        A single guarded UPDATE, so only one resolver can win even across
        processes.

        Args:
            payout_id: Payout ID
            status: completed or failed

        Returns:
            True if the payout was still pending
        """
        await self.session.flush()
        result = await self.session.execute(
            update(AffiliatePayout)
            .where(
                AffiliatePayout.id == payout_id,
                AffiliatePayout.status == PayoutStatus.PENDING,
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
