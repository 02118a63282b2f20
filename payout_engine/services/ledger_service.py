"""
Ledger service.

Authoritative running totals per affiliate. Every change is a single
guarded UPDATE so total_earnings == paid_amount + unpaid_balance holds
after each statement, and total_earnings never decreases.

Callers hold the affiliate's lock (see utils.affiliate_lock) and own the
transaction; the ledger only flushes.
"""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.exceptions import (
    InsufficientBalance,
    InvalidAmount,
    UnknownAffiliate,
)
from payout_engine.models.affiliate import Affiliate


@dataclass(frozen=True)
class LedgerSnapshot:
    """Ledger totals for one affiliate (minor units)."""

    total_earnings: int
    paid_amount: int
    unpaid_balance: int

    @property
    def is_consistent(self) -> bool:
        return (
            self.total_earnings == self.paid_amount + self.unpaid_balance
            and min(
                self.total_earnings, self.paid_amount, self.unpaid_balance
            )
            >= 0
        )


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("Ledger amounts must be integers")
    if amount <= 0:
        raise InvalidAmount(f"Ledger amount must be positive, got {amount}")


class LedgerService:
    """Atomic credit/settle on affiliate totals."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger service."""
        self.session = session

    async def credit(self, affiliate_id: int, amount: int) -> LedgerSnapshot:
        """
        Add earned commission.

        Args:
            affiliate_id: Affiliate ID
            amount: Commission in minor units (> 0)

        Returns:
            Totals after the credit

        Raises:
            InvalidAmount: If amount is not positive
            UnknownAffiliate: If the affiliate does not exist
        """
        _require_positive(amount)
        await self.session.flush()

        stmt = (
            update(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .values(
                total_earnings=Affiliate.total_earnings + amount,
                unpaid_balance=Affiliate.unpaid_balance + amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise UnknownAffiliate(f"Affiliate {affiliate_id} not found")

        snapshot = await self.snapshot(affiliate_id)
        logger.debug(
            f"Ledger credit {amount} for affiliate {affiliate_id}",
            extra={
                "affiliate_id": affiliate_id,
                "amount": amount,
                "unpaid_balance": snapshot.unpaid_balance,
            },
        )
        return snapshot

    async def settle(self, affiliate_id: int, amount: int) -> LedgerSnapshot:
        """
        Move an amount from unpaid to paid.

        Args:
            affiliate_id: Affiliate ID
            amount: Paid amount in minor units (> 0)

        Returns:
            Totals after the settle

        Raises:
            InvalidAmount: If amount is not positive
            InsufficientBalance: If amount exceeds the unpaid balance
            UnknownAffiliate: If the affiliate does not exist
        """
        _require_positive(amount)
        await self.session.flush()

        stmt = (
            update(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .where(Affiliate.unpaid_balance >= amount)
            .values(
                paid_amount=Affiliate.paid_amount + amount,
                unpaid_balance=Affiliate.unpaid_balance - amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            # Distinguish a missing row from a failed guard
            current = await self.snapshot(affiliate_id)
            raise InsufficientBalance(
                f"Cannot settle {amount} for affiliate {affiliate_id}: "
                f"unpaid balance is {current.unpaid_balance}"
            )

        snapshot = await self.snapshot(affiliate_id)
        logger.debug(
            f"Ledger settle {amount} for affiliate {affiliate_id}",
            extra={
                "affiliate_id": affiliate_id,
                "amount": amount,
                "unpaid_balance": snapshot.unpaid_balance,
            },
        )
        return snapshot

    async def snapshot(self, affiliate_id: int) -> LedgerSnapshot:
        """
        Read current totals.

        A loaded Affiliate instance is refreshed as well, so objects held
        by the caller see the result of the UPDATE statements.

        Raises:
            UnknownAffiliate: If the affiliate does not exist
        """
        affiliate = await self.session.get(
            Affiliate, affiliate_id, populate_existing=True
        )
        if affiliate is None:
            raise UnknownAffiliate(f"Affiliate {affiliate_id} not found")

        return LedgerSnapshot(
            total_earnings=affiliate.total_earnings,
            paid_amount=affiliate.paid_amount,
            unpaid_balance=affiliate.unpaid_balance,
        )
