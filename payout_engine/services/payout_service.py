"""
Payout service.

Manual payouts recorded by an operator and automatic batch settlement
through the payment processor.

Automatic payouts are two-phase: a pending payout row is committed before
the transfer is requested, and its id is the transfer's idempotency key.
A pending row whose transfer outcome is unknown blocks further automatic
payouts for that affiliate until an operator resolves it; a partial unique
index allows at most one such row per affiliate.
"""

from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_engine.exceptions import (
    AffiliateBusy,
    AffiliateInactive,
    ExceedsBalance,
    InsufficientBalance,
    InvalidAmount,
    PayoutNotFound,
    ProcessorError,
    TransferFailed,
    UnknownAffiliate,
)
from payout_engine.models.affiliate import Affiliate
from payout_engine.models.affiliate_payout import AffiliatePayout
from payout_engine.models.base import utcnow
from payout_engine.models.enums import PaymentMethod, PayoutStatus
from payout_engine.repositories.affiliate_payout_repository import (
    AffiliatePayoutRepository,
)
from payout_engine.repositories.affiliate_referral_repository import (
    AffiliateReferralRepository,
)
from payout_engine.repositories.affiliate_repository import (
    AffiliateRepository,
)
from payout_engine.services.ledger_service import LedgerService
from payout_engine.services.payment_processor.base import PaymentProcessor
from payout_engine.services.payout_notifier import (
    PayoutNotice,
    PayoutNotifier,
    send_payout_notice,
    user_friendly_payout_error,
)
from payout_engine.services.program_settings_service import ProgramConfig
from payout_engine.utils.affiliate_lock import AffiliateLocks, affiliate_locks
from payout_engine.utils.worker_pool import run_bounded


@dataclass(frozen=True)
class PayoutResult:
    """Outcome of one affiliate's automatic payout."""

    affiliate_id: int
    success: bool
    amount: int = 0
    payout_id: int | None = None
    transfer_id: str | None = None
    status: PayoutStatus | None = None
    error: str | None = None
    skipped: bool = False


@dataclass(frozen=True)
class BatchPayoutSummary:
    """Aggregated batch settlement result."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[PayoutResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[PayoutResult]) -> "BatchPayoutSummary":
        attempted = [r for r in results if not r.skipped]
        successful = sum(1 for r in attempted if r.success)
        return cls(
            processed=len(attempted),
            successful=successful,
            failed=len(attempted) - successful,
            skipped=len(results) - len(attempted),
            results=results,
        )

    def as_dict(self) -> dict[str, int]:
        """Counts only, for job logs."""
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("Payout amount must be an integer")
    if amount <= 0:
        raise InvalidAmount(f"Payout amount must be positive, got {amount}")


async def mark_covered_referrals_paid(
    session: AsyncSession, affiliate_id: int, paid_amount: int
) -> int:
    """
    Mark referrals paid, oldest first, while the paid total covers them.

    Args:
        session: Database session
        affiliate_id: Affiliate ID
        paid_amount: Ledger paid_amount after the settle

    Returns:
        Number of referrals marked paid
    """
    referral_repo = AffiliateReferralRepository(session)
    covered = paid_amount - await referral_repo.get_paid_commission_total(
        affiliate_id
    )

    to_mark: list[int] = []
    for referral in await referral_repo.get_unpaid_oldest_first(affiliate_id):
        if referral.commission > covered:
            break
        covered -= referral.commission
        to_mark.append(referral.id)

    return await referral_repo.mark_paid(to_mark)


class PayoutService:
    """Manual and automatic affiliate payouts."""

    def __init__(
        self,
        session: AsyncSession,
        processor: PaymentProcessor | None = None,
        locks: AffiliateLocks | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        notifier: PayoutNotifier | None = None,
    ) -> None:
        """
        Initialize payout service.

        Args:
            session: Database session for manual operations and queries
            processor: Payment processor (required for automatic payouts)
            locks: Per-affiliate lock registry
            session_factory: Sessions for batch workers (one per affiliate);
                defaults to a factory bound to the session's engine
            notifier: Tells affiliates about sent and failed payouts
        """
        self.session = session
        self.processor = processor
        self.locks = locks or affiliate_locks
        self.notifier = notifier
        self.session_factory = session_factory or async_sessionmaker(
            session.bind, class_=AsyncSession, expire_on_commit=False
        )
        self.affiliate_repo = AffiliateRepository(session)
        self.payout_repo = AffiliatePayoutRepository(session)
        self.ledger = LedgerService(session)

    # ---------------------------------------------------------------------
    # Manual payouts
    # ---------------------------------------------------------------------

    async def record_payout(
        self,
        affiliate_id: int,
        amount: int,
        payment_method: PaymentMethod = PaymentMethod.MANUAL_LINK,
        transaction_id: str | None = None,
        notes: str | None = None,
        paid_by: int | None = None,
    ) -> AffiliatePayout:
        """
        Record money an operator paid outside the processor.

        Inserts a completed payout, settles the ledger and marks covered
        referrals paid in one transaction.

        Args:
            affiliate_id: Affiliate ID
            amount: Paid amount in minor units
            payment_method: Method used
            transaction_id: External reference
            notes: Operator notes
            paid_by: Operator user ID

        Returns:
            Created payout

        Raises:
            UnknownAffiliate: Affiliate not found
            AffiliateInactive: Affiliate deactivated
            InvalidAmount: amount <= 0
            ExceedsBalance: amount > unpaid balance
        """
        async with self.locks.lock(affiliate_id):
            affiliate = await self.affiliate_repo.refresh_by_id(affiliate_id)
            if not affiliate:
                raise UnknownAffiliate(f"Affiliate {affiliate_id} not found")
            if not affiliate.is_active:
                raise AffiliateInactive(
                    f"Affiliate {affiliate_id} is not active"
                )
            _require_positive(amount)
            if amount > affiliate.unpaid_balance:
                raise ExceedsBalance(
                    f"Payout {amount} exceeds unpaid balance "
                    f"{affiliate.unpaid_balance}"
                )

            try:
                payout = await self.payout_repo.create(
                    affiliate_id=affiliate_id,
                    amount=amount,
                    payment_method=payment_method,
                    transaction_id=transaction_id,
                    status=PayoutStatus.COMPLETED,
                    notes=notes,
                    paid_by=paid_by,
                    paid_at=utcnow(),
                )
                snapshot = await self.ledger.settle(affiliate_id, amount)
                marked = await mark_covered_referrals_paid(
                    self.session, affiliate_id, snapshot.paid_amount
                )
                await self.session.commit()
            except InsufficientBalance as e:
                await self.session.rollback()
                raise ExceedsBalance(e.message) from e
            except Exception:
                await self.session.rollback()
                raise

        logger.success(
            f"Recorded payout {payout.id} of {amount} "
            f"for affiliate {affiliate_id}",
            extra={
                "affiliate_id": affiliate_id,
                "payout_id": payout.id,
                "amount": amount,
                "referrals_marked_paid": marked,
                "paid_by": paid_by,
            },
        )
        return payout

    # ---------------------------------------------------------------------
    # Automatic payouts
    # ---------------------------------------------------------------------

    async def process_automatic_payouts(
        self, config: ProgramConfig | None = None
    ) -> BatchPayoutSummary:
        """
        Settle every eligible affiliate through the processor.

        Called by the scheduled job or an operator. Failures are folded
        into per-affiliate results and never abort the batch.

        Args:
            config: Program settings (minimum payout, pool size)

        Returns:
            BatchPayoutSummary with processed, successful, failed counts
        """
        config = config or ProgramConfig()
        if self.processor is None:
            raise ProcessorError("No payment processor configured")

        eligible = await self.affiliate_repo.get_eligible_for_auto_payout(
            config.minimum_payout
        )
        affiliate_ids = [affiliate.id for affiliate in eligible]
        # End the read transaction before workers open their own sessions
        await self.session.commit()

        if not affiliate_ids:
            logger.info("No affiliates eligible for automatic payout")
            return BatchPayoutSummary()

        logger.info(
            f"Processing automatic payouts for {len(affiliate_ids)} "
            f"affiliates (pool size {config.max_concurrent_payouts})"
        )

        async def worker(affiliate_id: int) -> PayoutResult:
            return await self._process_affiliate(affiliate_id, config)

        results = await run_bounded(
            affiliate_ids, worker, config.max_concurrent_payouts
        )
        summary = BatchPayoutSummary.from_results(results)

        logger.info(
            f"Automatic payouts complete: {summary.successful} successful, "
            f"{summary.failed} failed, {summary.skipped} skipped "
            f"out of {summary.processed} processed",
            extra=summary.as_dict(),
        )
        return summary

    async def _process_affiliate(
        self, affiliate_id: int, config: ProgramConfig
    ) -> PayoutResult:
        """One affiliate's payout under its lock and in its own session."""
        try:
            async with self.locks.lock(affiliate_id):
                async with self.session_factory() as session:
                    return await self._settle_affiliate(
                        session, affiliate_id, config
                    )
        except AffiliateBusy as e:
            logger.warning(
                f"Affiliate {affiliate_id} busy, skipping: {e.message}",
                extra={"affiliate_id": affiliate_id},
            )
            return PayoutResult(
                affiliate_id=affiliate_id,
                success=False,
                skipped=True,
                error=e.message,
            )
        except Exception as e:
            logger.exception(
                f"Unexpected error paying affiliate {affiliate_id}: {e}"
            )
            return PayoutResult(
                affiliate_id=affiliate_id, success=False, error=str(e)
            )

    async def _settle_affiliate(
        self,
        session: AsyncSession,
        affiliate_id: int,
        config: ProgramConfig,
    ) -> PayoutResult:
        affiliate_repo = AffiliateRepository(session)
        payout_repo = AffiliatePayoutRepository(session)

        # Re-check under the lock: state may have changed since the query
        affiliate = await affiliate_repo.refresh_by_id(affiliate_id)
        if (
            not affiliate
            or not affiliate.is_payable
            or not affiliate.account_id
            or affiliate.unpaid_balance < max(config.minimum_payout, 1)
            or await payout_repo.has_pending(affiliate_id)
        ):
            logger.info(
                f"Affiliate {affiliate_id} no longer eligible, skipping"
            )
            return PayoutResult(
                affiliate_id=affiliate_id,
                success=False,
                skipped=True,
                error="No longer eligible",
            )

        amount = affiliate.unpaid_balance
        destination = affiliate.account_id

        # Phase 1: pending payout row
        try:
            payout = await payout_repo.create(
                affiliate_id=affiliate_id,
                amount=amount,
                payment_method=PaymentMethod.MANAGED_ACCOUNT,
                status=PayoutStatus.PENDING,
                notes="Automatic payout",
            )
            await session.commit()
        except IntegrityError:
            # Another worker committed a pending payout first
            await session.rollback()
            logger.warning(
                f"Affiliate {affiliate_id} already has a pending payout, "
                f"skipping",
                extra={"affiliate_id": affiliate_id},
            )
            return PayoutResult(
                affiliate_id=affiliate_id,
                success=False,
                skipped=True,
                error="Payout already in progress",
            )
        except Exception as e:
            await session.rollback()
            logger.error(
                f"Failed to create pending payout for affiliate "
                f"{affiliate_id}: {e}"
            )
            return PayoutResult(
                affiliate_id=affiliate_id,
                success=False,
                amount=amount,
                error=f"Database error: {e}",
            )

        payout_id = payout.id

        # Phase 2: transfer, keyed by the payout id
        try:
            transfer = await self.processor.create_transfer(
                amount=amount,
                destination=destination,
                idempotency_key=payout.idempotency_key,
                metadata={
                    "affiliate_id": affiliate_id,
                    "affiliate_code": affiliate.code,
                    "payout_id": payout_id,
                    "payout_type": "automatic",
                },
            )
        except TransferFailed as e:
            return await self._fail_payout(
                session, affiliate, payout, e.message
            )
        except Exception as e:
            return await self._leave_pending(session, affiliate, payout, e)

        # Phase 3: complete the payout and settle
        try:
            marked = await self._complete_payout(
                session, affiliate, payout, transfer.transfer_id
            )
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(
                f"CRITICAL: Transfer {transfer.transfer_id} succeeded but "
                f"recording payout {payout_id} failed: {e}",
                extra={
                    "affiliate_id": affiliate_id,
                    "payout_id": payout_id,
                    "transfer_id": transfer.transfer_id,
                },
            )
            # Money moved; the pending row is kept for reconciliation
            return PayoutResult(
                affiliate_id=affiliate_id,
                success=True,
                amount=amount,
                payout_id=payout_id,
                transfer_id=transfer.transfer_id,
                status=PayoutStatus.PENDING,
                error=f"Recording failed: {e}",
            )

        logger.success(
            f"Paid {amount} to affiliate {affiliate_id} "
            f"(transfer {transfer.transfer_id})",
            extra={
                "affiliate_id": affiliate_id,
                "payout_id": payout_id,
                "transfer_id": transfer.transfer_id,
                "amount": amount,
                "referrals_marked_paid": marked,
            },
        )
        await send_payout_notice(
            self.notifier,
            PayoutNotice(
                affiliate_id=affiliate_id,
                user_id=affiliate.user_id,
                succeeded=True,
                amount=amount,
                payout_id=payout_id,
                transfer_id=transfer.transfer_id,
            ),
        )
        return PayoutResult(
            affiliate_id=affiliate_id,
            success=True,
            amount=amount,
            payout_id=payout_id,
            transfer_id=transfer.transfer_id,
            status=PayoutStatus.COMPLETED,
        )

    async def _complete_payout(
        self,
        session: AsyncSession,
        affiliate: Affiliate,
        payout: AffiliatePayout,
        transaction_id: str | None,
    ) -> int:
        """Mark a pending payout completed and settle the ledger."""
        payout.status = PayoutStatus.COMPLETED
        payout.transaction_id = transaction_id
        payout.paid_at = utcnow()

        snapshot = await LedgerService(session).settle(
            affiliate.id, payout.amount
        )
        marked = await mark_covered_referrals_paid(
            session, affiliate.id, snapshot.paid_amount
        )
        affiliate.last_payout_error = None
        affiliate.last_payout_error_at = None
        return marked

    async def _fail_payout(
        self,
        session: AsyncSession,
        affiliate: Affiliate,
        payout: AffiliatePayout,
        error: str,
    ) -> PayoutResult:
        """Terminal transfer failure: ledger is not touched."""
        payout.status = PayoutStatus.FAILED
        payout.notes = f"Transfer failed: {error}"
        affiliate.last_payout_error = error
        affiliate.last_payout_error_at = utcnow()
        await session.commit()

        logger.error(
            f"Transfer failed for affiliate {affiliate.id}: {error}",
            extra={
                "affiliate_id": affiliate.id,
                "payout_id": payout.id,
                "amount": payout.amount,
            },
        )
        await send_payout_notice(
            self.notifier,
            PayoutNotice(
                affiliate_id=affiliate.id,
                user_id=affiliate.user_id,
                succeeded=False,
                amount=payout.amount,
                payout_id=payout.id,
                error=user_friendly_payout_error(error),
            ),
        )
        return PayoutResult(
            affiliate_id=affiliate.id,
            success=False,
            amount=payout.amount,
            payout_id=payout.id,
            status=PayoutStatus.FAILED,
            error=error,
        )

    async def _leave_pending(
        self,
        session: AsyncSession,
        affiliate: Affiliate,
        payout: AffiliatePayout,
        exc: Exception,
    ) -> PayoutResult:
        """Transfer outcome unknown: keep the payout pending."""
        message = getattr(exc, "message", None) or str(exc)
        error = f"Transfer outcome unknown: {message}"
        payout.notes = error
        affiliate.last_payout_error = error
        affiliate.last_payout_error_at = utcnow()
        await session.commit()

        logger.error(
            f"Transfer for affiliate {affiliate.id} did not complete, "
            f"payout {payout.id} left pending: {message}",
            extra={
                "affiliate_id": affiliate.id,
                "payout_id": payout.id,
                "amount": payout.amount,
            },
        )
        return PayoutResult(
            affiliate_id=affiliate.id,
            success=False,
            amount=payout.amount,
            payout_id=payout.id,
            status=PayoutStatus.PENDING,
            error=error,
        )

    # ---------------------------------------------------------------------
    # Reconciliation and queries
    # ---------------------------------------------------------------------

    async def resolve_pending_payout(
        self,
        payout_id: int,
        succeeded: bool,
        transaction_id: str | None = None,
        error: str | None = None,
    ) -> AffiliatePayout:
        """
        Record the real outcome of a pending payout.

        Args:
            payout_id: Pending payout ID
            succeeded: Whether the processor actually moved the money
            transaction_id: Transfer id when it succeeded
            error: Failure message when it did not

        Returns:
            Resolved payout

        Raises:
            PayoutNotFound: No pending payout with this id
        """
        payout = await self.payout_repo.get_by_id(payout_id)
        if not payout:
            raise PayoutNotFound(f"No pending payout {payout_id}")

        affiliate_id = payout.affiliate_id
        status = PayoutStatus.COMPLETED if succeeded else PayoutStatus.FAILED
        message = error or "Transfer did not complete"

        async with self.locks.lock(affiliate_id):
            try:
                # Another resolver may have won while this one waited
                payout = await self.payout_repo.refresh_by_id(payout_id)
                if not payout or not await self.payout_repo.claim_pending(
                    payout_id, status
                ):
                    raise PayoutNotFound(f"No pending payout {payout_id}")

                affiliate = await self.affiliate_repo.refresh_by_id(
                    affiliate_id
                )
                if succeeded:
                    await self._complete_payout(
                        self.session, affiliate, payout, transaction_id
                    )
                else:
                    payout.status = PayoutStatus.FAILED
                    payout.notes = f"Transfer failed: {message}"
                    affiliate.last_payout_error = message
                    affiliate.last_payout_error_at = utcnow()
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info(
            f"Resolved pending payout {payout_id} as {status.value}",
            extra={"affiliate_id": affiliate_id, "payout_id": payout_id},
        )
        await send_payout_notice(
            self.notifier,
            PayoutNotice(
                affiliate_id=affiliate_id,
                user_id=affiliate.user_id,
                succeeded=succeeded,
                amount=payout.amount,
                payout_id=payout_id,
                transfer_id=transaction_id if succeeded else None,
                error=(
                    None if succeeded else user_friendly_payout_error(message)
                ),
            ),
        )
        return payout

    async def list_payouts(self, affiliate_id: int) -> list[AffiliatePayout]:
        """Payout history for an affiliate, newest first."""
        return await self.payout_repo.get_by_affiliate(affiliate_id)

    async def list_pending_payouts(self) -> list[AffiliatePayout]:
        """Pending payouts waiting for reconciliation."""
        return await self.payout_repo.get_pending()

    async def get_summary(self, affiliate_id: int) -> dict[str, Any]:
        """Ledger totals and pending state for an affiliate."""
        snapshot = await self.ledger.snapshot(affiliate_id)
        return {
            "total_earnings": snapshot.total_earnings,
            "paid_amount": snapshot.paid_amount,
            "unpaid_balance": snapshot.unpaid_balance,
            "has_pending_payout": await self.payout_repo.has_pending(
                affiliate_id
            ),
        }
