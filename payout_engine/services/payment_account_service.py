"""
Payment account service.

Lifecycle of an affiliate's managed payment account: onboarding, OAuth
linking, status sync and disconnect. Account status changes only through
the state machine in models.account_state, driven by what the processor
reports.
"""

import asyncio

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.config.settings import settings
from payout_engine.exceptions import (
    AccountNotConnected,
    InvalidAccountTransition,
    ProcessorError,
    ProcessorUnavailable,
    UnknownAffiliate,
)
from payout_engine.models.account_state import (
    AccountState,
    apply_account_state,
    reset_account_state,
)
from payout_engine.models.affiliate import Affiliate
from payout_engine.models.base import utcnow
from payout_engine.models.enums import AccountStatus, PaymentMethod
from payout_engine.repositories.affiliate_repository import (
    AffiliateRepository,
)
from payout_engine.services.payment_processor.base import (
    AccountSnapshot,
    PaymentProcessor,
)
from payout_engine.utils.affiliate_lock import AffiliateLocks, affiliate_locks


class PaymentAccountService:
    """Managed payment account lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        processor: PaymentProcessor,
        locks: AffiliateLocks | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        """
        Initialize payment account service.

        Args:
            session: Database session
            processor: Payment processor client
            locks: Per-affiliate lock registry
            max_retries: Attempts for status reads
            retry_delay: Base backoff delay in seconds (doubles per attempt)
        """
        self.session = session
        self.processor = processor
        self.locks = locks or affiliate_locks
        self.max_retries = max_retries or settings.status_refresh_max_retries
        self.retry_delay = (
            retry_delay
            if retry_delay is not None
            else settings.status_refresh_retry_delay
        )
        self.affiliate_repo = AffiliateRepository(session)

    async def _get_affiliate(self, affiliate_id: int) -> Affiliate:
        affiliate = await self.affiliate_repo.get_by_id(affiliate_id)
        if not affiliate:
            raise UnknownAffiliate(f"Affiliate {affiliate_id} not found")
        return affiliate

    async def start_onboarding(
        self,
        affiliate_id: int,
        email: str | None,
        return_url: str,
        refresh_url: str,
    ) -> str:
        """
        Create the managed account if needed and return an onboarding link.

        Args:
            affiliate_id: Affiliate ID
            email: Email prefilled on the processor account
            return_url: Where the processor sends the user afterwards
            refresh_url: Where an expired link redirects

        Returns:
            Hosted onboarding URL
        """
        affiliate = await self._get_affiliate(affiliate_id)

        if not affiliate.account_id:
            account_id = await self.processor.create_account(
                email,
                metadata={
                    "affiliate_id": str(affiliate.id),
                    "user_id": str(affiliate.user_id),
                },
            )
            affiliate.account_id = account_id
            apply_account_state(
                affiliate, AccountState(AccountStatus.ONBOARDING, False)
            )
            affiliate.payment_method = PaymentMethod.MANAGED_ACCOUNT
            await self.session.commit()

            logger.info(
                f"Affiliate {affiliate_id} started onboarding",
                extra={"affiliate_id": affiliate_id, "account_id": account_id},
            )

        return await self.processor.create_onboarding_link(
            affiliate.account_id, return_url, refresh_url
        )

    async def link_account(
        self, affiliate_id: int, authorization_code: str
    ) -> AccountState:
        """
        Link an existing processor account through OAuth.

        Args:
            affiliate_id: Affiliate ID
            authorization_code: Code returned by the processor's OAuth flow

        Returns:
            Account state after the initial sync
        """
        affiliate = await self._get_affiliate(affiliate_id)
        account_id = await self.processor.exchange_oauth_code(
            authorization_code
        )

        if affiliate.account_id and affiliate.account_id != account_id:
            # A different account replaces the old identity
            reset_account_state(affiliate)

        affiliate.account_id = account_id
        if affiliate.account_status == AccountStatus.NOT_STARTED:
            apply_account_state(
                affiliate, AccountState(AccountStatus.ONBOARDING, False)
            )
        affiliate.payment_method = PaymentMethod.MANAGED_ACCOUNT
        await self.session.commit()

        logger.info(
            f"Affiliate {affiliate_id} linked account {account_id}",
            extra={"affiliate_id": affiliate_id, "account_id": account_id},
        )
        return await self.refresh_status(affiliate_id)

    async def _fetch_status(self, account_id: str) -> AccountSnapshot:
        """Read account status, retrying transient failures with backoff."""
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self.processor.get_account_status(account_id)
            except ProcessorUnavailable as e:
                if attempt >= self.max_retries:
                    logger.error(
                        f"Status read for {account_id} failed after "
                        f"{attempt} attempts: {e}"
                    )
                    raise
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Status read for {account_id} failed "
                    f"(attempt {attempt}/{self.max_retries}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

        raise ProcessorUnavailable(f"Status read for {account_id} failed")

    async def _apply_snapshot(
        self, affiliate: Affiliate, snapshot: AccountSnapshot
    ) -> AccountState:
        previous = affiliate.account_state
        try:
            state = apply_account_state(affiliate, snapshot.to_state())
        except InvalidAccountTransition:
            logger.warning(
                f"Rejected account status for affiliate {affiliate.id}: "
                f"{previous.status.value} -> {snapshot.status.value}",
                extra={
                    "affiliate_id": affiliate.id,
                    "account_id": snapshot.account_id,
                },
            )
            if previous.payouts_enabled and not affiliate.payouts_enabled:
                # Status refused, but the payouts flag is still honored
                affiliate.last_sync_at = utcnow()
                await self.session.commit()
            raise

        affiliate.last_sync_at = utcnow()
        await self.session.commit()

        logger.info(
            f"Synced account status for affiliate {affiliate.id}: "
            f"{state.status.value}, payouts_enabled={state.payouts_enabled}",
            extra={
                "affiliate_id": affiliate.id,
                "account_id": snapshot.account_id,
                "previous_status": previous.status.value,
            },
        )
        return state

    async def refresh_status(self, affiliate_id: int) -> AccountState:
        """
        Sync the account status from the processor.

        Raises:
            UnknownAffiliate: Affiliate not found
            AccountNotConnected: No managed account
            ProcessorUnavailable: Processor unreachable after retries
            InvalidAccountTransition: Reported status not reachable
        """
        affiliate = await self._get_affiliate(affiliate_id)
        if not affiliate.account_id:
            raise AccountNotConnected(
                f"Affiliate {affiliate_id} has no payment account"
            )

        snapshot = await self._fetch_status(affiliate.account_id)
        return await self._apply_snapshot(affiliate, snapshot)

    async def sync_account(self, account_id: str) -> AccountState | None:
        """
        Sync by processor account id.

        Returns:
            New state, or None when no affiliate owns the account
        """
        affiliate = await self.affiliate_repo.get_by_account_id(account_id)
        if not affiliate:
            logger.warning(
                f"No affiliate found for account {account_id}",
                extra={"account_id": account_id},
            )
            return None

        snapshot = await self._fetch_status(account_id)
        return await self._apply_snapshot(affiliate, snapshot)

    async def disconnect(self, affiliate_id: int) -> Affiliate:
        """
        Disconnect the managed account.

        The processor-side delete is best effort; locally the account
        identity is cleared and payouts fall back to the manual link.

        Raises:
            UnknownAffiliate: Affiliate not found
            AccountNotConnected: No managed account
        """
        affiliate = await self._get_affiliate(affiliate_id)
        if not affiliate.account_id:
            raise AccountNotConnected(
                f"Affiliate {affiliate_id} has no payment account"
            )

        account_id = affiliate.account_id
        async with self.locks.lock(affiliate_id):
            try:
                await self.processor.delete_account(account_id)
            except ProcessorError as e:
                logger.warning(
                    f"Failed to delete processor account {account_id}: {e}",
                    extra={
                        "affiliate_id": affiliate_id,
                        "account_id": account_id,
                    },
                )

            reset_account_state(affiliate)
            affiliate.payment_method = PaymentMethod.MANUAL_LINK
            await self.session.commit()

        logger.info(
            f"Affiliate {affiliate_id} disconnected account {account_id}",
            extra={"affiliate_id": affiliate_id, "account_id": account_id},
        )
        return affiliate
