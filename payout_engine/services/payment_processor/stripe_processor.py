"""
Stripe Connect payment processor.

Express accounts, hosted onboarding links and platform transfers. The
stripe SDK is synchronous; every call runs in a worker thread under a
timeout so a slow API never stalls the event loop.
"""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import stripe
from loguru import logger

from payout_engine.config.settings import settings
from payout_engine.exceptions import (
    ProcessorError,
    ProcessorUnavailable,
    TransferFailed,
)
from payout_engine.models.enums import AccountStatus
from payout_engine.services.payment_processor.base import (
    AccountSnapshot,
    TransferResult,
)

T = TypeVar("T")

# Errors worth retrying or leaving a payout pending for
TRANSIENT_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


def determine_account_status(account: Any) -> AccountStatus:
    """
    Map a Stripe account object to an account status.

    - details not submitted: onboarding
    - requirements.disabled_reason set: restricted
    - charges and payouts enabled: active
    - anything else: onboarding (submitted, not yet activated)
    """
    if not getattr(account, "details_submitted", False):
        return AccountStatus.ONBOARDING

    requirements = getattr(account, "requirements", None)
    if requirements is not None and getattr(
        requirements, "disabled_reason", None
    ):
        return AccountStatus.RESTRICTED

    if getattr(account, "charges_enabled", False) and getattr(
        account, "payouts_enabled", False
    ):
        return AccountStatus.ACTIVE

    return AccountStatus.ONBOARDING


def snapshot_from_account(account: Any) -> AccountSnapshot:
    """Build an AccountSnapshot from a Stripe account object."""
    requirements = getattr(account, "requirements", None)
    return AccountSnapshot(
        account_id=account.id,
        status=determine_account_status(account),
        payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
        disabled_reason=(
            getattr(requirements, "disabled_reason", None)
            if requirements is not None
            else None
        ),
    )


class StripeConnectProcessor:
    """PaymentProcessor backed by Stripe Connect."""

    def __init__(
        self,
        api_key: str | None = None,
        currency: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Initialize Stripe processor.

        Args:
            api_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            currency: Transfer currency (defaults to PAYOUT_CURRENCY)
            timeout: Seconds per API call (defaults to
                PROCESSOR_TIMEOUT_SECONDS)
        """
        self.api_key = api_key or settings.stripe_secret_key
        self.currency = currency or settings.payout_currency
        self.timeout = timeout or settings.processor_timeout_seconds

        if not self.api_key:
            raise ProcessorError("STRIPE_SECRET_KEY is not configured")

    async def _call(
        self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T:
        """Run a blocking SDK call in a thread with a timeout."""
        kwargs.setdefault("api_key", self.api_key)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            logger.warning(f"Stripe {operation} timed out after {self.timeout}s")
            raise ProcessorUnavailable(
                f"Stripe {operation} timed out"
            ) from e
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Stripe {operation} unavailable: {e}")
            raise ProcessorUnavailable(
                getattr(e, "user_message", None) or str(e)
            ) from e

    async def create_account(
        self, email: str | None, metadata: dict[str, str]
    ) -> str:
        """Create an Express account."""
        try:
            account = await self._call(
                "account create",
                stripe.Account.create,
                type="express",
                email=email,
                capabilities={"transfers": {"requested": True}},
                metadata=metadata,
            )
        except stripe.StripeError as e:
            raise ProcessorError(f"Account creation failed: {e}") from e

        logger.info(
            f"Created Stripe Connect account {account.id}",
            extra={"account_id": account.id, **metadata},
        )
        return account.id

    async def create_onboarding_link(
        self, account_id: str, return_url: str, refresh_url: str
    ) -> str:
        """Create a hosted onboarding link."""
        try:
            link = await self._call(
                "account link",
                stripe.AccountLink.create,
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            raise ProcessorError(f"Onboarding link failed: {e}") from e
        return link.url

    async def exchange_oauth_code(self, authorization_code: str) -> str:
        """Exchange an OAuth code for the connected account id."""
        try:
            response = await self._call(
                "oauth token",
                stripe.OAuth.token,
                grant_type="authorization_code",
                code=authorization_code,
            )
        except stripe.StripeError as e:
            raise ProcessorError(f"OAuth exchange failed: {e}") from e

        account_id = getattr(response, "stripe_user_id", None)
        if not account_id:
            raise ProcessorError("No stripe_user_id in OAuth response")
        return account_id

    async def get_account_status(self, account_id: str) -> AccountSnapshot:
        """Retrieve the account and map its status."""
        try:
            account = await self._call(
                "account retrieve", stripe.Account.retrieve, account_id
            )
        except stripe.StripeError as e:
            raise ProcessorError(f"Account retrieve failed: {e}") from e
        return snapshot_from_account(account)

    async def create_transfer(
        self,
        amount: int,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> TransferResult:
        """
        Transfer to a connected account.

        The idempotency key makes a repeated request for the same payout
        return the original transfer instead of paying twice.
        """
        meta = {k: str(v) for k, v in (metadata or {}).items()}
        try:
            transfer = await self._call(
                "transfer",
                stripe.Transfer.create,
                amount=amount,
                currency=self.currency,
                destination=destination,
                metadata=meta,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise TransferFailed(
                getattr(e, "user_message", None) or str(e)
            ) from e

        return TransferResult(
            transfer_id=transfer.id,
            amount=amount,
            destination=destination,
            metadata=meta,
        )

    async def delete_account(self, account_id: str) -> None:
        """Delete the connected account."""
        try:
            await self._call(
                "account delete", stripe.Account.delete, account_id
            )
        except stripe.StripeError as e:
            raise ProcessorError(f"Account delete failed: {e}") from e
        logger.info(
            f"Deleted Stripe Connect account {account_id}",
            extra={"account_id": account_id},
        )
