"""
Payment processor boundary.

The engine talks to the managed-account processor only through the
PaymentProcessor protocol, so services can be exercised with a fake.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from payout_engine.models.account_state import AccountState
from payout_engine.models.enums import AccountStatus


@dataclass(frozen=True)
class AccountSnapshot:
    """Account state as reported by the processor."""

    account_id: str
    status: AccountStatus
    payouts_enabled: bool = False
    disabled_reason: str | None = None

    def to_state(self) -> AccountState:
        """Convert to the value stored on the affiliate."""
        return AccountState(self.status, self.payouts_enabled)


@dataclass(frozen=True)
class TransferResult:
    """Successful transfer."""

    transfer_id: str
    amount: int
    destination: str
    metadata: dict[str, str] = field(default_factory=dict)


class PaymentProcessor(Protocol):
    """
    Managed-account payment processor.

    Implementations raise ProcessorUnavailable for transient failures
    (network, rate limits, timeouts) and TransferFailed when a transfer is
    rejected. Other failures raise ProcessorError.
    """

    async def create_account(
        self, email: str | None, metadata: dict[str, str]
    ) -> str:
        """Create a managed account and return its id."""
        ...

    async def create_onboarding_link(
        self, account_id: str, return_url: str, refresh_url: str
    ) -> str:
        """Return a hosted onboarding URL for the account."""
        ...

    async def exchange_oauth_code(self, authorization_code: str) -> str:
        """Exchange an OAuth authorization code for an account id."""
        ...

    async def get_account_status(self, account_id: str) -> AccountSnapshot:
        """Read the account's current status."""
        ...

    async def create_transfer(
        self,
        amount: int,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> TransferResult:
        """Move amount (minor units) to the destination account."""
        ...

    async def delete_account(self, account_id: str) -> None:
        """Delete the managed account on the processor side."""
        ...
