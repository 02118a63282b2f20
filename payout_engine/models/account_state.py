"""
Managed payment account state machine.

Transitions are fail-closed: any change not listed in _TRANSITIONS is
rejected, and a rejected report that disables payouts still revokes them.
Only the payment account service applies states to an affiliate.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from payout_engine.exceptions import InvalidAccountTransition
from payout_engine.models.enums import AccountStatus

if TYPE_CHECKING:
    from payout_engine.models.affiliate import Affiliate


@dataclass(frozen=True)
class AccountState:
    """Account status together with the processor's payouts flag."""

    status: AccountStatus
    payouts_enabled: bool = False

    @property
    def is_payable(self) -> bool:
        """Account can receive automatic transfers."""
        return self.status == AccountStatus.ACTIVE and self.payouts_enabled


NOT_CONNECTED = AccountState(AccountStatus.NOT_STARTED, False)

# Legal transitions: (from_status, to_status)
_TRANSITIONS: set[tuple[AccountStatus, AccountStatus]] = {
    (AccountStatus.NOT_STARTED, AccountStatus.ONBOARDING),
    (AccountStatus.ONBOARDING, AccountStatus.ACTIVE),
    (AccountStatus.ONBOARDING, AccountStatus.RESTRICTED),
    (AccountStatus.ACTIVE, AccountStatus.RESTRICTED),
    # Processor disabled charges or payouts after activation
    (AccountStatus.ACTIVE, AccountStatus.ONBOARDING),
    # Processor lifted the restriction
    (AccountStatus.RESTRICTED, AccountStatus.ONBOARDING),
    (AccountStatus.RESTRICTED, AccountStatus.ACTIVE),
    # Re-sync without a status change
    (AccountStatus.ONBOARDING, AccountStatus.ONBOARDING),
    (AccountStatus.ACTIVE, AccountStatus.ACTIVE),
    (AccountStatus.RESTRICTED, AccountStatus.RESTRICTED),
}


def is_allowed(current: AccountStatus, target: AccountStatus) -> bool:
    """Check a status pair against the transition table."""
    return (current, target) in _TRANSITIONS


def next_account_state(
    current: AccountState, reported: AccountState
) -> AccountState:
    """
    Validate a processor-reported state against the current one.

    Args:
        current: State stored on the affiliate
        reported: State reported by the processor

    Returns:
        The state to store

    Raises:
        InvalidAccountTransition: If the status change is not allowed
    """
    if not is_allowed(current.status, reported.status):
        raise InvalidAccountTransition(
            f"Illegal account transition: "
            f"{current.status.value} -> {reported.status.value}"
        )
    return reported


def apply_account_state(
    affiliate: "Affiliate", reported: AccountState
) -> AccountState:
    """Transition an affiliate's account to a processor-reported state."""
    current = affiliate.account_state
    try:
        new_state = next_account_state(current, reported)
    except InvalidAccountTransition:
        if current.payouts_enabled and not reported.payouts_enabled:
            affiliate._store_account_state(
                AccountState(current.status, False)
            )
        raise
    affiliate._store_account_state(new_state)
    return new_state


def reset_account_state(affiliate: "Affiliate") -> None:
    """
    Clear the account identity on disconnect.

    Not a transition: the account id is dropped together with the state.
    """
    affiliate.account_id = None
    affiliate.last_sync_at = None
    affiliate._store_account_state(NOT_CONNECTED)
