"""
Payout notifications.

Affiliates are told when money was sent or a payout failed. Delivery
(email, bot message) sits behind PayoutNotifier; a notification that
cannot be delivered is logged and never fails or undoes the payout.
"""

from dataclasses import dataclass
from typing import Protocol

from loguru import logger

GENERIC_PAYOUT_ERROR = (
    "A payout error occurred. Please check your payment account "
    "or contact support."
)

# (needles, message) checked in order against the lower-cased error
PAYOUT_ERROR_MESSAGES: list[tuple[tuple[str, ...], str]] = [
    (
        ("insufficient_funds", "insufficient funds"),
        "Your connected account has insufficient funds",
    ),
    (
        ("account_restricted", "account restricted"),
        "Your payment account has restrictions that need to be resolved",
    ),
    (
        ("invalid_account", "invalid account"),
        "There's an issue with your connected account",
    ),
]


def user_friendly_payout_error(raw_error: str | None) -> str:
    """Map a raw processor failure message to text shown to affiliates."""
    if not raw_error:
        return GENERIC_PAYOUT_ERROR

    lowered = raw_error.lower()
    for needles, message in PAYOUT_ERROR_MESSAGES:
        if any(needle in lowered for needle in needles):
            return message
    return GENERIC_PAYOUT_ERROR


@dataclass(frozen=True)
class PayoutNotice:
    """What an affiliate is told about one payout."""

    affiliate_id: int
    user_id: int
    succeeded: bool
    amount: int | None = None
    payout_id: int | None = None
    transfer_id: str | None = None
    error: str | None = None


class PayoutNotifier(Protocol):
    """Delivers payout notices to affiliates."""

    async def payout_sent(self, notice: PayoutNotice) -> None:
        """Money reached the affiliate's account."""
        ...

    async def payout_failed(self, notice: PayoutNotice) -> None:
        """A payout could not be completed; notice.error says why."""
        ...


async def send_payout_notice(
    notifier: PayoutNotifier | None, notice: PayoutNotice
) -> bool:
    """
    Deliver a notice if a notifier is configured.

    Returns:
        True if the notifier accepted the notice
    """
    if notifier is None:
        return False

    try:
        if notice.succeeded:
            await notifier.payout_sent(notice)
        else:
            await notifier.payout_failed(notice)
    except Exception as e:
        logger.warning(
            f"Failed to send payout notification to affiliate "
            f"{notice.affiliate_id}: {e}",
            extra={
                "affiliate_id": notice.affiliate_id,
                "payout_id": notice.payout_id,
            },
        )
        return False
    return True
