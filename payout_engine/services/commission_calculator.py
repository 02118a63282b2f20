"""
Commission calculator.

Splits a sale between the buyer discount and the affiliate commission.
All arithmetic is Decimal on integer minor units; each term is rounded
half-up on its own.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from payout_engine.exceptions import InvalidAmount, InvalidRate

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CommissionSplit:
    """Result of splitting a sale."""

    buyer_discount: int
    affiliate_commission: int


def _percent_of(amount: int, rate: int) -> int:
    """round(amount * rate / 100), half-up."""
    value = Decimal(amount) * Decimal(rate) / HUNDRED
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_rates(commission_rate: int, discount_rate: int) -> None:
    """
    Validate a commission/discount rate pair.

    Raises:
        InvalidRate: If a rate is outside [0, 100] or the discount
            exceeds the commission
    """
    for name, rate in (
        ("commission_rate", commission_rate),
        ("discount_rate", discount_rate),
    ):
        if isinstance(rate, bool) or not isinstance(rate, int):
            raise InvalidRate(f"{name} must be an integer percent")
        if rate < 0 or rate > 100:
            raise InvalidRate(f"{name} must be between 0 and 100, got {rate}")

    if discount_rate > commission_rate:
        raise InvalidRate(
            f"discount_rate {discount_rate} exceeds "
            f"commission_rate {commission_rate}"
        )


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("Amount must be an integer in minor units")
    if amount < 0:
        raise InvalidAmount(f"Amount must not be negative, got {amount}")


def calculate_commission(
    amount: int, commission_rate: int, discount_rate: int = 0
) -> CommissionSplit:
    """
    Split a purchase amount.

    Args:
        amount: Purchase amount in minor units
        commission_rate: Affiliate commission percent
        discount_rate: Part of the commission passed to the buyer

    Returns:
        CommissionSplit with the buyer discount and affiliate commission

    Raises:
        InvalidRate: Invalid rate pair
        InvalidAmount: Negative or non-integer amount
    """
    validate_rates(commission_rate, discount_rate)
    _validate_amount(amount)

    return CommissionSplit(
        buyer_discount=_percent_of(amount, discount_rate),
        affiliate_commission=_percent_of(
            amount, commission_rate - discount_rate
        ),
    )


def original_commission(amount: int, commission_rate: int) -> int:
    """Commission the affiliate would earn with no buyer discount."""
    return calculate_commission(amount, commission_rate).affiliate_commission
