"""
Database enums.

Centralized enums used across affiliate models.
"""

from enum import StrEnum


class PaymentMethod(StrEnum):
    """How an affiliate receives money."""

    MANUAL_LINK = "manual_link"  # Operator pays through the affiliate's link
    MANAGED_ACCOUNT = "managed_account"  # Transfers to a processor account


class AccountStatus(StrEnum):
    """Managed payment account status values."""

    NOT_STARTED = "not_started"
    ONBOARDING = "onboarding"
    ACTIVE = "active"
    RESTRICTED = "restricted"


class PayoutStatus(StrEnum):
    """Payout status values."""

    PENDING = "pending"  # Transfer requested, outcome not recorded yet
    COMPLETED = "completed"
    FAILED = "failed"
