"""
Affiliate engine exceptions.

Validation errors are raised before anything is written; processor errors
carry the message reported by the payment processor.
"""


class AffiliateError(Exception):
    """Base exception for affiliate commission and payout errors."""

    error_code = "AFFILIATE_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


class InvalidRate(AffiliateError):
    """Commission or discount rate outside the allowed range."""

    error_code = "INVALID_RATE"


class InvalidAmount(AffiliateError):
    """Monetary amount is negative, zero where not allowed, or too large."""

    error_code = "INVALID_AMOUNT"


class UnknownAffiliate(AffiliateError):
    """Affiliate code or id does not resolve to an active affiliate."""

    error_code = "AFFILIATE_NOT_FOUND"


class AffiliateInactive(AffiliateError):
    """Affiliate exists but has been deactivated."""

    error_code = "AFFILIATE_INACTIVE"


class SelfReferral(AffiliateError):
    """Purchaser tried to use their own affiliate code."""

    error_code = "SELF_REFERRAL"


class AlreadyRegistered(AffiliateError):
    """User is already enrolled as an affiliate."""

    error_code = "ALREADY_REGISTERED"


class InvalidPaymentLink(AffiliateError):
    """Manual payout link is missing or not an https URL."""

    error_code = "INVALID_PAYMENT_LINK"


class CodeGenerationFailed(AffiliateError):
    """No unique affiliate code could be generated."""

    error_code = "CODE_GENERATION_FAILED"


class InsufficientBalance(AffiliateError):
    """Ledger settle larger than the unpaid balance."""

    error_code = "INSUFFICIENT_BALANCE"


class ExceedsBalance(InsufficientBalance):
    """Requested payout larger than the unpaid balance."""

    error_code = "EXCEEDS_BALANCE"


class AccountNotConnected(AffiliateError):
    """Affiliate has no managed payment account."""

    error_code = "NO_PAYMENT_ACCOUNT"


class InvalidAccountTransition(AffiliateError):
    """Account status change not allowed by the state machine."""

    error_code = "INVALID_ACCOUNT_TRANSITION"


class PayoutNotFound(AffiliateError):
    """Payout id does not exist or is not pending."""

    error_code = "PAYOUT_NOT_FOUND"


class AffiliateBusy(AffiliateError):
    """Another operation holds the affiliate's lock."""

    error_code = "AFFILIATE_BUSY"


class ProcessorError(AffiliateError):
    """Base class for payment processor failures."""

    error_code = "PROCESSOR_ERROR"


class ProcessorUnavailable(ProcessorError):
    """Transient processor failure (network, rate limit, timeout)."""

    error_code = "PROCESSOR_UNAVAILABLE"


class TransferFailed(ProcessorError):
    """Processor rejected a transfer."""

    error_code = "TRANSFER_FAILED"
