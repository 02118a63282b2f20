"""
Affiliate model.

Partner account that earns commission on attributed purchases.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payout_engine.models.account_state import AccountState
from payout_engine.models.base import Base, TimestampMixin
from payout_engine.models.enums import AccountStatus, PaymentMethod

if TYPE_CHECKING:
    from payout_engine.models.affiliate_payout import AffiliatePayout
    from payout_engine.models.affiliate_referral import AffiliateReferral


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Affiliate(TimestampMixin, Base):
    """
    Affiliate entity.

    Ledger totals are kept in integer minor units and always satisfy
    total_earnings == paid_amount + unpaid_balance. They are changed only
    through LedgerService.

    Attributes:
        id: Primary key
        user_id: Platform user who owns the affiliate account
        code: Unique URL-safe affiliate code
        commission_rate: Percent of each sale owed to the affiliate
        discount_rate: Percent of each sale given to the buyer instead
        payment_method: Manual link or managed account
        payment_link: Manual payout link (https)
        is_active: Soft-delete flag
        account_id: External managed account id
        account_status: Managed account status (read-only)
        payouts_enabled: Processor payouts flag (read-only)
        last_sync_at: Last successful status sync
        total_earnings: Lifetime commission
        paid_amount: Settled commission
        unpaid_balance: Commission awaiting payout
        last_payout_error: Last automatic payout failure message
        last_payout_error_at: When the last failure happened
    """

    __tablename__ = "affiliates"
    __table_args__ = (
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100",
            name="check_affiliate_commission_rate_range",
        ),
        CheckConstraint(
            "discount_rate >= 0 AND discount_rate <= commission_rate",
            name="check_affiliate_discount_rate_range",
        ),
        CheckConstraint(
            "total_earnings >= 0",
            name="check_affiliate_total_earnings_non_negative",
        ),
        CheckConstraint(
            "paid_amount >= 0", name="check_affiliate_paid_amount_non_negative"
        ),
        CheckConstraint(
            "unpaid_balance >= 0",
            name="check_affiliate_unpaid_balance_non_negative",
        ),
        CheckConstraint(
            "total_earnings = paid_amount + unpaid_balance",
            name="check_affiliate_ledger_totals",
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    user_id: Mapped[int] = mapped_column(
        Integer, unique=True, index=True, nullable=False
    )
    code: Mapped[str] = mapped_column(
        String(32), unique=True, index=True, nullable=False
    )

    # Rates (percent)
    commission_rate: Mapped[int] = mapped_column(
        Integer, nullable=False, default=20
    )
    discount_rate: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Payment method
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            native_enum=False,
            values_callable=_enum_values,
            length=32,
        ),
        nullable=False,
        default=PaymentMethod.MANUAL_LINK,
    )
    payment_link: Mapped[str | None] = mapped_column(
        String(2048), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, index=True
    )

    # Managed payment account
    account_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    _account_status: Mapped[AccountStatus] = mapped_column(
        "account_status",
        SQLEnum(
            AccountStatus,
            native_enum=False,
            values_callable=_enum_values,
            length=32,
        ),
        nullable=False,
        default=AccountStatus.NOT_STARTED,
    )
    _payouts_enabled: Mapped[bool] = mapped_column(
        "payouts_enabled", Boolean, nullable=False, default=False
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Ledger totals (minor units)
    total_earnings: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    paid_amount: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    unpaid_balance: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    # Failure tracking
    last_payout_error: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )
    last_payout_error_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    referrals: Mapped[list["AffiliateReferral"]] = relationship(
        "AffiliateReferral",
        back_populates="affiliate",
        order_by="AffiliateReferral.created_at",
    )
    payouts: Mapped[list["AffiliatePayout"]] = relationship(
        "AffiliatePayout",
        back_populates="affiliate",
        order_by="AffiliatePayout.created_at",
    )

    # Account state is read-only outside the state machine

    @hybrid_property
    def account_status(self) -> AccountStatus:
        """Managed account status."""
        return self._account_status

    @hybrid_property
    def payouts_enabled(self) -> bool:
        """Processor reports payouts as enabled."""
        return self._payouts_enabled

    @property
    def account_state(self) -> AccountState:
        """Current account state value."""
        return AccountState(
            self._account_status or AccountStatus.NOT_STARTED,
            bool(self._payouts_enabled),
        )

    def _store_account_state(self, state: AccountState) -> None:
        self._account_status = state.status
        self._payouts_enabled = state.payouts_enabled

    # Properties

    @property
    def has_account(self) -> bool:
        """Managed account is connected."""
        return self.account_id is not None

    @property
    def is_payable(self) -> bool:
        """Eligible for automatic transfers, ignoring the balance."""
        return (
            self.is_active
            and self.payment_method == PaymentMethod.MANAGED_ACCOUNT
            and self.account_state.is_payable
        )

    @property
    def effective_commission_rate(self) -> int:
        """Commission percent left after the buyer discount."""
        return self.commission_rate - self.discount_rate

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Affiliate(id={self.id}, code={self.code}, "
            f"unpaid_balance={self.unpaid_balance}, "
            f"account_status={self._account_status})>"
        )


Index(
    "idx_affiliate_auto_payout",
    Affiliate.is_active,
    Affiliate.payment_method,
    Affiliate._account_status,
)
