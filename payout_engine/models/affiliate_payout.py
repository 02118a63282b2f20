"""
AffiliatePayout model.

Append-only record of money moved (or attempted) to an affiliate.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payout_engine.models.base import Base, utcnow
from payout_engine.models.enums import PaymentMethod, PayoutStatus

if TYPE_CHECKING:
    from payout_engine.models.affiliate import Affiliate


class AffiliatePayout(Base):
    """
    AffiliatePayout entity.

    A failed attempt gets its own row; a completed payout is never edited.
    Automatic payouts start as pending and are resolved exactly once; an
    affiliate has at most one pending payout at a time.

    Attributes:
        id: Primary key
        affiliate_id: Foreign key to Affiliate
        amount: Payout amount in minor units
        payment_method: Method used for this payout
        transaction_id: Processor transfer id or manual reference
        status: pending, completed or failed
        notes: Operator notes or processor error message
        paid_by: Operator user id (None for automatic payouts)
        paid_at: When the money moved
        created_at: Creation timestamp
    """

    __tablename__ = "affiliate_payouts"

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id"),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            length=32,
        ),
        nullable=False,
    )
    transaction_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    status: Mapped[PayoutStatus] = mapped_column(
        SQLEnum(
            PayoutStatus,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            length=16,
        ),
        nullable=False,
        default=PayoutStatus.PENDING,
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Timestamps
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    affiliate: Mapped["Affiliate"] = relationship(
        "Affiliate", back_populates="payouts"
    )

    @property
    def is_pending(self) -> bool:
        """Outcome not recorded yet."""
        return self.status == PayoutStatus.PENDING

    @property
    def idempotency_key(self) -> str:
        """Key sent with the processor transfer for this payout."""
        return f"payout-{self.id}"

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"AffiliatePayout(id={self.id}, "
            f"affiliate_id={self.affiliate_id}, "
            f"amount={self.amount}, "
            f"status={self.status})"
        )


Index(
    "idx_affiliate_payout_affiliate_paid",
    AffiliatePayout.affiliate_id,
    AffiliatePayout.paid_at,
)

# At most one unresolved automatic payout per affiliate
Index(
    "uq_affiliate_payout_one_pending",
    AffiliatePayout.affiliate_id,
    unique=True,
    postgresql_where=text("status = 'pending'"),
    sqlite_where=text("status = 'pending'"),
)
