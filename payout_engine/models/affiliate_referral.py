"""
AffiliateReferral model.

One attributed purchase and its commission snapshot.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payout_engine.models.base import Base, utcnow

if TYPE_CHECKING:
    from payout_engine.models.affiliate import Affiliate


class AffiliateReferral(Base):
    """
    AffiliateReferral entity.

    Created once per qualifying purchase. The commission and the rates it
    was computed from are frozen at attribution time; only is_paid changes
    afterwards.

    Attributes:
        id: Primary key
        affiliate_id: Foreign key to Affiliate
        purchase_id: External purchase id (unique, idempotency key)
        purchaser_id: Buyer's platform user id (optional)
        purchase_amount: Sale amount in minor units
        commission: Affiliate commission in minor units
        buyer_discount: Discount given to the buyer in minor units
        commission_rate: Commission percent at attribution time
        discount_rate: Discount percent at attribution time
        is_paid: Commission has been folded into a payout
        created_at: Attribution timestamp
    """

    __tablename__ = "affiliate_referrals"

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
    purchase_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    purchaser_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True
    )

    # Amounts (minor units)
    purchase_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission: Mapped[int] = mapped_column(BigInteger, nullable=False)
    buyer_discount: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    # Frozen rates
    commission_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_rate: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    is_paid: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    affiliate: Mapped["Affiliate"] = relationship(
        "Affiliate", back_populates="referrals"
    )

    @property
    def is_pending(self) -> bool:
        """Commission not yet paid out."""
        return not self.is_paid

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"AffiliateReferral(id={self.id}, "
            f"affiliate_id={self.affiliate_id}, "
            f"purchase_id={self.purchase_id}, "
            f"commission={self.commission}, "
            f"is_paid={self.is_paid})"
        )


# Composite indexes
Index(
    "idx_affiliate_referral_affiliate_created",
    AffiliateReferral.affiliate_id,
    AffiliateReferral.created_at,
)
Index(
    "idx_affiliate_referral_affiliate_paid",
    AffiliateReferral.affiliate_id,
    AffiliateReferral.is_paid,
)
