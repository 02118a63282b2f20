"""
Affiliate program settings model.

Global settings configurable via the admin panel.
Singleton pattern (only one row expected).
"""

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import Mapped, mapped_column

from payout_engine.models.base import Base, TimestampMixin


class ProgramSettings(TimestampMixin, Base):
    """Affiliate program settings model."""

    __tablename__ = "affiliate_program_settings"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Commission rate for newly enrolled affiliates (percent)
    default_commission_rate: Mapped[int] = mapped_column(
        Integer, nullable=False, default=20
    )

    # Smallest unpaid balance settled automatically (minor units)
    minimum_payout: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=5000
    )

    def __repr__(self) -> str:
        return (
            f"<ProgramSettings(default_commission_rate="
            f"{self.default_commission_rate}, "
            f"minimum_payout={self.minimum_payout})>"
        )
