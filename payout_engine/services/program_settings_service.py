"""
Program settings service.

Admin-managed affiliate program settings. Values are read once per
operation into an immutable ProgramConfig and passed to the services that
need them.
"""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.config.settings import settings
from payout_engine.exceptions import InvalidAmount, InvalidRate
from payout_engine.repositories.program_settings_repository import (
    ProgramSettingsRepository,
)


@dataclass(frozen=True)
class ProgramConfig:
    """Snapshot of program settings used for one operation."""

    default_commission_rate: int = settings.default_commission_rate
    minimum_payout: int = settings.minimum_payout
    max_concurrent_payouts: int = settings.max_concurrent_payouts
    processor_timeout_seconds: float = settings.processor_timeout_seconds
    affiliate_code_length: int = settings.affiliate_code_length
    affiliate_code_retry_attempts: int = (
        settings.affiliate_code_retry_attempts
    )
    max_purchase_amount: int = settings.max_purchase_amount


class ProgramSettingsService:
    """Read and update affiliate program settings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize program settings service."""
        self.session = session
        self.repository = ProgramSettingsRepository(session)

    async def get_config(self) -> ProgramConfig:
        """
        Build the current ProgramConfig.

        Database values override environment defaults for the settings an
        admin can change.
        """
        row = await self.repository.get_settings()
        await self.session.commit()
        return ProgramConfig(
            default_commission_rate=row.default_commission_rate,
            minimum_payout=row.minimum_payout,
        )

    async def set_default_commission_rate(self, rate: int) -> ProgramConfig:
        """
        Set the commission rate given to new affiliates.

        Existing affiliates keep their own rate.

        Raises:
            InvalidRate: If rate is outside [0, 100]
        """
        if isinstance(rate, bool) or not isinstance(rate, int):
            raise InvalidRate("Commission rate must be an integer percent")
        if rate < 0 or rate > 100:
            raise InvalidRate(
                f"Commission rate must be between 0 and 100, got {rate}"
            )

        await self.repository.update_settings(default_commission_rate=rate)
        await self.session.commit()
        logger.info(f"Default commission rate set to {rate}%")
        return await self.get_config()

    async def set_minimum_payout(self, amount: int) -> ProgramConfig:
        """
        Set the automatic payout threshold (minor units).

        Raises:
            InvalidAmount: If amount is negative
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount("Minimum payout must be an integer")
        if amount < 0:
            raise InvalidAmount(
                f"Minimum payout must not be negative, got {amount}"
            )

        await self.repository.update_settings(minimum_payout=amount)
        await self.session.commit()
        logger.info(f"Minimum payout set to {amount}")
        return await self.get_config()
