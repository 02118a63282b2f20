"""
Program settings repository.
"""

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.config.settings import settings as app_settings
from payout_engine.models.program_settings import ProgramSettings


class ProgramSettingsRepository:
    """Repository for ProgramSettings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        self.session = session

    async def get_settings(self) -> ProgramSettings:
        """
        Get program settings (singleton).
        Creates the row from environment defaults if it does not exist.
        """
        stmt = select(ProgramSettings).order_by(ProgramSettings.id).limit(1)
        result = await self.session.execute(stmt)
        settings = result.scalar_one_or_none()

        if not settings:
            logger.info("Initializing default affiliate program settings")
            settings = ProgramSettings(
                default_commission_rate=app_settings.default_commission_rate,
                minimum_payout=app_settings.minimum_payout,
            )
            self.session.add(settings)
            await self.session.flush()
            await self.session.refresh(settings)

        return settings

    async def update_settings(
        self,
        default_commission_rate: int | None = None,
        minimum_payout: int | None = None,
    ) -> ProgramSettings:
        """
        Update program settings.
        """
        settings = await self.get_settings()

        if default_commission_rate is not None:
            settings.default_commission_rate = default_commission_rate
        if minimum_payout is not None:
            settings.minimum_payout = minimum_payout

        await self.session.flush()
        await self.session.refresh(settings)

        logger.info(
            "Affiliate program settings updated",
            extra={
                "default_commission_rate": settings.default_commission_rate,
                "minimum_payout": settings.minimum_payout,
            },
        )
        return settings
