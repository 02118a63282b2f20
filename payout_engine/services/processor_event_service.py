"""
Processor event service.

Handles asynchronous notifications from the payment processor. Handler
errors are logged and never propagated back to the processor.
"""

from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.models.base import utcnow
from payout_engine.repositories.affiliate_repository import (
    AffiliateRepository,
)
from payout_engine.services.payment_account_service import (
    PaymentAccountService,
)
from payout_engine.services.payment_processor.base import PaymentProcessor
from payout_engine.services.payout_notifier import (
    PayoutNotice,
    PayoutNotifier,
    send_payout_notice,
    user_friendly_payout_error,
)

ACCOUNT_UPDATED = "account.updated"
TRANSFER_FAILED = "transfer.failed"


class ProcessorEventService:
    """Dispatch processor notifications."""

    def __init__(
        self,
        session: AsyncSession,
        processor: PaymentProcessor,
        notifier: PayoutNotifier | None = None,
    ) -> None:
        """Initialize processor event service."""
        self.session = session
        self.notifier = notifier
        self.affiliate_repo = AffiliateRepository(session)
        self.account_service = PaymentAccountService(session, processor)

    async def handle_event(
        self, event_type: str, payload: dict[str, Any]
    ) -> bool:
        """
        Handle one notification.

        Args:
            event_type: Processor event type
            payload: Event object

        Returns:
            True if the event was handled, False if ignored or failed
        """
        try:
            if event_type == ACCOUNT_UPDATED:
                return await self._handle_account_updated(payload)
            if event_type == TRANSFER_FAILED:
                return await self._handle_transfer_failed(payload)
        except Exception as e:
            await self.session.rollback()
            logger.exception(
                f"Error handling processor event {event_type}: {e}",
                extra={"event_type": event_type},
            )
            return False

        logger.debug(f"Ignoring processor event {event_type}")
        return False

    async def _handle_account_updated(self, payload: dict[str, Any]) -> bool:
        account_id = payload.get("id")
        if not account_id:
            logger.warning("account.updated without account id")
            return False

        logger.info(
            f"Payment account {account_id} updated",
            extra={"account_id": account_id},
        )
        state = await self.account_service.sync_account(account_id)
        return state is not None

    async def _handle_transfer_failed(self, payload: dict[str, Any]) -> bool:
        raw_error = payload.get("failure_message")
        destination = payload.get("destination")
        metadata = payload.get("metadata") or {}

        logger.error(
            f"Transfer {payload.get('id')} failed: "
            f"{raw_error or 'unknown reason'}",
            extra={
                "transfer_id": payload.get("id"),
                "amount": payload.get("amount"),
                "destination": destination,
                "affiliate_id": metadata.get("affiliate_id"),
            },
        )

        if not isinstance(destination, str):
            return False

        affiliate = await self.affiliate_repo.get_by_account_id(destination)
        if not affiliate:
            logger.warning(
                f"No affiliate found for transfer destination {destination}"
            )
            return False

        message = user_friendly_payout_error(raw_error)
        affiliate.last_payout_error = message
        affiliate.last_payout_error_at = utcnow()
        await self.session.commit()

        logger.info(
            f"Saved payout error for affiliate {affiliate.id}",
            extra={"affiliate_id": affiliate.id},
        )
        await send_payout_notice(
            self.notifier,
            PayoutNotice(
                affiliate_id=affiliate.id,
                user_id=affiliate.user_id,
                succeeded=False,
                amount=payload.get("amount"),
                transfer_id=payload.get("id"),
                error=message,
            ),
        )
        return True
