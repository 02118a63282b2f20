"""
Unit tests for the affiliate account sync task.

Runs the task body against the test database and the fake processor.
"""

import pytest

from jobs.tasks.affiliate_payouts import _sync_affiliate_accounts_async
from payout_engine.config.settings import settings
from payout_engine.exceptions import ProcessorUnavailable
from payout_engine.models.enums import AccountStatus


class TestAccountSync:
    """Tests for the periodic account status sync."""

    @pytest.mark.asyncio
    async def test_sync_refreshes_every_account(
        self,
        session_factory,  # pylint: disable=redefined-outer-name
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        connect_account_helper,  # pylint: disable=redefined-outer-name
        fake_processor,  # pylint: disable=redefined-outer-name
        affiliate_repository,  # pylint: disable=redefined-outer-name
    ):
        """Each connected account picks up the processor's status."""
        first = await create_affiliate_helper()
        await connect_account_helper(first)
        second = await create_affiliate_helper()
        await connect_account_helper(second)
        fake_processor.set_account(
            second.account_id, AccountStatus.RESTRICTED, False
        )

        synced = await _sync_affiliate_accounts_async(
            session_factory, fake_processor
        )

        assert synced == 2
        stored = await affiliate_repository.refresh_by_id(second.id)
        assert stored.account_status == AccountStatus.RESTRICTED
        assert stored.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_unavailable_processor_is_raised_for_retry(
        self,
        monkeypatch,
        session_factory,  # pylint: disable=redefined-outer-name
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        connect_account_helper,  # pylint: disable=redefined-outer-name
        fake_processor,  # pylint: disable=redefined-outer-name
        affiliate_repository,  # pylint: disable=redefined-outer-name
    ):
        """Remaining accounts still sync, then the run fails so it is retried."""
        monkeypatch.setattr(settings, "status_refresh_retry_delay", 0)
        affiliates = []
        for _ in range(2):
            affiliate = await create_affiliate_helper()
            await connect_account_helper(affiliate)
            affiliates.append(affiliate)

        # Exhausts the retries of whichever account is synced first
        fake_processor.status_failures = settings.status_refresh_max_retries

        with pytest.raises(ProcessorUnavailable, match="1 of 2 accounts"):
            await _sync_affiliate_accounts_async(
                session_factory, fake_processor
            )

        synced = []
        for affiliate in affiliates:
            stored = await affiliate_repository.refresh_by_id(affiliate.id)
            synced.append(stored.last_sync_at is not None)
        assert sorted(synced) == [False, True]
