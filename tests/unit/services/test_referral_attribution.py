"""
Unit tests for ReferralService.

Tests purchase attribution, commission freezing and idempotent credit.
"""

import pytest

from payout_engine.exceptions import (
    InvalidAmount,
    InvalidRate,
    SelfReferral,
    UnknownAffiliate,
)
from payout_engine.services.referral_service import (
    AFFILIATE_COOKIE_NAME,
    ReferralService,
    affiliate_cookie_max_age,
    build_affiliate_link,
)


@pytest.fixture
def referral_service(
    db_session,  # pylint: disable=redefined-outer-name
    affiliate_locks,  # pylint: disable=redefined-outer-name
) -> ReferralService:
    """Referral service with a private lock registry."""
    return ReferralService(db_session, locks=affiliate_locks)


class TestAttribution:
    """Tests for attributing purchases."""

    @pytest.mark.asyncio
    async def test_attribute_credits_commission(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
    ):
        """A purchase creates a referral and credits the ledger."""
        affiliate = await create_affiliate_helper(
            code="PARTNER1", commission_rate=20, discount_rate=5
        )

        result = await referral_service.attribute(
            purchase_id="pi_001",
            affiliate_code="PARTNER1",
            purchase_amount=10000,
            purchaser_id=42,
        )

        assert result.created is True
        referral = result.referral
        assert referral.affiliate_id == affiliate.id
        assert referral.commission == 1500
        assert referral.buyer_discount == 500
        assert referral.commission_rate == 20
        assert referral.discount_rate == 5
        assert referral.is_paid is False

        await db_session.refresh(affiliate)
        assert affiliate.total_earnings == 1500
        assert affiliate.unpaid_balance == 1500

    @pytest.mark.asyncio
    async def test_attribute_is_idempotent(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
        referral_repository,  # pylint: disable=redefined-outer-name
    ):
        """The same purchase id is credited once."""
        affiliate = await create_affiliate_helper(code="PARTNER2")

        first = await referral_service.attribute(
            "pi_002", "PARTNER2", 10000
        )
        second = await referral_service.attribute(
            "pi_002", "PARTNER2", 10000
        )

        assert first.created is True
        assert second.created is False
        assert second.referral.id == first.referral.id

        await db_session.refresh(affiliate)
        assert affiliate.total_earnings == 2000
        assert await referral_repository.count(affiliate_id=affiliate.id) == 1

    @pytest.mark.asyncio
    async def test_unknown_code(
        self,
        referral_service,  # pylint: disable=redefined-outer-name
        referral_repository,  # pylint: disable=redefined-outer-name
    ):
        """An unknown code is rejected and nothing is stored."""
        with pytest.raises(UnknownAffiliate):
            await referral_service.attribute("pi_003", "NOPE", 10000)

        assert await referral_repository.get_by_purchase_id("pi_003") is None

    @pytest.mark.asyncio
    async def test_inactive_affiliate_earns_nothing(
        self,
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
    ):
        """Codes of deactivated affiliates do not resolve."""
        await create_affiliate_helper(code="SLEEPY", is_active=False)

        with pytest.raises(UnknownAffiliate):
            await referral_service.attribute("pi_004", "SLEEPY", 10000)

    @pytest.mark.asyncio
    async def test_self_referral_rejected(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
    ):
        """Buyers cannot earn commission on their own purchases."""
        affiliate = await create_affiliate_helper(user_id=555, code="MYSELF")

        with pytest.raises(SelfReferral):
            await referral_service.attribute(
                "pi_005", "MYSELF", 10000, purchaser_id=555
            )

        await db_session.refresh(affiliate)
        assert affiliate.total_earnings == 0

    @pytest.mark.asyncio
    async def test_frozen_rates_take_precedence(
        self,
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
    ):
        """Rates captured at checkout are used instead of current ones."""
        await create_affiliate_helper(
            code="CHANGED", commission_rate=30, discount_rate=10
        )

        result = await referral_service.attribute(
            "pi_006",
            "CHANGED",
            10000,
            frozen_commission_rate=20,
            frozen_discount_rate=5,
        )

        assert result.referral.commission == 1500
        assert result.referral.buyer_discount == 500
        assert result.referral.commission_rate == 20

    @pytest.mark.asyncio
    async def test_invalid_frozen_rates(
        self,
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
    ):
        """A discount above the commission is rejected."""
        await create_affiliate_helper(code="BADRATE")

        with pytest.raises(InvalidRate):
            await referral_service.attribute(
                "pi_007",
                "BADRATE",
                10000,
                frozen_commission_rate=10,
                frozen_discount_rate=15,
            )

    @pytest.mark.asyncio
    async def test_zero_amount_purchase(
        self,
        db_session,  # pylint: disable=redefined-outer-name
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
    ):
        """Free purchases are recorded without a ledger credit."""
        affiliate = await create_affiliate_helper(code="FREEBIE")

        result = await referral_service.attribute("pi_008", "FREEBIE", 0)

        assert result.created is True
        assert result.referral.commission == 0

        await db_session.refresh(affiliate)
        assert affiliate.total_earnings == 0
        assert affiliate.unpaid_balance == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [-1, 100_000_001])
    async def test_invalid_amount(
        self,
        create_affiliate_helper,  # pylint: disable=redefined-outer-name
        referral_service,  # pylint: disable=redefined-outer-name
        amount,
    ):
        """Negative and oversized amounts are rejected."""
        await create_affiliate_helper(code="AMOUNTS")

        with pytest.raises(InvalidAmount):
            await referral_service.attribute("pi_009", "AMOUNTS", amount)


class TestAffiliateLinks:
    """Tests for link and cookie helpers."""

    def test_build_affiliate_link(self):
        """Links carry the code as the ref parameter."""
        assert build_affiliate_link("https://courses.example.com/", "ABC123") == (
            "https://courses.example.com/purchase?ref=ABC123"
        )

    def test_cookie_lifetime(self):
        """Cookie lifetime is expressed in seconds."""
        assert AFFILIATE_COOKIE_NAME == "affiliate_ref"
        assert affiliate_cookie_max_age(30) == 30 * 24 * 60 * 60
