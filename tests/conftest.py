"""
Pytest configuration and shared fixtures.

Database fixtures run against TEST_DATABASE_URL, a temporary SQLite file
by default, with tables created from model metadata for every test.
"""

import itertools
import os
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from payout_engine.config.database import create_session_factory, init_db
from payout_engine.exceptions import (
    ProcessorError,
    ProcessorUnavailable,
)
from payout_engine.models import Base
from payout_engine.models.account_state import (
    AccountState,
    apply_account_state,
)
from payout_engine.models.affiliate import Affiliate
from payout_engine.models.enums import AccountStatus, PaymentMethod
from payout_engine.repositories import (
    AffiliatePayoutRepository,
    AffiliateReferralRepository,
    AffiliateRepository,
)
from payout_engine.services.payment_processor.base import (
    AccountSnapshot,
    TransferResult,
)
from payout_engine.services.payout_notifier import PayoutNotice
from payout_engine.services.program_settings_service import ProgramConfig
from payout_engine.utils.affiliate_lock import AffiliateLocks

# ==================== DATABASE FIXTURES ====================


@pytest.fixture
def test_database_url(tmp_path) -> str:
    """Database URL for one test."""
    return os.getenv(
        "TEST_DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'affiliates_test.db'}",
    )


@pytest_asyncio.fixture
async def async_engine(
    test_database_url: str,  # pylint: disable=redefined-outer-name
) -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine with a fresh schema."""
    engine, _ = create_session_factory(test_database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(
    async_engine: AsyncEngine,  # pylint: disable=redefined-outer-name
) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],  # pylint: disable=redefined-outer-name
) -> AsyncGenerator[AsyncSession, None]:
    """
    Create database session for tests.

    Yields:
        AsyncSession: Database session
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ==================== CONFIG FIXTURES ====================


@pytest.fixture
def program_config() -> ProgramConfig:
    """Deterministic program settings."""
    return ProgramConfig(
        default_commission_rate=20,
        minimum_payout=5000,
        max_concurrent_payouts=1,
        processor_timeout_seconds=5.0,
        affiliate_code_length=8,
        affiliate_code_retry_attempts=10,
        max_purchase_amount=100_000_000,
    )


@pytest.fixture
def affiliate_locks() -> AffiliateLocks:
    """Process-local lock registry private to one test."""
    return AffiliateLocks(poll_interval=0.005)


# ==================== PAYMENT PROCESSOR ====================


class FakePaymentProcessor:
    """In-memory payment processor for testing."""

    def __init__(self) -> None:
        self.accounts: dict[str, AccountSnapshot] = {}
        self.transfers: list[dict[str, Any]] = []
        self.deleted_accounts: list[str] = []
        # destination account id -> exception raised by create_transfer
        self.transfer_errors: dict[str, Exception] = {}
        # ProcessorUnavailable raised before status reads succeed
        self.status_failures = 0
        self.status_calls = 0
        self.fail_delete = False
        self._ids = itertools.count(1)

    def set_account(
        self,
        account_id: str,
        status: AccountStatus,
        payouts_enabled: bool = False,
    ) -> None:
        """Set what the processor reports for an account."""
        self.accounts[account_id] = AccountSnapshot(
            account_id=account_id,
            status=status,
            payouts_enabled=payouts_enabled,
        )

    async def create_account(
        self, email: str | None, metadata: dict[str, str]
    ) -> str:
        account_id = f"acct_test_{next(self._ids)}"
        self.set_account(account_id, AccountStatus.ONBOARDING)
        return account_id

    async def create_onboarding_link(
        self, account_id: str, return_url: str, refresh_url: str
    ) -> str:
        return f"https://connect.example.com/setup/{account_id}"

    async def exchange_oauth_code(self, authorization_code: str) -> str:
        if authorization_code == "invalid":
            raise ProcessorError("Invalid authorization code")
        account_id = f"acct_oauth_{authorization_code}"
        self.accounts.setdefault(
            account_id,
            AccountSnapshot(account_id, AccountStatus.ONBOARDING, False),
        )
        return account_id

    async def get_account_status(self, account_id: str) -> AccountSnapshot:
        self.status_calls += 1
        if self.status_failures > 0:
            self.status_failures -= 1
            raise ProcessorUnavailable("Processor temporarily unavailable")
        return self.accounts[account_id]

    async def create_transfer(
        self,
        amount: int,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> TransferResult:
        error = self.transfer_errors.get(destination)
        if error is not None:
            raise error

        transfer_id = f"tr_test_{next(self._ids)}"
        self.transfers.append(
            {
                "id": transfer_id,
                "amount": amount,
                "destination": destination,
                "idempotency_key": idempotency_key,
                "metadata": metadata or {},
            }
        )
        return TransferResult(
            transfer_id=transfer_id, amount=amount, destination=destination
        )

    async def delete_account(self, account_id: str) -> None:
        if self.fail_delete:
            raise ProcessorUnavailable("Processor temporarily unavailable")
        self.deleted_accounts.append(account_id)


@pytest.fixture
def fake_processor() -> FakePaymentProcessor:
    """
    Fake payment processor.

    Records transfers and lets tests script failures.
    """
    return FakePaymentProcessor()


class FakePayoutNotifier:
    """Records payout notices; set error to make delivery fail."""

    def __init__(self) -> None:
        self.sent: list[PayoutNotice] = []
        self.failed: list[PayoutNotice] = []
        self.error: Exception | None = None

    async def payout_sent(self, notice: PayoutNotice) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(notice)

    async def payout_failed(self, notice: PayoutNotice) -> None:
        if self.error is not None:
            raise self.error
        self.failed.append(notice)


@pytest.fixture
def fake_notifier() -> FakePayoutNotifier:
    """Payout notifier that records notices."""
    return FakePayoutNotifier()


class FakeRedis:
    """In-memory replacement for the Redis commands used by AffiliateLocks."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}
        self.unavailable = False

    def _check(self) -> None:
        if self.unavailable:
            raise ConnectionError("Redis connection refused")

    async def set(
        self,
        key: str,
        value: str,
        nx: bool = False,
        ex: int | None = None,
    ) -> bool | None:
        self._check()
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.expiry[key] = ex
        return True

    async def eval(
        self, script: str, numkeys: int, key: str, token: str
    ) -> int:
        self._check()
        if self.values.get(key) != token:
            return 0
        del self.values[key]
        self.expiry.pop(key, None)
        return 1

    async def exists(self, key: str) -> int:
        self._check()
        return int(key in self.values)


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Redis double for lock tests."""
    return FakeRedis()


# ==================== HELPER FIXTURES ====================

_user_ids = itertools.count(1000)


@pytest.fixture
def create_affiliate_helper(
    db_session: AsyncSession,  # pylint: disable=redefined-outer-name
) -> Callable[..., Any]:
    """Helper function to create affiliates dynamically."""

    async def _create_affiliate(
        user_id: int | None = None,
        code: str | None = None,
        commission_rate: int = 20,
        discount_rate: int = 0,
        payment_method: PaymentMethod = PaymentMethod.MANUAL_LINK,
        payment_link: str | None = "https://pay.example.com/affiliate",
        is_active: bool = True,
        **kwargs: Any,
    ) -> Affiliate:
        if user_id is None:
            user_id = next(_user_ids)
        if code is None:
            code = f"CODE{user_id}"

        affiliate = Affiliate(
            user_id=user_id,
            code=code,
            commission_rate=commission_rate,
            discount_rate=discount_rate,
            payment_method=payment_method,
            payment_link=payment_link,
            is_active=is_active,
            total_earnings=0,
            paid_amount=0,
            unpaid_balance=0,
            **kwargs,
        )
        db_session.add(affiliate)
        await db_session.commit()
        await db_session.refresh(affiliate)
        return affiliate

    return _create_affiliate


@pytest.fixture
def connect_account_helper(
    db_session: AsyncSession,  # pylint: disable=redefined-outer-name
    fake_processor: FakePaymentProcessor,  # pylint: disable=redefined-outer-name
) -> Callable[..., Any]:
    """Give an affiliate an active managed account."""

    async def _connect(
        affiliate: Affiliate,
        account_id: str | None = None,
        payouts_enabled: bool = True,
    ) -> Affiliate:
        account_id = account_id or f"acct_{affiliate.code.lower()}"
        affiliate.account_id = account_id
        affiliate.payment_method = PaymentMethod.MANAGED_ACCOUNT
        apply_account_state(
            affiliate, AccountState(AccountStatus.ONBOARDING, False)
        )
        apply_account_state(
            affiliate, AccountState(AccountStatus.ACTIVE, payouts_enabled)
        )
        fake_processor.set_account(
            account_id, AccountStatus.ACTIVE, payouts_enabled
        )
        await db_session.commit()
        await db_session.refresh(affiliate)
        return affiliate

    return _connect


# ==================== REPOSITORY FIXTURES ====================


@pytest.fixture
def affiliate_repository(
    db_session: AsyncSession,  # pylint: disable=redefined-outer-name
) -> AffiliateRepository:
    """Affiliate repository."""
    return AffiliateRepository(db_session)


@pytest.fixture
def referral_repository(
    db_session: AsyncSession,  # pylint: disable=redefined-outer-name
) -> AffiliateReferralRepository:
    """Affiliate referral repository."""
    return AffiliateReferralRepository(db_session)


@pytest.fixture
def payout_repository(
    db_session: AsyncSession,  # pylint: disable=redefined-outer-name
) -> AffiliatePayoutRepository:
    """Affiliate payout repository."""
    return AffiliatePayoutRepository(db_session)
