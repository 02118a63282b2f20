"""
Per-affiliate locks.

Serializes ledger-mutating operations for one affiliate. Different
affiliates never wait on each other.

With a Redis client the lock is shared by every worker thread and process
(SET NX EX with an owner token). Without one it is shared by every thread
and event loop of the process. The guarded UPDATE statements in
LedgerService and the one-pending-payout index keep the data consistent
if a lock is ever lost.
"""

import asyncio
import threading
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger

from payout_engine.config.settings import settings
from payout_engine.exceptions import AffiliateBusy

# Delete the key only if this holder still owns it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class AffiliateLocks:
    """
    Registry of per-affiliate locks.

    Locks are not reentrant: a service takes the lock once per operation
    and the ledger never takes it itself.

    Example:
        async with affiliate_locks.lock(affiliate.id):
            await ledger.credit(affiliate.id, commission)
    """

    def __init__(
        self,
        redis_client: Any | None = None,
        lock_timeout: int | None = None,
        wait_timeout: float | None = None,
        poll_interval: float = 0.05,
        key_prefix: str = "affiliate-payouts:lock:affiliate",
    ) -> None:
        """
        Initialize lock registry.

        Args:
            redis_client: redis.asyncio client; process-local locks if None
            lock_timeout: Seconds before a Redis lock expires on its own
                (defaults to AFFILIATE_LOCK_TIMEOUT_SECONDS)
            wait_timeout: Seconds to wait for a busy affiliate
                (defaults to AFFILIATE_LOCK_WAIT_SECONDS)
            poll_interval: Seconds between acquire attempts
            key_prefix: Redis key prefix
        """
        self.redis = redis_client
        self.lock_timeout = (
            lock_timeout or settings.affiliate_lock_timeout_seconds
        )
        self.wait_timeout = (
            wait_timeout
            if wait_timeout is not None
            else settings.affiliate_lock_wait_seconds
        )
        self.poll_interval = poll_interval
        self.key_prefix = key_prefix

        self._guard = threading.Lock()
        self._local: dict[int, threading.Lock] = {}
        self._users: dict[int, int] = {}

    def _key(self, affiliate_id: int) -> str:
        return f"{self.key_prefix}:{affiliate_id}"

    def __len__(self) -> int:
        """Number of affiliates with a process-local lock in use."""
        with self._guard:
            return len(self._local)

    # ------------------------------------------------------------------
    # Process-local locks
    # ------------------------------------------------------------------

    def _checkout(self, affiliate_id: int) -> threading.Lock:
        with self._guard:
            lock = self._local.get(affiliate_id)
            if lock is None:
                lock = threading.Lock()
                self._local[affiliate_id] = lock
                self._users[affiliate_id] = 0
            self._users[affiliate_id] += 1
            return lock

    def _checkin(self, affiliate_id: int) -> None:
        with self._guard:
            self._users[affiliate_id] -= 1
            if self._users[affiliate_id] == 0:
                del self._users[affiliate_id]
                del self._local[affiliate_id]

    async def _acquire_local(self, affiliate_id: int) -> threading.Lock:
        lock = self._checkout(affiliate_id)
        deadline = time.monotonic() + self.wait_timeout
        try:
            if not lock.acquire(blocking=False):
                logger.debug(
                    f"Waiting for affiliate lock {affiliate_id}",
                    extra={"affiliate_id": affiliate_id},
                )
                while not lock.acquire(blocking=False):
                    if time.monotonic() >= deadline:
                        raise AffiliateBusy(
                            f"Affiliate {affiliate_id} is locked by another "
                            f"operation (waited {self.wait_timeout}s)"
                        )
                    await asyncio.sleep(self.poll_interval)
        except BaseException:
            self._checkin(affiliate_id)
            raise
        return lock

    def _release_local(self, affiliate_id: int, lock: threading.Lock) -> None:
        lock.release()
        self._checkin(affiliate_id)

    # ------------------------------------------------------------------
    # Redis locks
    # ------------------------------------------------------------------

    async def _acquire_redis(self, affiliate_id: int) -> str:
        key = self._key(affiliate_id)
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.wait_timeout

        while True:
            acquired = await self.redis.set(
                key,
                token,
                nx=True,  # Only set if not exists
                ex=self.lock_timeout,  # Expire if the holder dies
            )
            if acquired:
                logger.debug(f"Distributed lock acquired: {key}")
                return token

            if time.monotonic() >= deadline:
                raise AffiliateBusy(
                    f"Affiliate {affiliate_id} is locked by another "
                    f"operation (waited {self.wait_timeout}s)"
                )
            await asyncio.sleep(self.poll_interval)

    async def _release_redis(self, affiliate_id: int, token: str) -> None:
        key = self._key(affiliate_id)
        try:
            released = await self.redis.eval(_RELEASE_SCRIPT, 1, key, token)
        except Exception as e:
            # The key expires on its own after lock_timeout
            logger.warning(f"Failed to release distributed lock {key}: {e}")
            return
        if not released:
            logger.warning(
                f"Distributed lock {key} expired before release",
                extra={"affiliate_id": affiliate_id},
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def is_locked(self, affiliate_id: int) -> bool:
        """Check whether an operation currently holds the lock."""
        if self.redis is not None:
            return await self.redis.exists(self._key(affiliate_id)) == 1
        with self._guard:
            lock = self._local.get(affiliate_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def lock(self, affiliate_id: int) -> AsyncIterator[None]:
        """
        Hold the affiliate's lock for the duration of the block.

        Falls back to the process-local lock if Redis is unreachable.

        Args:
            affiliate_id: Affiliate ID

        Raises:
            AffiliateBusy: Lock not acquired within wait_timeout
        """
        if self.redis is not None:
            try:
                token = await self._acquire_redis(affiliate_id)
            except AffiliateBusy:
                raise
            except Exception as e:
                logger.warning(
                    f"Redis lock failed for affiliate {affiliate_id}, "
                    f"falling back to local lock: {e}",
                    extra={"affiliate_id": affiliate_id},
                )
            else:
                try:
                    yield
                finally:
                    await self._release_redis(affiliate_id, token)
                return

        lock = await self._acquire_local(affiliate_id)
        try:
            yield
        finally:
            self._release_local(affiliate_id, lock)


# Process-wide registry
affiliate_locks = AffiliateLocks()
