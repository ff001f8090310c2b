"""
Concurrency control for seller funds.

Three layers serialize work on one aggregate:

1. Row locks: every mutation loads its aggregate with select_for_update()
   inside transaction.atomic() (see the repositories).
2. DistributedLock: Redis mutual exclusion across workers, taken per store
   around payout scheduling and per payout around execution, so the
   outbound transfer call (made outside any transaction) has one owner.
3. check_version: optimistic check for callers holding a copy of a payout
   read earlier (admin actions, reconciliation).

Usage:
    from funds.locks import DistributedLock, check_version, store_schedule_lock

    with store_schedule_lock(store_id):
        scheduler.schedule_for_store(store_id)

    with transaction.atomic():
        payout = check_version(SellerPayout, payout_id, expected_version=3)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from funds.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)

# Scheduling touches every eligible allocation of a store
SCHEDULE_LOCK_TTL = 60
SCHEDULE_LOCK_TIMEOUT = 5.0

# Covers the provider call, which is bounded by STRIPE_API_TIMEOUT_SECONDS
EXECUTE_LOCK_TTL = 120
EXECUTE_LOCK_TIMEOUT = 10.0


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - TTL releases locks held by crashed workers
        - Token-based ownership, so one worker cannot release another's lock
        - Blocking and non-blocking acquisition
        - Context manager support

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Lock TTL in seconds
        blocking: If True, acquire() polls until the lock is free or timeout
        timeout: Maximum wait time in seconds (blocking mode only)

    Example:
        with DistributedLock(f"payout:execute:{payout_id}", ttl=120):
            scheduler.execute(payout_id)
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError: If the lock could not be acquired
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while time.monotonic() < deadline:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """Release the lock if we hold it. Safe to call more than once."""
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


def store_schedule_lock(store_id: Any) -> DistributedLock:
    """Single-writer lock for payout scheduling of one store."""
    return DistributedLock(
        f"payout:schedule:{store_id}",
        ttl=SCHEDULE_LOCK_TTL,
        timeout=SCHEDULE_LOCK_TIMEOUT,
    )


def payout_execution_lock(payout_id: Any) -> DistributedLock:
    """Single-owner lock around one payout's transfer call."""
    return DistributedLock(
        f"payout:execute:{payout_id}",
        ttl=EXECUTE_LOCK_TTL,
        timeout=EXECUTE_LOCK_TIMEOUT,
    )


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Lock a record for update after verifying its version.

    Args:
        model_class: Model with a ``version`` field (OptimisticLockMixin)
        pk: Primary key of the record
        expected_version: Version the caller read

    Returns:
        The row-locked instance

    Raises:
        StaleRecordError: Version moved on since the caller read it
        NotFoundError: Record doesn't exist

    Note:
        Call inside the caller's transaction; the row lock lasts until it ends.
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )

        if instance is None:
            model_name = model_class.__name__
            current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
            if current is None:
                raise NotFoundError(
                    f"{model_name} {pk} not found",
                    error_code=f"{model_name.upper()}_NOT_FOUND",
                    details={"pk": str(pk)},
                )

            raise StaleRecordError(
                f"{model_name} {pk} has been modified "
                f"(expected version {expected_version}, current {current})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": current,
                },
            )

        return instance


__all__ = [
    "DistributedLock",
    "check_version",
    "payout_execution_lock",
    "store_schedule_lock",
]
