"""
Concurrency control for settlement operations.

Three mechanisms, used at different seams:

1. **Row locks** (select_for_update inside transaction.atomic)
   Every ledger, refund and dispute mutation locks the rows it touches,
   so webhook handlers for the same purchase serialize while handlers
   for different purchases run in parallel.

2. **Distributed locks** (DistributedLock)
   Redis-based mutual exclusion for multi-step operations that straddle
   a Stripe call and therefore cannot hold a database transaction open:
   payee onboarding and refund requests.

3. **Optimistic checks** (check_version)
   For callers that read an entity, do work, then write it back.

Usage:
    from settlement.locks import DistributedLock, purchase_refund_lock

    with purchase_refund_lock(purchase.id):
        ...  # reserve balance, call Stripe, record result
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings
from django.db import models, transaction

from django_redis import get_redis_connection

from settlement.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    The lock value is a random token so only the holder can release it. The TTL bounds how long a crashed worker can block others.

    Example:
        with DistributedLock("settlement:onboarding:42", ttl=60):
            create_account()

        lock = DistributedLock("settlement:refund:purchase:abc", blocking=False)
        try:
            with lock:
                issue_refund()
        except LockAcquisitionError:
            return Response(status=409)

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    POLL_INTERVAL_SECONDS = 0.05

    def __init__(
        self,
        key: str,
        ttl: int | None = None,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl or getattr(settings, "SETTLEMENT_LOCK_TTL_SECONDS", 30)
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

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: If the lock is held elsewhere (non-blocking)
                or could not be acquired within timeout (blocking)
        """
        token = str(uuid_module.uuid4())
        redis = self._get_redis()

        deadline = time.monotonic() + self.timeout
        while True:
            if redis.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if not self.blocking:
                raise LockAcquisitionError(
                    f"Lock '{self.key}' is already held",
                    details={"key": self.key},
                )
            if time.monotonic() >= deadline:
                raise LockAcquisitionError(
                    f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                    details={"key": self.key, "timeout": self.timeout},
                )
            time.sleep(self.POLL_INTERVAL_SECONDS)

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if lock was released, False if we didn't hold it
        """
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


def onboarding_lock(owner_id: Any) -> DistributedLock:
    """Lock serializing payee onboarding for one owner."""
    return DistributedLock(f"settlement:onboarding:{owner_id}", ttl=60)


def purchase_refund_lock(purchase_id: Any) -> DistributedLock:
    """Lock serializing refund requests against one purchase."""
    return DistributedLock(f"settlement:refund:purchase:{purchase_id}", ttl=60)


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

    Must be called inside an outer transaction for the row lock to be
    held until the caller's write.

    Raises:
        StaleRecordError: If the version changed since the caller read it
        model_class.DoesNotExist: If the record doesn't exist
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

        current = model_class.objects.get(pk=pk)
        model_name = model_class.__name__
        raise StaleRecordError(
            f"{model_name} {pk} has been modified "
            f"(expected version {expected_version}, current {current.version})",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current.version,
            },
        )


__all__ = [
    "DistributedLock",
    "check_version",
    "onboarding_lock",
    "purchase_refund_lock",
]
