"""
Concurrency control for the refund workflow.

Two mechanisms, used together:

1. DistributedLock - Redis mutual exclusion with a TTL. Serializes gateway
   processing for one cancellation request across web and worker processes.
2. check_version - optimistic version check plus select_for_update for
   single-row updates by callers that hold a version number.

Usage:
    from cancellations.locks import DistributedLock, refund_lock

    with refund_lock(request.id):
        PaymentGatewayService.process_refund(params)

    with transaction.atomic():
        request = check_version(CancellationRequest, request_id, expected_version=4)
        request.approve(by=admin)
        request.save()
"""

from __future__ import annotations

import logging
import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings
from django.db import models, transaction
from django_redis import get_redis_connection
from redis.exceptions import RedisError

from cancellations.exceptions import LockAcquisitionError, StaleRecordError
from core.exceptions import NotFoundError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=models.Model)

REFUND_LOCK_TTL = getattr(settings, "CANCELLATION_REFUND_LOCK_TTL", 120)
REFUND_LOCK_TIMEOUT = getattr(settings, "CANCELLATION_REFUND_LOCK_TIMEOUT", 10.0)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis lock with TTL and token ownership.

    The lock value is a random token, so only the holder can release or
    extend it. The TTL frees the lock if the holder crashes.

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds before the lock expires on its own
        blocking: Wait for the lock instead of failing immediately
        timeout: Maximum wait in seconds when blocking

    Raises:
        LockAcquisitionError: From acquire() when the lock isn't obtained
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

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
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while time.monotonic() < deadline:
                if self._try_acquire(redis):
                    return True
                time.sleep(self.POLL_INTERVAL)

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
        try:
            return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))
        except RedisError as e:
            self._token = None
            raise LockAcquisitionError(
                f"Lock backend unavailable for '{self.key}': {e}",
                error_code="LOCK_BACKEND_UNAVAILABLE",
                details={"key": self.key},
            ) from e

    def release(self) -> bool:
        """
        Release the lock if held. Safe to call more than once.

        A Redis error is logged and the lock is left to expire with its TTL.
        """
        if self._token is None:
            return False

        token, self._token = self._token, None
        try:
            result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, token)
        except RedisError as e:
            logger.warning(
                f"Could not release lock, it will expire in {self.ttl}s: {e}",
                extra={"key": self.key},
            )
            return False
        return bool(result)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the TTL (to ``ttl`` or the original TTL) if the lock is held."""
        if self._token is None:
            return False

        result = self._get_redis().eval(
            self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl
        )
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


def refund_lock(cancellation_request_id: Any, blocking: bool = True) -> DistributedLock:
    """Lock guarding gateway processing for one cancellation request."""
    return DistributedLock(
        f"cancellation:refund:{cancellation_request_id}",
        ttl=REFUND_LOCK_TTL,
        blocking=blocking,
        timeout=REFUND_LOCK_TIMEOUT,
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
    Lock a row for update after verifying its version.

    Args:
        model_class: Model with a ``version`` field
        pk: Primary key of the row
        expected_version: Version the caller last read

    Returns:
        The locked instance

    Raises:
        NotFoundError: If the row doesn't exist
        StaleRecordError: If the row was modified since the caller read it

    Note:
        Call inside transaction.atomic(); the row lock is held until the
        outer transaction ends.
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

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


__all__ = [
    "REFUND_LOCK_TIMEOUT",
    "REFUND_LOCK_TTL",
    "DistributedLock",
    "check_version",
    "refund_lock",
]
