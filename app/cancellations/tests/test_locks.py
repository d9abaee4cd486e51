"""
Tests for the refund lock and the optimistic version check.

Redis is the MagicMock from the mock_redis_lock fixture.
"""

from unittest.mock import patch
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cancellations.exceptions import LockAcquisitionError, StaleRecordError
from cancellations.locks import DistributedLock, check_version, refund_lock
from cancellations.models import CancellationRequest
from core.exceptions import NotFoundError


class TestDistributedLock:
    def test_acquire_sets_key_with_ttl(self, mock_redis_lock):
        lock = DistributedLock("cancellation:refund:abc", ttl=120, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held

        args, kwargs = mock_redis_lock.set.call_args
        assert args[0] == "lock:cancellation:refund:abc"
        assert kwargs == {"nx": True, "ex": 120}

    def test_tokens_differ_between_holders(self, mock_redis_lock):
        first = DistributedLock("a", blocking=False)
        second = DistributedLock("b", blocking=False)
        first.acquire()
        second.acquire()

        assert first._token != second._token

    def test_non_blocking_fails_fast_when_held(self, mock_redis_lock):
        mock_redis_lock.set.return_value = False
        lock = DistributedLock("busy", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details["key"] == "lock:busy"
        assert not lock.is_held
        assert mock_redis_lock.set.call_count == 1

    @patch("cancellations.locks.time.sleep")
    def test_blocking_polls_until_free(self, mock_sleep, mock_redis_lock):
        mock_redis_lock.set.side_effect = [False, False, True]

        assert DistributedLock("busy", timeout=5.0).acquire() is True
        assert mock_redis_lock.set.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("cancellations.locks.time.sleep")
    def test_blocking_gives_up_after_timeout(self, mock_sleep, mock_redis_lock):
        mock_redis_lock.set.return_value = False
        lock = DistributedLock("busy", timeout=0.01)

        with patch("cancellations.locks.time.monotonic", side_effect=[0.0, 0.0, 1.0]):
            with pytest.raises(LockAcquisitionError):
                lock.acquire()

        assert not lock.is_held

    def test_redis_error_on_acquire_is_a_lock_failure(self, mock_redis_lock):
        mock_redis_lock.set.side_effect = RedisConnectionError("Connection refused")
        lock = DistributedLock("key")

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.error_code == "LOCK_BACKEND_UNAVAILABLE"
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)
        assert not lock.is_held

    def test_redis_error_on_release_leaves_lock_to_expire(self, mock_redis_lock):
        lock = DistributedLock("key", blocking=False)
        lock.acquire()
        mock_redis_lock.eval.side_effect = RedisConnectionError("Connection reset")

        assert lock.release() is False
        assert not lock.is_held

    def test_release_only_with_own_token(self, mock_redis_lock):
        lock = DistributedLock("key", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True
        mock_redis_lock.eval.assert_called_once_with(
            DistributedLock.RELEASE_SCRIPT, 1, "lock:key", token
        )
        assert lock.release() is False

    def test_extend_resets_ttl(self, mock_redis_lock):
        lock = DistributedLock("key", ttl=30, blocking=False)
        assert lock.extend() is False

        lock.acquire()
        assert lock.extend(ttl=90) is True
        assert mock_redis_lock.eval.call_args.args[-1] == 90

    def test_context_manager_releases_on_error(self, mock_redis_lock):
        with pytest.raises(RuntimeError):
            with refund_lock("req-1", blocking=False):
                raise RuntimeError("gateway exploded")

        mock_redis_lock.eval.assert_called_once()
        assert mock_redis_lock.eval.call_args.args[2] == "lock:cancellation:refund:req-1"


@pytest.mark.integration
@pytest.mark.django_db
class TestCheckVersion:
    def test_returns_row_at_expected_version(self, pending_request):
        locked = check_version(CancellationRequest, pending_request.id, pending_request.version)

        assert locked.id == pending_request.id

    def test_stale_version(self, pending_request):
        current = pending_request.version
        pending_request.cancellation_reason_other = "edited elsewhere"
        pending_request.save()

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(CancellationRequest, pending_request.id, current)

        assert exc_info.value.error_code == "STALE_RECORD"
        assert exc_info.value.details["expected_version"] == current
        assert exc_info.value.details["current_version"] == current + 1

    def test_missing_row(self):
        with pytest.raises(NotFoundError) as exc_info:
            check_version(CancellationRequest, uuid4(), 1)

        assert exc_info.value.error_code == "CANCELLATIONREQUEST_NOT_FOUND"
