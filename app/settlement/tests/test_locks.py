"""
Tests for distributed and optimistic locking utilities.

DistributedLock runs against the mock_redis fixture; check_version runs
against the test database.
"""

import uuid

import pytest

from settlement.exceptions import LockAcquisitionError, StaleRecordError
from settlement.locks import (
    DistributedLock,
    check_version,
    onboarding_lock,
    purchase_refund_lock,
)
from settlement.models import PayeeAccount


class TestDistributedLock:
    """Tests for DistributedLock class."""

    def test_acquire_success(self, mock_redis):
        lock = DistributedLock("test:key", ttl=30, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held is True
        call_args = mock_redis.set.call_args
        assert call_args[0][0] == "lock:test:key"
        assert call_args[1]["nx"] is True
        assert call_args[1]["ex"] == 30

    def test_each_acquisition_uses_a_unique_token(self, mock_redis):
        lock1 = DistributedLock("test:key1", ttl=30, blocking=False)
        lock2 = DistributedLock("test:key2", ttl=30, blocking=False)

        lock1.acquire()
        lock2.acquire()

        assert lock1._token != lock2._token

    def test_non_blocking_raises_when_held(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("test:key", ttl=30, blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in str(exc_info.value)
        assert exc_info.value.details["key"] == "lock:test:key"
        assert lock.is_held is False

    def test_blocking_waits_and_acquires(self, mock_redis, mocker):
        mocker.patch("settlement.locks.time.sleep")
        mock_redis.set.side_effect = [False, False, True]

        lock = DistributedLock("test:key", ttl=30, blocking=True, timeout=5.0)

        assert lock.acquire() is True
        assert mock_redis.set.call_count == 3

    def test_blocking_timeout_raises(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("test:key", ttl=30, blocking=True, timeout=0.1)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "within 0.1s" in str(exc_info.value)
        assert exc_info.value.details["timeout"] == 0.1

    def test_release_runs_compare_and_delete(self, mock_redis):
        lock = DistributedLock("test:key", ttl=30, blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True
        assert lock.is_held is False
        mock_redis.eval.assert_called_once_with(
            DistributedLock.RELEASE_SCRIPT, 1, "lock:test:key", token
        )

    def test_release_returns_false_when_token_expired(self, mock_redis):
        mock_redis.eval.return_value = 0
        lock = DistributedLock("test:key", ttl=30, blocking=False)
        lock.acquire()

        assert lock.release() is False

    def test_release_without_acquire_returns_false(self, mock_redis):
        lock = DistributedLock("test:key", ttl=30, blocking=False)

        assert lock.release() is False
        mock_redis.eval.assert_not_called()

    def test_context_manager_releases_on_exception(self, mock_redis):
        with pytest.raises(RuntimeError):
            with DistributedLock("test:key", blocking=False) as lock:
                assert lock.is_held
                raise RuntimeError("boom")

        assert lock.is_held is False
        mock_redis.eval.assert_called_once()

    def test_default_ttl_from_settings(self, settings, mock_redis):
        settings.SETTLEMENT_LOCK_TTL_SECONDS = 45

        lock = DistributedLock("test:key")

        assert lock.ttl == 45


class TestLockFactories:
    def test_onboarding_lock_key(self):
        lock = onboarding_lock(42)

        assert lock.key == "lock:settlement:onboarding:42"
        assert lock.ttl == 60

    def test_purchase_refund_lock_key(self):
        purchase_id = uuid.uuid4()
        lock = purchase_refund_lock(purchase_id)

        assert lock.key == f"lock:settlement:refund:purchase:{purchase_id}"


@pytest.mark.django_db
class TestCheckVersion:
    def test_returns_locked_instance_when_version_matches(self, payee_account):
        instance = check_version(PayeeAccount, payee_account.id, payee_account.version)

        assert instance.id == payee_account.id

    def test_raises_when_version_changed(self, payee_account):
        seen_version = payee_account.version
        payee_account.email = "changed@example.com"
        payee_account.save()

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(PayeeAccount, payee_account.id, seen_version)

        assert exc_info.value.details["expected_version"] == seen_version
        assert exc_info.value.details["current_version"] == seen_version + 1

    def test_raises_does_not_exist_for_unknown_pk(self, db):
        with pytest.raises(PayeeAccount.DoesNotExist):
            check_version(PayeeAccount, uuid.uuid4(), 1)
