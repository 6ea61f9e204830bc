"""
Pytest fixtures shared by all settlement tests.

Provides users, payee accounts, purchases in each ledger status, a mocked
Stripe adapter and a mocked Redis connection for the distributed locks.

Usage:
    def test_refund(completed_purchase, mock_stripe):
        manager = RefundManager(mock_stripe)
        ...
"""

from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient

from settlement.adapters import StripeAdapter
from settlement.state_machines import PurchaseStatus, VerificationStatus
from settlement.tests.factories import (
    AdminUserFactory,
    CompletedPurchaseFactory,
    PayeeAccountFactory,
    PurchaseFactory,
    UserFactory,
)


# =============================================================================
# Infrastructure Mocks
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """
    Mock Redis client behind DistributedLock.

    Every lock is free by default; set mock_redis.set.return_value = False
    to simulate a held lock.
    """
    mock_client = MagicMock()
    mock_client.set.return_value = True
    mock_client.get.return_value = None
    mock_client.delete.return_value = 1
    mock_client.eval.return_value = 1

    mocker.patch("settlement.locks.get_redis_connection", return_value=mock_client)
    return mock_client


@pytest.fixture
def mock_stripe():
    """StripeAdapter stand-in; configure return values per test."""
    return MagicMock(spec=StripeAdapter)


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def user(db):
    """Create a buyer."""
    return UserFactory()


@pytest.fixture
def developer(db):
    """Create a developer who owns a payee account."""
    return UserFactory()


@pytest.fixture
def staff_user(db):
    """Create a platform administrator."""
    return AdminUserFactory()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def buyer_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def developer_client(developer):
    client = APIClient()
    client.force_authenticate(user=developer)
    return client


@pytest.fixture
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


# =============================================================================
# Payee Accounts
# =============================================================================


@pytest.fixture
def payee_account(db, developer):
    """Create a verified payee account."""
    return PayeeAccountFactory(owner=developer)


@pytest.fixture
def pending_payee_account(db, developer):
    """Create a payee account still in onboarding."""
    return PayeeAccountFactory(
        owner=developer,
        charges_enabled=False,
        payouts_enabled=False,
        details_submitted=False,
        verification_status=VerificationStatus.PENDING,
    )


# =============================================================================
# Purchases
# =============================================================================


@pytest.fixture
def pending_purchase(db, user, payee_account):
    """Create a pending $100 purchase with an attached PaymentIntent."""
    return PurchaseFactory(buyer=user, payee=payee_account)


@pytest.fixture
def completed_purchase(db, user, payee_account):
    """Create a completed $100 purchase."""
    return CompletedPurchaseFactory(buyer=user, payee=payee_account)


@pytest.fixture
def partially_refunded_purchase(db, user, payee_account):
    """Create a purchase with $30 of $100 refunded."""
    return CompletedPurchaseFactory(
        buyer=user,
        payee=payee_account,
        status=PurchaseStatus.PARTIALLY_REFUNDED,
        refunded_amount_cents=3000,
    )


@pytest.fixture
def refunded_purchase(db, user, payee_account):
    return CompletedPurchaseFactory(
        buyer=user,
        payee=payee_account,
        status=PurchaseStatus.REFUNDED,
        refunded_amount_cents=10000,
    )


@pytest.fixture
def failed_purchase(db, user, payee_account):
    return PurchaseFactory(
        buyer=user,
        payee=payee_account,
        status=PurchaseStatus.FAILED,
        failure_reason="Card declined",
    )


@pytest.fixture
def disputed_purchase(db, user, payee_account):
    """Create a disputed purchase that was completed before the dispute."""
    return CompletedPurchaseFactory(
        buyer=user,
        payee=payee_account,
        status=PurchaseStatus.DISPUTED,
        status_before_dispute=PurchaseStatus.COMPLETED,
    )
