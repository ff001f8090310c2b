"""
Shared fixtures for seller funds tests.

Every funds test runs with Redis mocked out (distributed locks always
succeed) and can take a FixedClock so eligibility windows, retry backoff and
settlement periods are deterministic.

Usage:
    def test_release(open_escrow, escrow_account, store_id):
        payment = open_escrow(AllocationSpec(store_id=store_id, amount_cents=6000))
        escrow_account.release(payment.allocation_list[0].id)
"""

import uuid
from datetime import UTC, datetime

import pytest

from core.clock import FixedClock
from funds.services import EscrowAccount

# Friday, ISO week 19
OPENED_AT = datetime(2024, 5, 10, 12, 0, tzinfo=UTC)


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured for basic lock operations.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.get.return_value = None
    mock_client.delete.return_value = 1
    mock_client.eval.return_value = 1

    mocker.patch("funds.locks.get_redis_connection", return_value=mock_client)
    return mock_client


@pytest.fixture
def clock():
    """Clock frozen at the capture time used across funds tests."""
    return FixedClock(OPENED_AT)


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def store_id():
    return uuid.uuid4()


@pytest.fixture
def other_store_id():
    return uuid.uuid4()


# =============================================================================
# Escrow
# =============================================================================


@pytest.fixture
def escrow_account(clock):
    return EscrowAccount(clock=clock)


@pytest.fixture
def open_escrow(db, escrow_account):
    """
    Open an escrow payment whose total is the sum of the given specs.

    Example:
        payment = open_escrow(
            AllocationSpec(store_id=store_a, amount_cents=6000),
            AllocationSpec(store_id=store_b, amount_cents=4000),
        )
    """

    def _open(*specs, currency="usd"):
        result = escrow_account.open(
            order_id=uuid.uuid4(),
            buyer_id=uuid.uuid4(),
            total_cents=sum(spec.amount_cents for spec in specs),
            currency=currency,
            allocations=list(specs),
        )
        assert result.success, result.error
        return result.data

    return _open


@pytest.fixture
def make_eligible(escrow_account, clock):
    """Mark allocations payout-eligible as of the current clock time."""

    def _make_eligible(*allocations):
        for allocation in allocations:
            result = escrow_account.mark_eligible(allocation.id, clock.now())
            assert result.success, result.error

    return _make_eligible
