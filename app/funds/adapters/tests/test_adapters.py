"""
Tests for the Stripe transfer adapter.

Tests cover:
- Transfer creation and idempotency keys
- Error translation for each Stripe exception type
- StripeTransferProvider outcomes for transfer and lookup
"""

import uuid
from unittest.mock import MagicMock

import pytest
import stripe
from django.test import override_settings

from funds.adapters import StripeAdapter, StripeTransfer, StripeTransferProvider, transfer_group_for
from funds.exceptions import (
    TransferRejectedError,
    TransferTimeoutError,
    TransferUnavailableError,
)
from funds.protocols import TransferRequest
from funds.state_machines import PayoutMethod
from funds.tests.factories import SellerPayoutFactory


def make_request(**overrides):
    payout_id = uuid.uuid4()
    values = {
        "payout_id": payout_id,
        "store_id": uuid.uuid4(),
        "amount_cents": 5400,
        "currency": "usd",
        "payout_method": PayoutMethod.STRIPE_CONNECT,
        "destination_reference": "acct_dest123",
        "idempotency_key": str(payout_id),
        "metadata": {"payout_id": str(payout_id)},
    }
    values.update(overrides)
    return TransferRequest(**values)


# =============================================================================
# StripeAdapter
# =============================================================================


class TestCreateTransfer:
    def test_success(self, mock_stripe_transfer, mock_transfer):
        mock_stripe_transfer.create.return_value = mock_transfer(
            id="tr_abc", amount=5400, transfer_group="payout:1"
        )

        result = StripeAdapter.create_transfer(
            amount_cents=5400,
            destination_account="acct_dest123",
            idempotency_key="key-1",
            transfer_group="payout:1",
            metadata={"store": "a"},
        )

        assert isinstance(result, StripeTransfer)
        assert result.id == "tr_abc"
        assert result.amount_cents == 5400
        assert result.transfer_group == "payout:1"
        assert not result.reversed
        mock_stripe_transfer.create.assert_called_once_with(
            idempotency_key="key-1",
            amount=5400,
            currency="usd",
            destination="acct_dest123",
            metadata={"store": "a"},
            transfer_group="payout:1",
        )

    def test_transfer_group_omitted_when_empty(self, mock_stripe_transfer):
        StripeAdapter.create_transfer(
            amount_cents=100, destination_account="acct_1", idempotency_key="key"
        )

        assert "transfer_group" not in mock_stripe_transfer.create.call_args.kwargs

    @override_settings(STRIPE_SECRET_KEY="sk_test_funds", STRIPE_API_TIMEOUT_SECONDS=7)
    def test_configures_client(self, mock_stripe_transfer, mock_stripe_http_client):
        StripeAdapter.create_transfer(
            amount_cents=100, destination_account="acct_1", idempotency_key="key"
        )

        assert stripe.api_key == "sk_test_funds"
        mock_stripe_http_client.assert_called_with(timeout=7)


class TestErrorTranslation:
    def test_invalid_request_is_rejected(self, mock_stripe_transfer, invalid_request_error):
        mock_stripe_transfer.create.side_effect = invalid_request_error

        with pytest.raises(TransferRejectedError) as exc_info:
            StripeAdapter.create_transfer(
                amount_cents=100, destination_account="acct_missing", idempotency_key="key"
            )

        assert exc_info.value.provider_code == "resource_missing"
        assert not exc_info.value.is_retryable

    def test_authentication_is_rejected(self, mock_stripe_transfer, authentication_error):
        mock_stripe_transfer.create.side_effect = authentication_error

        with pytest.raises(TransferRejectedError) as exc_info:
            StripeAdapter.create_transfer(
                amount_cents=100, destination_account="acct_1", idempotency_key="key"
            )

        assert exc_info.value.provider_code == "authentication_error"

    def test_rate_limit_is_retryable(self, mock_stripe_transfer, rate_limit_error):
        mock_stripe_transfer.create.side_effect = rate_limit_error

        with pytest.raises(TransferUnavailableError) as exc_info:
            StripeAdapter.create_transfer(
                amount_cents=100, destination_account="acct_1", idempotency_key="key"
            )

        assert exc_info.value.is_retryable

    def test_api_error_is_retryable(self, mock_stripe_transfer, api_error):
        mock_stripe_transfer.create.side_effect = api_error

        with pytest.raises(TransferUnavailableError):
            StripeAdapter.create_transfer(
                amount_cents=100, destination_account="acct_1", idempotency_key="key"
            )

    def test_connection_error_outcome_unknown(self, mock_stripe_transfer, api_connection_error):
        mock_stripe_transfer.create.side_effect = api_connection_error

        with pytest.raises(TransferTimeoutError) as exc_info:
            StripeAdapter.create_transfer(
                amount_cents=100, destination_account="acct_1", idempotency_key="key"
            )

        assert exc_info.value.outcome_unknown

    def test_non_stripe_error_propagates(self, mock_stripe_transfer):
        mock_stripe_transfer.create.side_effect = ValueError("boom")

        with pytest.raises(ValueError):
            StripeAdapter.create_transfer(
                amount_cents=100, destination_account="acct_1", idempotency_key="key"
            )


class TestListTransfers:
    def test_lists_by_group(self, mock_stripe_transfer, mock_transfer):
        mock_stripe_transfer.list.return_value = MagicMock(
            data=[mock_transfer(id="tr_1", transfer_group="payout:x")]
        )

        transfers = StripeAdapter.list_transfers_by_group("payout:x")

        assert [transfer.id for transfer in transfers] == ["tr_1"]
        mock_stripe_transfer.list.assert_called_once_with(transfer_group="payout:x", limit=10)


# =============================================================================
# StripeTransferProvider
# =============================================================================


@pytest.fixture
def adapter():
    return MagicMock(spec=StripeAdapter)


@pytest.fixture
def provider(adapter):
    return StripeTransferProvider(adapter=adapter)


class TestProviderTransfer:
    def test_success(self, provider, adapter):
        adapter.create_transfer.return_value = StripeTransfer(
            id="tr_ok", amount_cents=5400, currency="usd", destination_account="acct_dest123"
        )
        request = make_request()

        result = provider.transfer(request)

        assert result.is_success
        assert result.reference == "tr_ok"
        adapter.create_transfer.assert_called_once_with(
            amount_cents=5400,
            destination_account="acct_dest123",
            idempotency_key=request.idempotency_key,
            currency="usd",
            transfer_group=transfer_group_for(request.payout_id),
            metadata=request.metadata,
        )

    def test_bank_transfer_unsupported(self, provider, adapter):
        result = provider.transfer(make_request(payout_method=PayoutMethod.BANK_TRANSFER))

        assert result.error_code == "unsupported_payout_method"
        assert not result.retryable
        adapter.create_transfer.assert_not_called()

    def test_missing_destination(self, provider, adapter):
        result = provider.transfer(make_request(destination_reference=""))

        assert result.error_code == "missing_destination"
        adapter.create_transfer.assert_not_called()

    def test_timeout_is_unknown(self, provider, adapter):
        adapter.create_transfer.side_effect = TransferTimeoutError("No answer")

        result = provider.transfer(make_request())

        assert result.is_unknown

    def test_rejection_is_permanent_failure(self, provider, adapter):
        adapter.create_transfer.side_effect = TransferRejectedError(
            "No such destination", provider_code="resource_missing"
        )

        result = provider.transfer(make_request())

        assert not result.is_success
        assert not result.is_unknown
        assert result.error_code == "resource_missing"
        assert not result.retryable

    def test_unavailable_is_retryable_failure(self, provider, adapter):
        adapter.create_transfer.side_effect = TransferUnavailableError(
            "Rate limited", provider_code="rate_limit"
        )

        result = provider.transfer(make_request())

        assert result.retryable


@pytest.mark.django_db
class TestProviderLookup:
    def test_found(self, provider, adapter):
        payout = SellerPayoutFactory()
        adapter.list_transfers_by_group.return_value = [
            StripeTransfer(
                id="tr_reversed",
                amount_cents=5400,
                currency="usd",
                destination_account="acct_1",
                reversed=True,
            ),
            StripeTransfer(id="tr_live", amount_cents=5400, currency="usd", destination_account="acct_1"),
        ]

        result = provider.lookup(payout)

        assert result.is_success
        assert result.reference == "tr_live"
        adapter.list_transfers_by_group.assert_called_once_with(f"payout:{payout.id}")

    def test_not_found_is_retryable(self, provider, adapter):
        adapter.list_transfers_by_group.return_value = []

        result = provider.lookup(SellerPayoutFactory())

        assert result.error_code == "transfer_not_found"
        assert result.retryable

    def test_lookup_error_is_unknown(self, provider, adapter):
        adapter.list_transfers_by_group.side_effect = TransferUnavailableError("down")

        assert provider.lookup(SellerPayoutFactory()).is_unknown
