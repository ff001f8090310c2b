"""
Tests for ledger data types.

Tests cover:
- Money arithmetic and currency guards
- Half-even rounding of percentages
- RecordEntryParams validation
"""

from decimal import Decimal

import pytest

from funds.ledger.types import Money, RecordEntryParams, normalize_currency, round_cents
from funds.state_machines import LedgerDirection, LedgerReason


class TestRoundCents:
    def test_rounds_half_to_even(self):
        assert round_cents(Decimal("2.5")) == 2
        assert round_cents(Decimal("3.5")) == 4
        assert round_cents(Decimal("-2.5")) == -2

    def test_rounds_to_nearest_otherwise(self):
        assert round_cents(Decimal("125.625")) == 126
        assert round_cents(Decimal("125.4")) == 125


class TestNormalizeCurrency:
    def test_lowercases_and_strips(self):
        assert normalize_currency(" USD ") == "usd"

    @pytest.mark.parametrize("code", ["", "us", "usdd", "u5d", None])
    def test_rejects_invalid_codes(self, code):
        with pytest.raises(ValueError, match="Invalid currency code"):
            normalize_currency(code)


class TestMoney:
    """Tests for Money arithmetic."""

    def test_add_and_subtract(self):
        total = Money(10000, "usd")
        commission = Money(1000, "usd")

        assert total - commission == Money(9000, "usd")
        assert total + commission == Money(11000, "usd")
        assert -commission == Money(-1000, "usd")

    def test_currency_is_normalized(self):
        assert Money(100, "EUR").currency == "eur"

    def test_mixing_currencies_raises(self):
        with pytest.raises(ValueError, match="different currencies"):
            Money(100, "usd") + Money(100, "eur")

        with pytest.raises(ValueError, match="different currencies"):
            Money(100, "usd") < Money(100, "eur")

    def test_cents_must_be_integer(self):
        with pytest.raises(TypeError):
            Money(10.5, "usd")

        with pytest.raises(TypeError):
            Money(True, "usd")

    def test_percentage_rounds_half_even(self):
        assert Money(10000).percentage(Decimal("10")) == Money(1000)
        # 2.5 cents rounds down to the even cent, 3.5 up
        assert Money(25).percentage(Decimal("10")) == Money(2)
        assert Money(35).percentage(Decimal("10")) == Money(4)

    def test_from_decimal(self):
        assert Money.from_decimal("60.00") == Money(6000)
        assert Money.from_decimal(Decimal("0.015")) == Money(2)

    def test_to_decimal_and_str(self):
        assert Money(-150).to_decimal() == Decimal("-1.50")
        assert str(Money(9000, "usd")) == "90.00 USD"

    def test_zero(self):
        zero = Money.zero("eur")

        assert zero.is_zero
        assert zero.currency == "eur"

    def test_comparison(self):
        assert Money(100) < Money(200)
        assert Money(200) <= Money(200)


class TestRecordEntryParams:
    def _params(self, **overrides):
        import uuid

        values = {
            "escrow_payment_id": uuid.uuid4(),
            "store_id": uuid.uuid4(),
            "direction": LedgerDirection.CREDIT,
            "amount_cents": 6000,
            "currency": "USD",
            "reason": LedgerReason.FUNDS_CAPTURED,
            "idempotency_key": "escrow:capture:test",
        }
        values.update(overrides)
        return RecordEntryParams(**values)

    def test_valid_params(self):
        params = self._params()

        assert params.currency == "usd"
        assert params.allocation_id is None

    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError, match="amount_cents must be positive"):
            self._params(amount_cents=0)

    def test_idempotency_key_required(self):
        with pytest.raises(ValueError, match="idempotency_key is required"):
            self._params(idempotency_key="")
