"""
Data types for ledger and money arithmetic.

Types:
    Money: Amount in minor units (cents) with a lowercase ISO 4217 code
    RecordEntryParams: Parameters for appending one escrow ledger entry

All arithmetic is integer arithmetic on cents. Percentages are Decimals and
are applied with round-half-even to the nearest cent.

Usage:
    from funds.ledger.types import Money

    total = Money(10000, "usd")
    commission = total.percentage(Decimal("10"))   # Money(cents=1000, ...)
    print(total - commission)                      # "90.00 USD"
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal

CENT = Decimal("1")
HUNDRED = Decimal("100")


def round_cents(value: Decimal) -> int:
    """Round a Decimal number of cents half-to-even."""
    return int(value.quantize(CENT, rounding=ROUND_HALF_EVEN))


def normalize_currency(currency: str) -> str:
    """Lowercase three-letter code; raises ValueError otherwise."""
    code = (currency or "").strip().lower()
    if len(code) != 3 or not code.isalpha():
        raise ValueError(f"Invalid currency code: {currency!r}")
    return code


@dataclass(frozen=True)
class Money:
    """
    A monetary amount.

    Attributes:
        cents: Amount in the smallest currency unit (may be negative)
        currency: ISO 4217 currency code, lowercase

    Example:
        Money(5000, "usd") + Money(250, "usd")   # Money(cents=5250, currency='usd')
        Money(5000, "usd") + Money(250, "eur")   # ValueError
    """

    cents: int
    currency: str = "usd"

    def __post_init__(self) -> None:
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError("Money.cents must be an int")

    @classmethod
    def zero(cls, currency: str = "usd") -> Money:
        return cls(0, currency)

    @classmethod
    def from_decimal(cls, amount: Decimal | str, currency: str = "usd") -> Money:
        """Build from a major-unit amount such as Decimal("60.00")."""
        return cls(round_cents(Decimal(amount) * HUNDRED), currency)

    def to_decimal(self) -> Decimal:
        return (Decimal(self.cents) / HUNDRED).quantize(Decimal("0.01"))

    def percentage(self, rate: Decimal) -> Money:
        """``rate`` percent of this amount, rounded half-even to the cent."""
        return Money(round_cents(Decimal(self.cents) * Decimal(rate) / HUNDRED), self.currency)

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __str__(self) -> str:
        return f"{self.to_decimal()} {self.currency.upper()}"

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(self.cents + other.cents, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(self.cents - other.cents, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.cents, self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.cents < other.cents

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.cents <= other.cents

    @property
    def is_zero(self) -> bool:
        return self.cents == 0


@dataclass
class RecordEntryParams:
    """
    Parameters for appending one escrow ledger entry.

    Required Attributes:
        escrow_payment_id: Payment whose escrow balance moves
        store_id: Store the allocation belongs to
        direction: LedgerDirection.CREDIT (in) or LedgerDirection.DEBIT (out)
        amount_cents: Positive amount
        currency: Currency of the payment
        reason: LedgerReason value
        idempotency_key: Unique key; replays return the existing entry

    Optional Attributes:
        allocation_id: Allocation the movement belongs to
        description: Human-readable description
        recorded_at: Business time of the movement (defaults to now)
    """

    escrow_payment_id: uuid.UUID
    store_id: uuid.UUID
    direction: str
    amount_cents: int
    currency: str
    reason: str
    idempotency_key: str

    allocation_id: uuid.UUID | None = None
    description: str | None = None
    recorded_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        self.currency = normalize_currency(self.currency)
