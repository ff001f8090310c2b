"""
Escrow ledger - append-only record of money entering and leaving escrow.

Public API:
    Models:
        EscrowLedgerEntry - one credit or debit against an escrow payment

    Service:
        ledger - shared LedgerService instance
        LedgerService - record_entry, record_entries, balances, entry lookups

    Types:
        Money - integer cents with a currency code
        RecordEntryParams - parameters for one entry

Usage:
    from funds.ledger import ledger, Money

    balance = ledger.get_payment_balance(payment.id)
    assert balance == Money(held_cents, payment.currency)

Note:
    The model is not imported here to keep this package importable before the
    app registry is ready. Import it from funds.ledger.models.
"""

from .services import LedgerService, ledger
from .types import Money, RecordEntryParams, round_cents

__all__ = [
    "ledger",
    "LedgerService",
    "Money",
    "RecordEntryParams",
    "round_cents",
]
