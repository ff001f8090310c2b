"""
Seller funds domain models.

This module contains all seller-funds models:
- EscrowPayment / EscrowAllocation: Captured buyer payments and store slices
- EscrowLedgerEntry: Append-only escrow movements (funds.ledger)
- CommissionRule: Commission percentages by scope and effective window
- Settlement / SettlementItem / SettlementAdjustment: Versioned monthly rollups
- PayoutSettings / SellerPayout / SellerPayoutItem: Transfers to stores
- CommissionInvoice / InvoiceLine / CreditNote / CreditNoteLine: Documents
- DocumentCounter: Yearly numbering per document type
"""

from funds.ledger.models import EscrowLedgerEntry
from funds.models.commission import CommissionRule
from funds.models.document_counter import DocumentCounter
from funds.models.escrow import EscrowAllocation, EscrowPayment
from funds.models.invoice import (
    CommissionInvoice,
    CreditNote,
    CreditNoteLine,
    InvoiceLine,
)
from funds.models.payout import PayoutSettings, SellerPayout, SellerPayoutItem
from funds.models.settlement import Settlement, SettlementAdjustment, SettlementItem

__all__ = [
    "CommissionInvoice",
    "CommissionRule",
    "CreditNote",
    "CreditNoteLine",
    "DocumentCounter",
    "EscrowAllocation",
    "EscrowLedgerEntry",
    "EscrowPayment",
    "InvoiceLine",
    "PayoutSettings",
    "SellerPayout",
    "SellerPayoutItem",
    "Settlement",
    "SettlementAdjustment",
    "SettlementItem",
]
