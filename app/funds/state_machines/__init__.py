"""
State machine enums for seller funds models.
"""

from funds.state_machines.states import (
    AllocationStatus,
    CommissionRuleType,
    CreditNoteType,
    DocumentType,
    InvoiceStatus,
    LedgerDirection,
    LedgerReason,
    PayoutFrequency,
    PayoutMethod,
    PayoutStatus,
    SettlementStatus,
)

__all__ = [
    "AllocationStatus",
    "CommissionRuleType",
    "CreditNoteType",
    "DocumentType",
    "InvoiceStatus",
    "LedgerDirection",
    "LedgerReason",
    "PayoutFrequency",
    "PayoutMethod",
    "PayoutStatus",
    "SettlementStatus",
]
