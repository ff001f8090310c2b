"""
State and choice enums for seller funds models.

These are Django TextChoices for database storage and admin integration.
The status fields that carry a lifecycle are django-fsm FSMFields.

State Machines Overview:

EscrowAllocation:
    held → released (payout confirmed)
    held → refunded (full refund)
    released and refunded are terminal

Settlement:
    draft → finalized → approved → exported
    finalized → exported
    a finalized version is never edited; corrections create version + 1

SellerPayout:
    scheduled → processing → paid
    scheduled/processing → failed
    failed → scheduled (automatic retry while retry_count < max_retries,
                        or operator reschedule)

CommissionInvoice:
    draft → issued → paid
    issued → cancelled
    issued/paid → corrected (full credit note)
"""

from django.db import models


class AllocationStatus(models.TextChoices):
    """Lifecycle of one store's slice of an escrow payment."""

    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class LedgerDirection(models.TextChoices):
    """Credit = funds entering escrow, Debit = funds leaving escrow."""

    CREDIT = "credit", "Credit"
    DEBIT = "debit", "Debit"


class LedgerReason(models.TextChoices):
    """Why an escrow ledger entry was written."""

    FUNDS_CAPTURED = "funds_captured", "Funds Captured"
    PAYOUT_RELEASE = "payout_release", "Payout Release"
    REFUND = "refund", "Refund"
    PARTIAL_REFUND = "partial_refund", "Partial Refund"


class CommissionRuleType(models.TextChoices):
    """
    Scope of a commission rule.

    Resolution priority: SELLER, then CATEGORY, then GLOBAL.
    """

    GLOBAL = "global", "Global"
    CATEGORY = "category", "Category"
    SELLER = "seller", "Seller"


class SettlementStatus(models.TextChoices):
    """
    States for a settlement version.

    Only DRAFT is mutable.
    """

    DRAFT = "draft", "Draft"
    FINALIZED = "finalized", "Finalized"
    APPROVED = "approved", "Approved"
    EXPORTED = "exported", "Exported"


class PayoutStatus(models.TextChoices):
    """
    States for a seller payout.

    FAILED with retry_count < max_retries and next_retry_at set is waiting
    for an automatic retry; FAILED otherwise is terminal until an operator
    reschedules it.
    """

    SCHEDULED = "scheduled", "Scheduled"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class PayoutFrequency(models.TextChoices):
    WEEKLY = "weekly", "Weekly"
    BIWEEKLY = "biweekly", "Bi-weekly"
    MONTHLY = "monthly", "Monthly"


class PayoutMethod(models.TextChoices):
    STRIPE_CONNECT = "stripe_connect", "Stripe Connect"
    BANK_TRANSFER = "bank_transfer", "Bank Transfer"


class InvoiceStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    ISSUED = "issued", "Issued"
    PAID = "paid", "Paid"
    CANCELLED = "cancelled", "Cancelled"
    CORRECTED = "corrected", "Corrected"


class CreditNoteType(models.TextChoices):
    FULL = "full", "Full"
    PARTIAL = "partial", "Partial"


class DocumentType(models.TextChoices):
    """Document series with their own yearly numbering."""

    INVOICE = "INV", "Commission Invoice"
    CREDIT_NOTE = "CN", "Credit Note"
