"""
Commission invoice and credit note models.

The platform invoices each store for the commission it kept in a settled
month. An invoice is derived from one finalized settlement and is immutable
once issued; corrections are credit notes referencing it.

Numbering:
    INV-{year}-{seq:05d}   invoices, year of the settlement period
    CN-{year}-{seq:05d}    credit notes, year of issue

Amounts on credit notes are stored as positive magnitudes; the document type
carries the sign.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from django.db import models
from django.db.models import Q

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from funds.ledger.types import HUNDRED, round_cents
from funds.state_machines import CreditNoteType, InvoiceStatus


def compute_line_amounts(
    quantity: Decimal,
    unit_price_cents: int,
    tax_rate: Decimal,
) -> tuple[int, int, int]:
    """
    (net, tax, gross) in cents for one document line.

    net = quantity * unit price, tax = net * rate / 100, both rounded
    half-even to the cent; gross = net + tax.
    """
    net = round_cents(Decimal(quantity) * Decimal(unit_price_cents))
    tax = round_cents(Decimal(net) * Decimal(tax_rate) / HUNDRED)
    return net, tax, net + tax


class DocumentLine(UUIDPrimaryKeyMixin, models.Model):
    """Abstract invoice or credit note line."""

    position = models.PositiveSmallIntegerField(default=1)
    description = models.CharField(max_length=500)
    quantity = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal("1"))
    unit_price_cents = models.BigIntegerField()
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2)
    net_cents = models.BigIntegerField()
    tax_cents = models.BigIntegerField()
    gross_cents = models.BigIntegerField()

    class Meta:
        abstract = True
        ordering = ["position"]

    def compute_amounts(self) -> None:
        self.net_cents, self.tax_cents, self.gross_cents = compute_line_amounts(
            self.quantity, self.unit_price_cents, self.tax_rate
        )


class CommissionInvoice(UUIDPrimaryKeyMixin, BaseModel):
    """
    Commission invoice for one settlement.

    State Flow:
        DRAFT -> ISSUED -> PAID
        ISSUED -> CANCELLED
        ISSUED/PAID -> CORRECTED (full credit note)
    """

    invoice_number = models.CharField(max_length=20, unique=True)
    settlement = models.OneToOneField(
        "funds.Settlement",
        on_delete=models.PROTECT,
        related_name="invoice",
    )
    store_id = models.UUIDField(db_index=True)

    status = FSMField(
        default=InvoiceStatus.DRAFT,
        choices=InvoiceStatus.choices,
        db_index=True,
        protected=True,
    )
    currency = models.CharField(max_length=3, default="usd")

    issue_date = models.DateField()
    due_date = models.DateField()
    period_start = models.DateTimeField()
    period_end = models.DateTimeField()

    net_cents = models.BigIntegerField(default=0)
    tax_cents = models.BigIntegerField(default=0)
    gross_cents = models.BigIntegerField(default=0)

    # ==========================================================================
    # Parties
    # ==========================================================================

    issuer_name = models.CharField(max_length=255)
    issuer_tax_id = models.CharField(max_length=50, blank=True, default="")
    issuer_address = models.CharField(max_length=500, blank=True, default="")
    seller_name = models.CharField(max_length=255, blank=True, default="")
    seller_tax_id = models.CharField(max_length=50, blank=True, default="")

    notes = models.TextField(blank=True, default="")
    issued_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-issue_date", "-invoice_number"]
        verbose_name = "Commission invoice"
        verbose_name_plural = "Commission invoices"
        indexes = [
            models.Index(fields=["store_id", "status"], name="invoice_store_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(gross_cents__gte=0),
                name="commission_invoice_gross_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.invoice_number} ({self.status})"

    @transition(field=status, source=InvoiceStatus.DRAFT, target=InvoiceStatus.ISSUED)
    def issue(self, issued_at: datetime):
        self.issued_at = issued_at

    @transition(field=status, source=InvoiceStatus.ISSUED, target=InvoiceStatus.PAID)
    def mark_paid(self, paid_at: datetime):
        self.paid_at = paid_at

    @transition(field=status, source=InvoiceStatus.ISSUED, target=InvoiceStatus.CANCELLED)
    def cancel(self, cancelled_at: datetime):
        self.cancelled_at = cancelled_at

    @transition(
        field=status,
        source=[InvoiceStatus.ISSUED, InvoiceStatus.PAID],
        target=InvoiceStatus.CORRECTED,
    )
    def mark_corrected(self):
        """Fully reversed by a credit note."""

    @property
    def is_editable(self) -> bool:
        return self.status in (InvoiceStatus.DRAFT, InvoiceStatus.ISSUED)

    def recompute_totals(self, lines) -> None:
        self.net_cents = sum(line.net_cents for line in lines)
        self.tax_cents = sum(line.tax_cents for line in lines)
        self.gross_cents = sum(line.gross_cents for line in lines)


class InvoiceLine(DocumentLine):
    invoice = models.ForeignKey(
        CommissionInvoice,
        on_delete=models.CASCADE,
        related_name="lines",
    )

    class Meta(DocumentLine.Meta):
        pass


class CreditNote(UUIDPrimaryKeyMixin, BaseModel):
    """
    Correction of an issued invoice.

    A FULL note reverses every invoice line and marks the invoice corrected.
    A PARTIAL note carries caller-supplied lines; the sum of all notes never
    exceeds the invoice gross.
    """

    credit_note_number = models.CharField(max_length=20, unique=True)
    invoice = models.ForeignKey(
        CommissionInvoice,
        on_delete=models.PROTECT,
        related_name="credit_notes",
    )
    store_id = models.UUIDField(db_index=True)
    note_type = models.CharField(max_length=10, choices=CreditNoteType.choices)
    reason = models.CharField(max_length=500)
    currency = models.CharField(max_length=3, default="usd")
    issue_date = models.DateField()

    net_cents = models.BigIntegerField(default=0)
    tax_cents = models.BigIntegerField(default=0)
    gross_cents = models.BigIntegerField(default=0)
    issued_at = models.DateTimeField()

    class Meta:
        ordering = ["-issue_date", "-credit_note_number"]
        verbose_name = "Credit note"
        verbose_name_plural = "Credit notes"
        constraints = [
            models.CheckConstraint(
                condition=Q(gross_cents__gt=0),
                name="credit_note_gross_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.credit_note_number} -> {self.invoice_id}"

    def recompute_totals(self, lines) -> None:
        self.net_cents = sum(line.net_cents for line in lines)
        self.tax_cents = sum(line.tax_cents for line in lines)
        self.gross_cents = sum(line.gross_cents for line in lines)


class CreditNoteLine(DocumentLine):
    credit_note = models.ForeignKey(
        CreditNote,
        on_delete=models.CASCADE,
        related_name="lines",
    )

    class Meta(DocumentLine.Meta):
        pass
