"""
Commission invoices and credit notes.

InvoiceIssuer turns a frozen settlement into the platform's commission
invoice for that store and month, and corrects issued invoices with credit
notes. Issued documents are never edited.

Invoice:
    - One per settlement version, numbered INV-{period year}-{seq}
    - A single line: the settlement's total commission (net) at
      FUNDS_INVOICE_TAX_RATE, due FUNDS_INVOICE_PAYMENT_DUE_DAYS after issue

Credit note:
    - FULL reverses every invoice line and marks the invoice CORRECTED
    - PARTIAL carries caller-supplied lines; credit notes together never
      exceed the invoice gross, and one that uses up the remainder also
      marks the invoice CORRECTED
    - Numbered CN-{issue year}-{seq}

Usage:
    from funds.services import InvoiceIssuer

    issuer = InvoiceIssuer()
    result = issuer.issue_invoice(settlement.id)
    issuer.issue_credit_note(result.data.id, reason="Rate corrected")
"""

from __future__ import annotations

import calendar
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import DatabaseError

from core.clock import SystemClock
from core.services import BaseService, ServiceResult
from funds.exceptions import INVALID_RANGE, INVALID_STATE, NO_DATA, NOT_FOUND, NUMBERING_FAILED
from funds.models import CommissionInvoice, CreditNote, CreditNoteLine, InvoiceLine
from funds.repositories import DjangoInvoiceRepository, DjangoSettlementRepository
from funds.services.document_numbers import allocate_number
from funds.state_machines import CreditNoteType, DocumentType, InvoiceStatus, SettlementStatus

if TYPE_CHECKING:
    from core.protocols import Clock
    from funds.models import Settlement
    from funds.protocols import InvoiceRepository, SettlementRepository

INVOICEABLE_STATUSES = (
    SettlementStatus.FINALIZED,
    SettlementStatus.APPROVED,
    SettlementStatus.EXPORTED,
)

# Returned instead of database detail when a document cannot be numbered
NUMBERING_FAILED_MESSAGE = "The document could not be issued. Please try again later."


@dataclass
class CreditLineSpec:
    """
    One line of a partial credit note, as a positive magnitude.

    tax_rate defaults to the rate of the invoice being corrected.
    """

    description: str
    unit_price_cents: int
    quantity: Decimal = Decimal("1")
    tax_rate: Decimal | None = None


class InvoiceIssuer(BaseService):
    """Issues and corrects commission invoices."""

    def __init__(
        self,
        invoices: InvoiceRepository | None = None,
        settlements: SettlementRepository | None = None,
        clock: Clock | None = None,
    ):
        self.invoices = invoices or DjangoInvoiceRepository()
        self.settlements = settlements or DjangoSettlementRepository()
        self.clock = clock or SystemClock()

    # ==========================================================================
    # Invoices
    # ==========================================================================

    def issue_invoice(
        self,
        settlement_id: uuid.UUID,
        seller_name: str = "",
        seller_tax_id: str = "",
    ) -> ServiceResult[CommissionInvoice]:
        """
        Issue the commission invoice of a finalized settlement.

        Issuing again for the same settlement returns the existing invoice.

        Returns:
            ServiceResult with the invoice (``line_list`` attached), or
            failure NOT_FOUND, INVALID_STATE, NO_DATA, NUMBERING_FAILED
        """
        settlement = self.settlements.get(settlement_id)
        if settlement is None:
            return ServiceResult.failure("Settlement not found", error_code=NOT_FOUND)
        if settlement.status not in INVOICEABLE_STATUSES:
            return ServiceResult.failure(
                f"Cannot invoice settlement in status {settlement.status}",
                error_code=INVALID_STATE,
                errors={"status": [settlement.status]},
            )

        existing = self.invoices.get_for_settlement(settlement.id)
        if existing is not None:
            self.invoices.load_lines(existing)
            return ServiceResult.success(existing)

        if settlement.total_commission_cents <= 0:
            return ServiceResult.failure(
                "Settlement carries no commission to invoice",
                error_code=NO_DATA,
            )

        try:
            with self.atomic():
                invoice = self._build_invoice(settlement, seller_name, seller_tax_id)
        except DatabaseError as e:
            # Issued concurrently; the other transaction's invoice stands
            existing = self.invoices.get_for_settlement(settlement.id)
            if existing is None:
                return self.handle_exception(
                    e,
                    context=f"Issuing invoice for settlement {settlement.id}",
                    public_message=NUMBERING_FAILED_MESSAGE,
                    error_code=NUMBERING_FAILED,
                )
            self.invoices.load_lines(existing)
            return ServiceResult.success(existing)

        self.get_logger().info(
            "Issued commission invoice",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "settlement_id": str(settlement.id),
                "gross_cents": invoice.gross_cents,
            },
        )
        return ServiceResult.success(invoice)

    def _build_invoice(
        self, settlement: Settlement, seller_name: str, seller_tax_id: str
    ) -> CommissionInvoice:
        now = self.clock.now()
        issuer = settings.FUNDS_INVOICE_ISSUER

        line = InvoiceLine(
            position=1,
            description=(
                f"Platform commission for "
                f"{calendar.month_name[settlement.month]} {settlement.year}"
            ),
            quantity=Decimal("1"),
            unit_price_cents=settlement.total_commission_cents,
            tax_rate=Decimal(settings.FUNDS_INVOICE_TAX_RATE),
        )
        line.compute_amounts()

        invoice = CommissionInvoice(
            invoice_number=allocate_number(self.invoices, DocumentType.INVOICE, settlement.year),
            settlement=settlement,
            store_id=settlement.store_id,
            currency=settlement.currency,
            issue_date=now.date(),
            due_date=now.date() + timedelta(days=settings.FUNDS_INVOICE_PAYMENT_DUE_DAYS),
            period_start=settlement.period_start,
            period_end=settlement.period_end,
            issuer_name=issuer["name"],
            issuer_tax_id=issuer["tax_id"],
            issuer_address=issuer["address"],
            seller_name=seller_name,
            seller_tax_id=seller_tax_id,
        )
        invoice.recompute_totals([line])
        invoice.issue(issued_at=now)
        return self.invoices.add(invoice, [line])

    def mark_paid(self, invoice_id: uuid.UUID) -> ServiceResult[CommissionInvoice]:
        """ISSUED -> PAID."""
        with self.atomic():
            invoice = self.invoices.get(invoice_id, for_update=True)
            if invoice is None:
                return ServiceResult.failure("Invoice not found", error_code=NOT_FOUND)
            if invoice.status != InvoiceStatus.ISSUED:
                return self._invalid_state(invoice, "mark paid")

            invoice.mark_paid(paid_at=self.clock.now())
            self.invoices.update(invoice, ["status", "paid_at"])
        return ServiceResult.success(invoice)

    def cancel(self, invoice_id: uuid.UUID) -> ServiceResult[CommissionInvoice]:
        """ISSUED -> CANCELLED. Paid invoices are corrected with a credit note instead."""
        with self.atomic():
            invoice = self.invoices.get(invoice_id, for_update=True)
            if invoice is None:
                return ServiceResult.failure("Invoice not found", error_code=NOT_FOUND)
            if invoice.status != InvoiceStatus.ISSUED:
                return self._invalid_state(invoice, "cancel")

            invoice.cancel(cancelled_at=self.clock.now())
            self.invoices.update(invoice, ["status", "cancelled_at"])

        self.get_logger().info(
            "Cancelled commission invoice",
            extra={"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number},
        )
        return ServiceResult.success(invoice)

    def update_notes(self, invoice_id: uuid.UUID, notes: str) -> ServiceResult[CommissionInvoice]:
        """Notes are the only field that may change, and only until payment."""
        with self.atomic():
            invoice = self.invoices.get(invoice_id, for_update=True)
            if invoice is None:
                return ServiceResult.failure("Invoice not found", error_code=NOT_FOUND)
            if not invoice.is_editable:
                return self._invalid_state(invoice, "edit notes of")

            invoice.notes = notes
            self.invoices.update(invoice, ["notes"])
        return ServiceResult.success(invoice)

    def issue_all_for_period(self, year: int, month: int) -> ServiceResult[dict[str, Any]]:
        """
        Invoice the latest frozen settlement of every store for a month.

        A store whose earlier version is already invoiced is reported under
        ``needs_correction``; the difference is settled with a credit note.
        """
        latest: dict[uuid.UUID, Settlement] = {}
        invoiced_stores: set[uuid.UUID] = set()
        for settlement in self.settlements.for_period(year, month, statuses=INVOICEABLE_STATUSES):
            if self.invoices.get_for_settlement(settlement.id) is not None:
                invoiced_stores.add(settlement.store_id)
            current = latest.get(settlement.store_id)
            if current is None or settlement.version > current.version:
                latest[settlement.store_id] = settlement

        issued: list[str] = []
        skipped: dict[str, str] = {}
        needs_correction: list[str] = []
        for store_id, settlement in latest.items():
            if store_id in invoiced_stores:
                if self.invoices.get_for_settlement(settlement.id) is None:
                    needs_correction.append(str(settlement.id))
                continue

            result = self.issue_invoice(settlement.id)
            if result.success:
                issued.append(result.data.invoice_number)
            else:
                skipped[str(store_id)] = result.error_code

        if needs_correction:
            self.get_logger().warning(
                "Superseded settlements already invoiced, credit notes needed",
                extra={"settlement_ids": needs_correction, "year": year, "month": month},
            )
        return ServiceResult.success(
            {"issued": issued, "skipped": skipped, "needs_correction": needs_correction}
        )

    # ==========================================================================
    # Credit Notes
    # ==========================================================================

    def issue_credit_note(
        self,
        invoice_id: uuid.UUID,
        reason: str,
        note_type: str = CreditNoteType.FULL,
        lines: list[CreditLineSpec] | None = None,
    ) -> ServiceResult[CreditNote]:
        """
        Correct an issued or paid invoice.

        Returns:
            ServiceResult with the credit note (``line_list`` attached), or
            failure NOT_FOUND, INVALID_STATE, INVALID_RANGE, VALIDATION_ERROR,
            NUMBERING_FAILED
        """
        invalid = self.validate_required(reason=reason)
        if invalid is not None:
            return invalid
        if note_type not in CreditNoteType.values:
            return ServiceResult.failure(
                f"Unknown credit note type: {note_type}",
                error_code=INVALID_RANGE,
                errors={"note_type": [note_type]},
            )
        if note_type == CreditNoteType.PARTIAL and not lines:
            return ServiceResult.failure(
                "A partial credit note needs at least one line",
                error_code=INVALID_RANGE,
                errors={"lines": ["Required for partial credit notes"]},
            )

        try:
            with self.atomic():
                invoice = self.invoices.get(invoice_id, for_update=True)
                if invoice is None:
                    return ServiceResult.failure("Invoice not found", error_code=NOT_FOUND)
                if invoice.status not in (InvoiceStatus.ISSUED, InvoiceStatus.PAID):
                    return self._invalid_state(invoice, "credit")

                invoice_lines = self.invoices.load_lines(invoice)
                credited = sum(note.gross_cents for note in self.invoices.load_credit_notes(invoice))
                remaining = invoice.gross_cents - credited

                if note_type == CreditNoteType.FULL:
                    if credited:
                        return ServiceResult.failure(
                            "Invoice already partially credited, issue a partial note for the rest",
                            error_code=INVALID_STATE,
                            errors={"credited_cents": [str(credited)]},
                        )
                    note_lines = [
                        self._credit_line(
                            position=line.position,
                            description=line.description,
                            quantity=line.quantity,
                            unit_price_cents=line.unit_price_cents,
                            tax_rate=line.tax_rate,
                        )
                        for line in invoice_lines
                    ]
                else:
                    default_rate = invoice_lines[0].tax_rate if invoice_lines else Decimal(
                        settings.FUNDS_INVOICE_TAX_RATE
                    )
                    note_lines = []
                    for position, spec in enumerate(lines, start=1):
                        if spec.unit_price_cents <= 0 or spec.quantity <= 0:
                            return ServiceResult.failure(
                                "Credit note lines must be positive",
                                error_code=INVALID_RANGE,
                                errors={f"lines[{position - 1}]": [spec.description]},
                            )
                        note_lines.append(
                            self._credit_line(
                                position=position,
                                description=spec.description,
                                quantity=Decimal(spec.quantity),
                                unit_price_cents=spec.unit_price_cents,
                                tax_rate=default_rate if spec.tax_rate is None else spec.tax_rate,
                            )
                        )

                now = self.clock.now()
                credit_note = CreditNote(
                    invoice=invoice,
                    store_id=invoice.store_id,
                    note_type=note_type,
                    reason=reason.strip(),
                    currency=invoice.currency,
                    issue_date=now.date(),
                    issued_at=now,
                )
                credit_note.recompute_totals(note_lines)
                if credit_note.gross_cents > remaining:
                    return ServiceResult.failure(
                        f"Credit of {credit_note.gross_cents} exceeds the "
                        f"{remaining} left on the invoice",
                        error_code=INVALID_RANGE,
                        errors={"gross_cents": [str(credit_note.gross_cents)]},
                    )

                # Numbered last: every check above has passed
                credit_note.credit_note_number = allocate_number(
                    self.invoices, DocumentType.CREDIT_NOTE, now.year
                )
                self.invoices.add_credit_note(credit_note, note_lines)
                if note_type == CreditNoteType.FULL or credit_note.gross_cents == remaining:
                    invoice.mark_corrected()
                    self.invoices.update(invoice, ["status"])
        except DatabaseError as e:
            return self.handle_exception(
                e,
                context=f"Issuing credit note for invoice {invoice_id}",
                public_message=NUMBERING_FAILED_MESSAGE,
                error_code=NUMBERING_FAILED,
            )

        self.get_logger().info(
            "Issued credit note",
            extra={
                "credit_note_number": credit_note.credit_note_number,
                "invoice_number": invoice.invoice_number,
                "note_type": note_type,
                "gross_cents": credit_note.gross_cents,
            },
        )
        return ServiceResult.success(credit_note)

    @staticmethod
    def _credit_line(**fields) -> CreditNoteLine:
        line = CreditNoteLine(**fields)
        line.compute_amounts()
        return line

    def _invalid_state(self, invoice: CommissionInvoice, action: str) -> ServiceResult:
        return ServiceResult.failure(
            f"Cannot {action} invoice in status {invoice.status}",
            error_code=INVALID_STATE,
            errors={"status": [invoice.status]},
        )
