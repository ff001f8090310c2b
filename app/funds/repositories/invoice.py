"""
Django ORM repository for commission invoices, credit notes and the
document counters that number them.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from django.db import transaction

from funds.models import (
    CommissionInvoice,
    CreditNote,
    CreditNoteLine,
    DocumentCounter,
    InvoiceLine,
)


class DjangoInvoiceRepository:
    def get(self, invoice_id: uuid.UUID, for_update: bool = False) -> CommissionInvoice | None:
        queryset = CommissionInvoice.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=invoice_id).first()

    def get_for_settlement(self, settlement_id: uuid.UUID) -> CommissionInvoice | None:
        return CommissionInvoice.objects.filter(settlement_id=settlement_id).first()

    def load_lines(self, invoice: CommissionInvoice) -> list[InvoiceLine]:
        """Fetch lines and attach them as ``line_list``."""
        invoice.line_list = list(
            InvoiceLine.objects.filter(invoice_id=invoice.pk).order_by("position")
        )
        return invoice.line_list

    def load_credit_notes(self, invoice: CommissionInvoice) -> list[CreditNote]:
        invoice.credit_note_list = list(
            CreditNote.objects.filter(invoice_id=invoice.pk).order_by("issued_at", "id")
        )
        return invoice.credit_note_list

    def add(self, invoice: CommissionInvoice, lines: list[InvoiceLine]) -> CommissionInvoice:
        invoice.save(force_insert=True)
        for line in lines:
            line.invoice = invoice
        InvoiceLine.objects.bulk_create(lines)
        invoice.line_list = list(lines)
        return invoice

    def update(self, invoice: CommissionInvoice, fields: Iterable[str]) -> None:
        invoice.save(update_fields=[*fields, "updated_at"])

    def add_credit_note(self, credit_note: CreditNote, lines: list[CreditNoteLine]) -> CreditNote:
        credit_note.save(force_insert=True)
        for line in lines:
            line.credit_note = credit_note
        CreditNoteLine.objects.bulk_create(lines)
        credit_note.line_list = list(lines)
        return credit_note

    def next_sequence(self, doc_type: str, year: int) -> int:
        """
        Take the next number of a (document type, year) series.

        The counter row is locked until the caller's transaction ends, so a
        rolled-back issuance gives its number back.
        """
        with transaction.atomic():
            counter, _ = DocumentCounter.objects.get_or_create(doc_type=doc_type, year=year)
            counter = DocumentCounter.objects.select_for_update().get(pk=counter.pk)
            number = counter.next_number
            counter.next_number = number + 1
            counter.save(update_fields=["next_number"])
        return number
