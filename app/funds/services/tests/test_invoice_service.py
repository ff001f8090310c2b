"""
Tests for InvoiceIssuer.

Tests cover:
- Issuing commission invoices from frozen settlements
- Invoice lifecycle (paid, cancelled, notes)
- Period-wide issuance and superseded versions
- Full and partial credit notes, including gapless numbering
"""

import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest
from django.db import OperationalError, connection

from funds.models import CommissionInvoice, CreditNote
from funds.services import CreditLineSpec, InvoiceIssuer
from funds.state_machines import CreditNoteType, InvoiceStatus, SettlementStatus
from funds.tests.factories import SettlementFactory


@pytest.fixture
def issuer(clock):
    return InvoiceIssuer(clock=clock)


@pytest.fixture
def settlement(db):
    """Finalized May 2024 settlement carrying $10.00 of commission."""
    return SettlementFactory(status=SettlementStatus.FINALIZED, total_commission_cents=1000)


@pytest.fixture
def invoice(issuer, settlement):
    result = issuer.issue_invoice(settlement.id, seller_name="Acme Books", seller_tax_id="PL123")
    assert result.success, result.error
    return result.data


def fetch(invoice_id):
    return CommissionInvoice.objects.get(id=invoice_id)


# =============================================================================
# Invoices
# =============================================================================


@pytest.mark.django_db
class TestIssueInvoice:
    def test_issues_invoice(self, invoice, settlement):
        assert invoice.invoice_number == "INV-2024-00001"
        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.store_id == settlement.store_id
        assert invoice.issue_date == date(2024, 5, 10)
        assert invoice.due_date == date(2024, 5, 24)
        assert invoice.seller_name == "Acme Books"
        assert invoice.issuer_name
        assert (invoice.net_cents, invoice.tax_cents, invoice.gross_cents) == (1000, 230, 1230)

        (line,) = invoice.line_list
        assert line.description == "Platform commission for May 2024"
        assert line.tax_rate == Decimal("23.00")

    def test_idempotent_per_settlement(self, issuer, invoice, settlement):
        again = issuer.issue_invoice(settlement.id)

        assert again.data.id == invoice.id
        assert len(again.data.line_list) == 1
        assert CommissionInvoice.objects.count() == 1

    def test_sequence_per_year(self, issuer, invoice):
        other = SettlementFactory(status=SettlementStatus.APPROVED, total_commission_cents=500)
        next_year = SettlementFactory(
            status=SettlementStatus.EXPORTED, year=2025, month=1, total_commission_cents=500
        )

        assert issuer.issue_invoice(other.id).data.invoice_number == "INV-2024-00002"
        assert issuer.issue_invoice(next_year.id).data.invoice_number == "INV-2025-00001"

    def test_draft_settlement_rejected(self, db, issuer):
        draft = SettlementFactory(total_commission_cents=1000)

        assert issuer.issue_invoice(draft.id).error_code == "INVALID_STATE"

    def test_zero_commission(self, db, issuer):
        empty = SettlementFactory(status=SettlementStatus.FINALIZED, total_commission_cents=0)

        assert issuer.issue_invoice(empty.id).error_code == "NO_DATA"

    def test_unknown_settlement(self, db, issuer):
        assert issuer.issue_invoice(uuid.uuid4()).error_code == "NOT_FOUND"

    def test_numbering_failure_is_sanitized(self, mocker, issuer, settlement):
        mocker.patch(
            "funds.services.invoice_service.allocate_number",
            side_effect=OperationalError('could not obtain lock on row in relation "funds_documentcounter"'),
        )

        result = issuer.issue_invoice(settlement.id)

        assert result.error_code == "NUMBERING_FAILED"
        assert "funds_documentcounter" not in result.error
        assert not CommissionInvoice.objects.exists()


@pytest.mark.django_db
class TestInvoiceLifecycle:
    def test_mark_paid(self, issuer, invoice, clock):
        assert issuer.mark_paid(invoice.id).success

        stored = fetch(invoice.id)
        assert stored.status == InvoiceStatus.PAID
        assert stored.paid_at == clock.now()

    def test_cancel(self, issuer, invoice):
        assert issuer.cancel(invoice.id).success
        assert fetch(invoice.id).status == InvoiceStatus.CANCELLED

    def test_paid_invoice_cannot_be_cancelled(self, issuer, invoice):
        issuer.mark_paid(invoice.id)

        assert issuer.cancel(invoice.id).error_code == "INVALID_STATE"

    def test_notes_editable_until_paid(self, issuer, invoice):
        assert issuer.update_notes(invoice.id, "Reverse charge").success
        assert fetch(invoice.id).notes == "Reverse charge"

        issuer.mark_paid(invoice.id)

        assert issuer.update_notes(invoice.id, "Late").error_code == "INVALID_STATE"

    def test_unknown_invoice(self, db, issuer):
        assert issuer.mark_paid(uuid.uuid4()).error_code == "NOT_FOUND"


@pytest.mark.django_db
class TestIssueAllForPeriod:
    def test_issues_latest_frozen_versions(self, db, issuer):
        first = SettlementFactory(status=SettlementStatus.FINALIZED, total_commission_cents=1000)
        SettlementFactory(
            store_id=first.store_id,
            version=2,
            status=SettlementStatus.FINALIZED,
            total_commission_cents=900,
        )
        SettlementFactory(status=SettlementStatus.FINALIZED, total_commission_cents=0)
        SettlementFactory(total_commission_cents=700)

        result = issuer.issue_all_for_period(2024, 5)

        assert result.data["issued"] == ["INV-2024-00001"]
        assert list(result.data["skipped"].values()) == ["NO_DATA"]
        assert result.data["needs_correction"] == []
        assert fetch_for_store(first.store_id).gross_cents == 1107

    def test_reports_superseded_invoiced_settlements(self, issuer, invoice, settlement):
        superseding = SettlementFactory(
            store_id=settlement.store_id,
            version=2,
            status=SettlementStatus.FINALIZED,
            total_commission_cents=900,
        )

        result = issuer.issue_all_for_period(2024, 5)

        assert result.data["issued"] == []
        assert result.data["needs_correction"] == [str(superseding.id)]

    def test_already_invoiced_is_not_reissued(self, issuer, invoice):
        result = issuer.issue_all_for_period(2024, 5)

        assert result.data == {"issued": [], "skipped": {}, "needs_correction": []}


def fetch_for_store(store_id):
    return CommissionInvoice.objects.get(store_id=store_id)


# =============================================================================
# Credit Notes
# =============================================================================


@pytest.mark.django_db
class TestCreditNotes:
    def test_full_credit_note_corrects_invoice(self, issuer, invoice):
        result = issuer.issue_credit_note(invoice.id, reason="Wrong commission rate")

        assert result.success
        note = result.data
        assert note.credit_note_number == "CN-2024-00001"
        assert note.note_type == CreditNoteType.FULL
        assert (note.net_cents, note.tax_cents, note.gross_cents) == (1000, 230, 1230)
        assert len(note.line_list) == 1
        assert fetch(invoice.id).status == InvoiceStatus.CORRECTED

    def test_paid_invoice_can_be_credited(self, issuer, invoice):
        issuer.mark_paid(invoice.id)

        assert issuer.issue_credit_note(invoice.id, reason="Refund").success

    def test_partial_credit_notes_up_to_remaining(self, issuer, invoice):
        first = issuer.issue_credit_note(
            invoice.id,
            reason="Returned order",
            note_type=CreditNoteType.PARTIAL,
            lines=[CreditLineSpec(description="Commission on returned order", unit_price_cents=200)],
        )
        assert first.data.gross_cents == 246
        assert fetch(invoice.id).status == InvoiceStatus.ISSUED

        too_much = issuer.issue_credit_note(
            invoice.id,
            reason="Over",
            note_type=CreditNoteType.PARTIAL,
            lines=[CreditLineSpec(description="Too much", unit_price_cents=900)],
        )
        assert too_much.error_code == "INVALID_RANGE"

        rest = issuer.issue_credit_note(
            invoice.id,
            reason="Remaining commission",
            note_type=CreditNoteType.PARTIAL,
            lines=[CreditLineSpec(description="Remaining", unit_price_cents=800)],
        )
        assert rest.data.gross_cents == 984
        # The rejected note did not consume a number
        assert rest.data.credit_note_number == "CN-2024-00002"
        assert fetch(invoice.id).status == InvoiceStatus.CORRECTED

    def test_full_after_partial_rejected(self, issuer, invoice):
        issuer.issue_credit_note(
            invoice.id,
            reason="Returned order",
            note_type=CreditNoteType.PARTIAL,
            lines=[CreditLineSpec(description="Part", unit_price_cents=200)],
        )

        result = issuer.issue_credit_note(invoice.id, reason="Everything")

        assert result.error_code == "INVALID_STATE"

    def test_corrected_invoice_cannot_be_credited_again(self, issuer, invoice):
        issuer.issue_credit_note(invoice.id, reason="Wrong rate")

        assert issuer.issue_credit_note(invoice.id, reason="Again").error_code == "INVALID_STATE"

    def test_cancelled_invoice_cannot_be_credited(self, issuer, invoice):
        issuer.cancel(invoice.id)

        assert issuer.issue_credit_note(invoice.id, reason="Late").error_code == "INVALID_STATE"

    def test_partial_requires_lines(self, issuer, invoice):
        result = issuer.issue_credit_note(invoice.id, reason="x", note_type=CreditNoteType.PARTIAL)

        assert result.error_code == "INVALID_RANGE"

    def test_partial_lines_must_be_positive(self, issuer, invoice):
        result = issuer.issue_credit_note(
            invoice.id,
            reason="x",
            note_type=CreditNoteType.PARTIAL,
            lines=[CreditLineSpec(description="Negative", unit_price_cents=-100)],
        )

        assert result.error_code == "INVALID_RANGE"
        assert not CreditNote.objects.exists()

    def test_reason_required(self, issuer, invoice):
        assert issuer.issue_credit_note(invoice.id, reason=" ").error_code == "VALIDATION_ERROR"

    def test_numbering_failure_is_sanitized(self, mocker, issuer, invoice):
        mocker.patch(
            "funds.services.invoice_service.allocate_number",
            side_effect=OperationalError("deadlock detected"),
        )

        result = issuer.issue_credit_note(invoice.id, reason="Rate corrected")

        assert result.error_code == "NUMBERING_FAILED"
        assert "deadlock" not in result.error
        assert not CreditNote.objects.exists()
        assert fetch(invoice.id).status == InvoiceStatus.ISSUED

    def test_unknown_note_type(self, issuer, invoice):
        result = issuer.issue_credit_note(invoice.id, reason="x", note_type="void")

        assert result.error_code == "INVALID_RANGE"

    def test_credit_note_year_is_issue_year(self, issuer, clock, db):
        december = SettlementFactory(
            status=SettlementStatus.FINALIZED, year=2023, month=12, total_commission_cents=1000
        )
        invoice = issuer.issue_invoice(december.id).data

        note = issuer.issue_credit_note(invoice.id, reason="Correction").data

        assert invoice.invoice_number == "INV-2023-00001"
        assert note.credit_note_number == "CN-2024-00001"


# =============================================================================
# Concurrency (PostgreSQL only)
# =============================================================================


@pytest.mark.postgres
@pytest.mark.django_db(transaction=True)
class TestConcurrentNumbering:
    def test_parallel_issuance_is_gapless(self, clock):
        if connection.vendor != "postgresql":
            pytest.skip("Row locks require PostgreSQL")

        settlements = [
            SettlementFactory(status=SettlementStatus.FINALIZED, total_commission_cents=1000)
            for _ in range(5)
        ]

        def issue(settlement_id):
            try:
                return InvoiceIssuer(clock=clock).issue_invoice(settlement_id).data.invoice_number
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=5) as pool:
            numbers = sorted(pool.map(issue, [s.id for s in settlements]))

        assert numbers == [f"INV-2024-{n:05d}" for n in range(1, 6)]
