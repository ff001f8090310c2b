"""
Tests for django-fsm state transitions on seller funds models.

Transitions are exercised on unsaved instances; persistence is covered by
the service tests.
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from funds.models import CommissionInvoice, EscrowAllocation, SellerPayout, Settlement
from funds.state_machines import (
    AllocationStatus,
    InvoiceStatus,
    PayoutStatus,
    SettlementStatus,
)


# =============================================================================
# EscrowAllocation
# =============================================================================


class TestAllocationTransitions:
    def test_release_from_held(self):
        allocation = EscrowAllocation(amount_cents=1000)
        now = timezone.now()

        allocation.release(released_at=now, reference="PO-1")

        assert allocation.status == AllocationStatus.RELEASED
        assert allocation.released_at == now
        assert allocation.payout_reference == "PO-1"
        assert allocation.is_terminal

    def test_full_refund_from_held(self):
        allocation = EscrowAllocation(amount_cents=1000, refunded_cents=200)

        allocation.refund(refunded_at=timezone.now(), amount_cents=800, reference="re_1")

        assert allocation.status == AllocationStatus.REFUNDED
        assert allocation.refunded_cents == 1000
        assert allocation.remaining_cents == 0

    def test_released_cannot_be_refunded(self):
        allocation = EscrowAllocation(amount_cents=1000, status=AllocationStatus.RELEASED)

        with pytest.raises(TransitionNotAllowed):
            allocation.refund(refunded_at=timezone.now(), amount_cents=1000)

    def test_refunded_cannot_be_released(self):
        allocation = EscrowAllocation(amount_cents=1000, status=AllocationStatus.REFUNDED)

        with pytest.raises(TransitionNotAllowed):
            allocation.release(released_at=timezone.now())


# =============================================================================
# Settlement
# =============================================================================


class TestSettlementTransitions:
    def test_full_lifecycle(self):
        settlement = Settlement()
        now = timezone.now()

        settlement.finalize(finalized_at=now)
        assert settlement.status == SettlementStatus.FINALIZED
        assert settlement.is_finalized

        settlement.approve(approved_at=now, approved_by="finance@example.com")
        assert settlement.status == SettlementStatus.APPROVED
        assert settlement.approved_by == "finance@example.com"

        settlement.mark_exported(exported_at=now)
        assert settlement.status == SettlementStatus.EXPORTED

    def test_export_without_approval(self):
        settlement = Settlement(status=SettlementStatus.FINALIZED)

        settlement.mark_exported(exported_at=timezone.now())

        assert settlement.status == SettlementStatus.EXPORTED

    def test_draft_cannot_be_approved(self):
        settlement = Settlement()

        with pytest.raises(TransitionNotAllowed):
            settlement.approve(approved_at=timezone.now(), approved_by="ops")

    def test_draft_cannot_be_exported(self):
        with pytest.raises(TransitionNotAllowed):
            Settlement().mark_exported(exported_at=timezone.now())

    def test_finalized_cannot_be_finalized_again(self):
        settlement = Settlement(status=SettlementStatus.FINALIZED)

        with pytest.raises(TransitionNotAllowed):
            settlement.finalize(finalized_at=timezone.now())


# =============================================================================
# SellerPayout
# =============================================================================


class TestPayoutTransitions:
    def test_happy_path(self):
        payout = SellerPayout(max_retries=3)
        now = timezone.now()

        payout.start_processing(started_at=now)
        assert payout.status == PayoutStatus.PROCESSING
        assert payout.processing_started_at == now

        payout.mark_paid(paid_at=now, provider_reference="tr_123")
        assert payout.status == PayoutStatus.PAID
        assert payout.provider_reference == "tr_123"

    def test_paid_cannot_fail(self):
        payout = SellerPayout(status=PayoutStatus.PAID)

        with pytest.raises(TransitionNotAllowed):
            payout.mark_failed(failed_at=timezone.now(), reason="late")

    def test_scheduled_cannot_be_paid_directly(self):
        with pytest.raises(TransitionNotAllowed):
            SellerPayout().mark_paid(paid_at=timezone.now())

    def test_failed_truncates_reason(self):
        payout = SellerPayout(max_retries=3)

        payout.mark_failed(failed_at=timezone.now(), reason="x" * 300, code="E1", detail="raw")

        assert len(payout.failure_reason) == 255
        assert payout.failure_code == "E1"
        assert payout.last_error == "raw"

    def test_retry_requires_pending_retry(self):
        payout = SellerPayout(max_retries=3)
        payout.mark_failed(failed_at=timezone.now(), reason="Rejected")

        with pytest.raises(TransitionNotAllowed):
            payout.retry(scheduled_date=timezone.now())

    def test_retry_returns_to_scheduled(self):
        payout = SellerPayout(max_retries=3)
        now = timezone.now()
        payout.mark_failed(failed_at=now, reason="Temporary", next_retry_at=now + timedelta(hours=1))

        payout.retry(scheduled_date=now + timedelta(hours=1))

        assert payout.status == PayoutStatus.SCHEDULED
        assert payout.next_retry_at is None
        assert payout.retry_count == 1

    def test_reschedule_resets_retry_budget(self):
        payout = SellerPayout(max_retries=3)
        now = timezone.now()
        payout.mark_failed(failed_at=now, reason="Rejected", code="account_closed")

        payout.reschedule(scheduled_date=now)

        assert payout.status == PayoutStatus.SCHEDULED
        assert payout.retry_count == 0
        assert payout.failure_reason == ""
        assert payout.failure_code == ""


# =============================================================================
# CommissionInvoice
# =============================================================================


class TestInvoiceTransitions:
    def test_issue_then_pay(self):
        invoice = CommissionInvoice()
        now = timezone.now()

        invoice.issue(issued_at=now)
        invoice.mark_paid(paid_at=now)

        assert invoice.status == InvoiceStatus.PAID
        assert not invoice.is_editable

    def test_paid_invoice_can_be_corrected(self):
        invoice = CommissionInvoice(status=InvoiceStatus.PAID)

        invoice.mark_corrected()

        assert invoice.status == InvoiceStatus.CORRECTED

    def test_cancelled_invoice_cannot_be_corrected(self):
        invoice = CommissionInvoice(status=InvoiceStatus.CANCELLED)

        with pytest.raises(TransitionNotAllowed):
            invoice.mark_corrected()

    def test_paid_invoice_cannot_be_cancelled(self):
        invoice = CommissionInvoice(status=InvoiceStatus.PAID)

        with pytest.raises(TransitionNotAllowed):
            invoice.cancel(cancelled_at=timezone.now())

    def test_draft_cannot_be_paid(self):
        with pytest.raises(TransitionNotAllowed):
            CommissionInvoice().mark_paid(paid_at=timezone.now())
