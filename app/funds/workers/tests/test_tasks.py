"""
Tests for seller funds Celery tasks.

Tests cover:
- Payout scheduling, due scan, execution, retry and reconciliation tasks
- Escrow eligibility promotion and ledger verification
- Monthly settlement run and period invoicing
"""

import uuid
from datetime import UTC, datetime

import pytest
from freezegun import freeze_time

from core.services import ServiceResult
from funds.exceptions import UNKNOWN_OUTCOME
from funds.models import EscrowAllocation, Settlement
from funds.services import AllocationSpec, EscrowAccount
from funds.state_machines import PayoutStatus, SettlementStatus
from funds.tests.factories import SellerPayoutFactory, SettlementFactory
from funds.workers import (
    build_store_settlement,
    execute_single_payout,
    issue_period_invoices,
    process_due_payouts,
    promote_eligible_allocations,
    reconcile_processing_payouts,
    retry_failed_payouts,
    run_monthly_settlements,
    schedule_payouts,
    verify_escrow_ledger,
)


@pytest.fixture
def scheduler(mocker):
    scheduler = mocker.MagicMock()
    mocker.patch("funds.workers.payout_executor._scheduler", return_value=scheduler)
    return scheduler


@pytest.fixture
def mock_delay(mocker):
    return mocker.patch("funds.workers.payout_executor.execute_single_payout.delay")


# =============================================================================
# Payout tasks
# =============================================================================


class TestSchedulePayouts:
    def test_summarizes_run(self, scheduler):
        store_id = str(uuid.uuid4())
        scheduler.schedule_all.return_value = ServiceResult.success(
            {"scheduled": ["p1", "p2"], "skipped": {store_id: "BELOW_THRESHOLD"}}
        )

        result = schedule_payouts()

        assert result == {"scheduled_count": 2, "skipped": {store_id: "BELOW_THRESHOLD"}}


@pytest.mark.django_db
class TestProcessDuePayouts:
    def test_queues_each_due_payout(self, scheduler, mock_delay):
        payouts = [SellerPayoutFactory(), SellerPayoutFactory()]
        scheduler.process_due.return_value = payouts

        result = process_due_payouts()

        assert result == {"queued_count": 2}
        assert [call.args[0] for call in mock_delay.call_args_list] == [str(p.id) for p in payouts]

    def test_nothing_due(self, scheduler, mock_delay):
        scheduler.process_due.return_value = []

        assert process_due_payouts() == {"queued_count": 0}
        mock_delay.assert_not_called()


@pytest.mark.django_db
class TestExecuteSinglePayout:
    def test_paid(self, scheduler):
        payout = SellerPayoutFactory(
            status=PayoutStatus.PAID,
            paid_at=datetime(2024, 5, 31, tzinfo=UTC),
            provider_reference="tr_1",
        )
        scheduler.execute.return_value = ServiceResult.success(payout)

        result = execute_single_payout(str(payout.id))

        assert result["status"] == "executed"
        assert result["provider_reference"] == "tr_1"
        scheduler.execute.assert_called_once_with(payout.id)

    def test_failed_attempt(self, scheduler):
        payout = SellerPayoutFactory(status=PayoutStatus.FAILED, retry_count=1)
        scheduler.execute.return_value = ServiceResult.success(payout)

        result = execute_single_payout(str(payout.id))

        assert result["status"] == "failed"
        assert result["payout_status"] == PayoutStatus.FAILED

    def test_unknown_outcome(self, scheduler):
        payout_id = str(uuid.uuid4())
        scheduler.execute.return_value = ServiceResult.failure(
            "Transfer outcome unknown", error_code=UNKNOWN_OUTCOME
        )

        assert execute_single_payout(payout_id) == {
            "status": "unknown_outcome",
            "payout_id": payout_id,
        }

    def test_not_executed(self, scheduler):
        scheduler.execute.return_value = ServiceResult.failure(
            "Lock held", error_code="LOCK_ACQUISITION_FAILED"
        )

        result = execute_single_payout(str(uuid.uuid4()))

        assert result["status"] == "not_executed"
        assert result["error_code"] == "LOCK_ACQUISITION_FAILED"

    def test_invalid_id(self, scheduler):
        result = execute_single_payout("not-a-uuid")

        assert result["status"] == "not_executed"
        scheduler.execute.assert_not_called()


@pytest.mark.django_db
class TestRetryFailedPayouts:
    def test_requeues_retried_payouts(self, scheduler, mock_delay):
        ready, blocked = SellerPayoutFactory(), SellerPayoutFactory()
        scheduler.due_for_retry.return_value = [ready, blocked]
        scheduler.retry.side_effect = [
            ServiceResult.success(ready),
            ServiceResult.failure("Not retryable", error_code="INVALID_STATE"),
        ]

        result = retry_failed_payouts()

        assert result == {"retried_count": 1}
        mock_delay.assert_called_once_with(str(ready.id))
        scheduler.retry.assert_any_call(ready.id, expected_version=ready.version)


@pytest.mark.django_db
class TestReconcileProcessingPayouts:
    def test_counts_outcomes(self, scheduler):
        paid = SellerPayoutFactory(status=PayoutStatus.PAID, paid_at=datetime(2024, 5, 31, tzinfo=UTC))
        failed = SellerPayoutFactory(status=PayoutStatus.FAILED)
        stuck = SellerPayoutFactory(status=PayoutStatus.PROCESSING)
        scheduler.stale_processing.return_value = [paid, failed, stuck]
        scheduler.reconcile.side_effect = [
            ServiceResult.success(paid),
            ServiceResult.success(failed),
            ServiceResult.failure("Still unknown", error_code=UNKNOWN_OUTCOME),
        ]

        assert reconcile_processing_payouts() == {"paid": 1, "failed": 1, "unresolved": 1}


# =============================================================================
# Escrow tasks
# =============================================================================


@pytest.fixture
def held_allocation(db):
    with freeze_time("2024-05-10 12:00:00"):
        payment = EscrowAccount().open(
            order_id=uuid.uuid4(),
            buyer_id=uuid.uuid4(),
            total_cents=6000,
            currency="usd",
            allocations=[AllocationSpec(store_id=uuid.uuid4(), amount_cents=6000)],
        ).data
    return payment.allocation_list[0]


@pytest.mark.django_db
class TestPromoteEligibleAllocations:
    def test_promotes_after_return_window(self, held_allocation):
        with freeze_time("2024-05-12 12:00:00"):
            EscrowAccount().mark_delivered(
                held_allocation.id, datetime(2024, 5, 11, 9, tzinfo=UTC)
            )
            assert promote_eligible_allocations() == {"promoted_count": 0}

        with freeze_time("2024-05-26 00:00:00"):
            assert promote_eligible_allocations() == {"promoted_count": 1}

        stored = EscrowAllocation.objects.get(id=held_allocation.id)
        assert stored.payout_eligible_at == datetime(2024, 5, 25, 9, tzinfo=UTC)


@pytest.mark.django_db
class TestVerifyEscrowLedger:
    def test_consistent(self, held_allocation):
        payment_id = str(held_allocation.escrow_payment_id)

        result = verify_escrow_ledger(payment_id)

        assert result["status"] == "consistent"
        assert result["ledger_cents"] == result["held_cents"] == 6000

    def test_unknown_payment(self, db):
        assert verify_escrow_ledger(str(uuid.uuid4()))["status"] == "not_found"


# =============================================================================
# Settlement tasks
# =============================================================================


@pytest.mark.django_db
class TestRunMonthlySettlements:
    def test_defaults_to_previous_month(self, held_allocation):
        with freeze_time("2024-06-01 02:00:00"):
            EscrowAccount().mark_eligible(held_allocation.id, datetime(2024, 5, 25, tzinfo=UTC))
            result = run_monthly_settlements()

        assert result["status"] == "completed"
        assert (result["year"], result["month"]) == (2024, 5)
        assert result["created_count"] == 1
        settlement = Settlement.objects.get(store_id=held_allocation.store_id)
        assert settlement.status == SettlementStatus.DRAFT
        assert settlement.total_commission_cents == 600

    def test_refreshes_existing_drafts(self, held_allocation):
        with freeze_time("2024-06-01 02:00:00"):
            EscrowAccount().mark_eligible(held_allocation.id, datetime(2024, 5, 25, tzinfo=UTC))
            run_monthly_settlements(2024, 5)
            result = run_monthly_settlements(2024, 5)

        assert result["refreshed_count"] == 1
        assert result["created_count"] == 0
        assert Settlement.objects.filter(store_id=held_allocation.store_id).count() == 1

    def test_invalid_period(self, db):
        result = run_monthly_settlements(2024, 13)

        assert result == {"status": "failed", "error_code": "INVALID_RANGE"}


@pytest.mark.django_db
class TestBuildStoreSettlement:
    def test_no_activity(self, db):
        result = build_store_settlement(str(uuid.uuid4()), 2024, 5)

        assert result["status"] == "failed"
        assert result["error_code"] == "NO_DATA"


@pytest.mark.django_db
class TestIssuePeriodInvoices:
    @freeze_time("2024-06-02 08:00:00")
    def test_issues_previous_month(self):
        SettlementFactory(status=SettlementStatus.FINALIZED, total_commission_cents=1000)

        result = issue_period_invoices()

        assert result == {"issued_count": 1, "skipped": {}, "needs_correction": []}
