"""
Tests for SettlementAggregator.

Tests cover:
- Building a draft from released and eligible allocations
- Draft rebuilds and corrective versions after finalization
- Lifecycle transitions, adjustments and notes
- Period generation, summaries and export rows
"""

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from funds.models import Settlement
from funds.services import AllocationSpec, SettlementAggregator
from funds.state_machines import CommissionRuleType, SettlementStatus
from funds.tests.factories import CommissionRuleFactory, SettlementFactory


@pytest.fixture
def aggregator(clock):
    return SettlementAggregator(clock=clock)


@pytest.fixture
def global_rule(db):
    return CommissionRuleFactory(commission_rate=Decimal("10.00"))


@pytest.fixture
def eligible_allocation(open_escrow, make_eligible, store_id, global_rule):
    """A $60 allocation with $5 shipping, eligible at the clock time."""
    payment = open_escrow(AllocationSpec(store_id=store_id, amount_cents=6000, shipping_cents=500))
    allocation = payment.allocation_list[0]
    make_eligible(allocation)
    return allocation


def fetch(settlement_id):
    return Settlement.objects.get(id=settlement_id)


# =============================================================================
# Build
# =============================================================================


@pytest.mark.django_db
class TestBuild:
    def test_builds_draft_version_one(self, aggregator, eligible_allocation, store_id, clock):
        result = aggregator.build_or_update(store_id, 2024, 5)

        assert result.success
        settlement = result.data
        assert settlement.version == 1
        assert settlement.status == SettlementStatus.DRAFT
        assert settlement.settlement_number.endswith("-202405-V1")
        assert settlement.generated_at == clock.now()
        assert settlement.gross_sales_cents == 5500
        assert settlement.total_shipping_cents == 500
        assert settlement.total_commission_cents == 550
        assert settlement.net_payable_cents == 5450
        assert settlement.order_count == 1

        (item,) = settlement.item_list
        assert item.allocation_id == eligible_allocation.id
        assert item.commission_rate == Decimal("10.00")
        assert item.net_cents == 5450

    def test_not_yet_eligible_allocations_excluded(
        self, aggregator, open_escrow, eligible_allocation, store_id
    ):
        open_escrow(AllocationSpec(store_id=store_id, amount_cents=2000))

        settlement = aggregator.build_or_update(store_id, 2024, 5).data

        assert len(settlement.item_list) == 1
        assert settlement.gross_sales_cents == 5500

    def test_category_rule_applies(self, aggregator, open_escrow, make_eligible, store_id, global_rule):
        CommissionRuleFactory(
            rule_type=CommissionRuleType.CATEGORY,
            category_id="books",
            commission_rate=Decimal("5.00"),
        )
        payment = open_escrow(
            AllocationSpec(store_id=store_id, amount_cents=2000, category_ids=["Books"])
        )
        make_eligible(*payment.allocation_list)

        settlement = aggregator.build_or_update(store_id, 2024, 5).data

        assert settlement.total_commission_cents == 100

    def test_default_rate_without_rules(self, aggregator, open_escrow, make_eligible, store_id, settings):
        settings.FUNDS_DEFAULT_COMMISSION_RATE = "20.00"
        payment = open_escrow(AllocationSpec(store_id=store_id, amount_cents=1000))
        make_eligible(*payment.allocation_list)

        settlement = aggregator.build_or_update(store_id, 2024, 5).data

        (item,) = settlement.item_list
        assert item.commission_cents == 200
        assert item.commission_rule_id is None

    def test_no_data(self, db, aggregator, store_id):
        result = aggregator.build_or_update(store_id, 2024, 5)

        assert result.error_code == "NO_DATA"
        assert not Settlement.objects.exists()

    def test_invalid_period(self, db, aggregator, store_id):
        assert aggregator.build_or_update(store_id, 2024, 13).error_code == "INVALID_RANGE"

    def test_currency_mismatch(self, aggregator, open_escrow, make_eligible, store_id, global_rule):
        usd = open_escrow(AllocationSpec(store_id=store_id, amount_cents=1000), currency="usd")
        eur = open_escrow(AllocationSpec(store_id=store_id, amount_cents=1000), currency="eur")
        make_eligible(*usd.allocation_list, *eur.allocation_list)

        result = aggregator.build_or_update(store_id, 2024, 5)

        assert result.error_code == "CURRENCY_MISMATCH"

    def test_allocation_settled_in_earlier_month_not_repeated(
        self, aggregator, escrow_account, eligible_allocation, store_id, clock
    ):
        may = aggregator.build_or_update(store_id, 2024, 5).data
        assert aggregator.finalize(may.id).success
        clock.set(datetime(2024, 6, 5, 9, tzinfo=UTC))
        assert escrow_account.release(eligible_allocation.id).success

        june = aggregator.build_or_update(store_id, 2024, 6)

        assert june.error_code == "NO_DATA"
        assert not Settlement.objects.filter(store_id=store_id, month=6).exists()

    def test_allocation_on_earlier_draft_still_counted(
        self, aggregator, escrow_account, eligible_allocation, store_id, clock
    ):
        aggregator.build_or_update(store_id, 2024, 5)
        clock.set(datetime(2024, 6, 5, 9, tzinfo=UTC))
        escrow_account.release(eligible_allocation.id)

        june = aggregator.build_or_update(store_id, 2024, 6).data

        assert [item.allocation_id for item in june.item_list] == [eligible_allocation.id]

    def test_draft_rebuilt_in_place(
        self, aggregator, open_escrow, make_eligible, eligible_allocation, store_id
    ):
        first = aggregator.build_or_update(store_id, 2024, 5).data
        payment = open_escrow(AllocationSpec(store_id=store_id, amount_cents=1000))
        make_eligible(*payment.allocation_list)

        second = aggregator.build_or_update(store_id, 2024, 5).data

        assert second.id == first.id
        assert second.version == 1
        assert fetch(first.id).gross_sales_cents == 6500
        assert Settlement.objects.filter(store_id=store_id).count() == 1


@pytest.mark.django_db
class TestVersioning:
    def test_unchanged_frozen_version_is_returned(self, aggregator, eligible_allocation, store_id):
        first = aggregator.build_or_update(store_id, 2024, 5).data
        aggregator.finalize(first.id)

        again = aggregator.build_or_update(store_id, 2024, 5)

        assert again.success
        assert again.data.id == first.id
        assert Settlement.objects.filter(store_id=store_id).count() == 1

    def test_refund_after_finalize_creates_version_two(
        self, aggregator, escrow_account, eligible_allocation, store_id
    ):
        first = aggregator.build_or_update(store_id, 2024, 5).data
        aggregator.finalize(first.id)
        escrow_account.refund(eligible_allocation.id, 1000)

        second = aggregator.build_or_update(store_id, 2024, 5).data

        assert second.version == 2
        assert second.supersedes_id == first.id
        assert second.status == SettlementStatus.DRAFT
        assert second.settlement_number.endswith("-V2")
        assert second.total_commission_cents == 450
        assert second.total_refunds_cents == 1000
        assert second.net_payable_cents == 4550

        frozen = fetch(first.id)
        assert frozen.status == SettlementStatus.FINALIZED
        assert frozen.net_payable_cents == 5450

    def test_adjustments_carried_to_new_version(
        self, aggregator, escrow_account, eligible_allocation, store_id
    ):
        first = aggregator.build_or_update(store_id, 2024, 5).data
        aggregator.add_adjustment(first.id, -300, "Damaged item April", 2024, 4)
        aggregator.finalize(first.id)
        escrow_account.refund(eligible_allocation.id, 1000)

        second = aggregator.build_or_update(store_id, 2024, 5).data

        assert len(second.adjustment_list) == 1
        assert second.adjustment_list[0].amount_cents == -300
        assert second.total_adjustments_cents == -300
        assert second.net_payable_cents == 4250

    def test_draft_after_finalize_rebuilds_latest(
        self, aggregator, escrow_account, eligible_allocation, store_id
    ):
        first = aggregator.build_or_update(store_id, 2024, 5).data
        aggregator.finalize(first.id)
        escrow_account.refund(eligible_allocation.id, 1000)
        second = aggregator.build_or_update(store_id, 2024, 5).data

        third = aggregator.build_or_update(store_id, 2024, 5).data

        assert third.id == second.id
        assert Settlement.objects.filter(store_id=store_id).count() == 2


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.django_db
class TestLifecycle:
    def test_finalize_approve_export(self, aggregator, eligible_allocation, store_id, clock):
        settlement = aggregator.build_or_update(store_id, 2024, 5).data

        assert aggregator.finalize(settlement.id).success
        assert aggregator.approve(settlement.id, approved_by="finance@example.com").success
        assert aggregator.mark_exported(settlement.id).success

        stored = fetch(settlement.id)
        assert stored.status == SettlementStatus.EXPORTED
        assert stored.finalized_at == clock.now()
        assert stored.approved_by == "finance@example.com"

    def test_finalize_twice(self, aggregator, eligible_allocation, store_id):
        settlement = aggregator.build_or_update(store_id, 2024, 5).data
        aggregator.finalize(settlement.id)

        assert aggregator.finalize(settlement.id).error_code == "INVALID_STATE"

    def test_approve_requires_approver(self, db, aggregator):
        settlement = SettlementFactory(status=SettlementStatus.FINALIZED)

        result = aggregator.approve(settlement.id, approved_by="  ")

        assert result.error_code == "VALIDATION_ERROR"
        assert "approved_by" in result.errors

    def test_approve_draft(self, db, aggregator):
        settlement = SettlementFactory()

        assert aggregator.approve(settlement.id, approved_by="ops").error_code == "INVALID_STATE"

    def test_export_draft(self, db, aggregator):
        assert aggregator.mark_exported(SettlementFactory().id).error_code == "INVALID_STATE"

    def test_unknown_settlement(self, db, aggregator):
        assert aggregator.finalize(uuid.uuid4()).error_code == "NOT_FOUND"


@pytest.mark.django_db
class TestAdjustments:
    def test_add_adjustment_updates_totals(self, aggregator, eligible_allocation, store_id):
        settlement = aggregator.build_or_update(store_id, 2024, 5).data

        result = aggregator.add_adjustment(settlement.id, 250, " Missed April sale ", 2024, 4)

        assert result.success
        assert result.data.reason == "Missed April sale"
        stored = fetch(settlement.id)
        assert stored.total_adjustments_cents == 250
        assert stored.net_payable_cents == 5700

    def test_zero_amount(self, db, aggregator):
        result = aggregator.add_adjustment(SettlementFactory().id, 0, "Nothing", 2024, 4)

        assert result.error_code == "INVALID_RANGE"

    def test_same_period_rejected(self, db, aggregator):
        result = aggregator.add_adjustment(SettlementFactory().id, 100, "Same month", 2024, 5)

        assert result.error_code == "INVALID_RANGE"

    def test_frozen_settlement_rejected(self, db, aggregator):
        settlement = SettlementFactory(status=SettlementStatus.FINALIZED)

        result = aggregator.add_adjustment(settlement.id, 100, "Late", 2024, 4)

        assert result.error_code == "INVALID_STATE"

    def test_reason_required(self, db, aggregator):
        result = aggregator.add_adjustment(SettlementFactory().id, 100, "", 2024, 4)

        assert result.error_code == "VALIDATION_ERROR"

    def test_update_notes_draft_only(self, db, aggregator):
        draft = SettlementFactory()
        frozen = SettlementFactory(status=SettlementStatus.FINALIZED)

        assert aggregator.update_notes(draft.id, "Checked").success
        assert fetch(draft.id).notes == "Checked"
        assert aggregator.update_notes(frozen.id, "Late").error_code == "INVALID_STATE"


# =============================================================================
# Period Operations
# =============================================================================


@pytest.mark.django_db
class TestPeriodOperations:
    def test_generate_all(
        self, aggregator, open_escrow, make_eligible, store_id, other_store_id, global_rule
    ):
        eligible = open_escrow(AllocationSpec(store_id=store_id, amount_cents=1000))
        make_eligible(*eligible.allocation_list)
        open_escrow(AllocationSpec(store_id=other_store_id, amount_cents=1000))

        result = aggregator.generate_all(2024, 5)

        assert result.success
        assert len(result.data["created"]) == 1
        assert result.data["skipped"] == {str(other_store_id): "NO_DATA"}
        assert aggregator.stores_without_settlement(2024, 5) == [other_store_id]

    def test_generate_all_skips_settled_stores(self, aggregator, eligible_allocation, store_id):
        aggregator.build_or_update(store_id, 2024, 5)

        result = aggregator.generate_all(2024, 5)

        assert result.data == {"created": [], "skipped": {}}

    def test_generate_all_logs_run_counts(
        self, caplog, monkeypatch, aggregator, open_escrow, make_eligible, store_id, other_store_id
    ):
        monkeypatch.setattr(logging.getLogger("funds"), "propagate", True)
        eligible = open_escrow(AllocationSpec(store_id=store_id, amount_cents=1000))
        make_eligible(*eligible.allocation_list)
        open_escrow(AllocationSpec(store_id=other_store_id, amount_cents=1000))

        with caplog.at_level("INFO", logger="funds"):
            result = aggregator.generate_all(2024, 5)

        assert result.success
        (record,) = [r for r in caplog.records if r.getMessage() == "Generated settlements for period"]
        assert (record.year, record.month) == (2024, 5)
        assert record.created_count == 1
        assert record.skipped_count == 1

    def test_period_summary_uses_latest_versions(self, db, aggregator, store_id, other_store_id):
        SettlementFactory(
            store_id=store_id,
            status=SettlementStatus.FINALIZED,
            net_payable_cents=5450,
            total_commission_cents=550,
        )
        SettlementFactory(store_id=store_id, version=2, net_payable_cents=4550, total_commission_cents=450)
        SettlementFactory(store_id=other_store_id, net_payable_cents=1000, total_commission_cents=100)

        summary = aggregator.period_summary(2024, 5).data

        assert summary.settlement_count == 2
        assert summary.status_counts == {SettlementStatus.DRAFT: 2}
        assert summary.net_payable_cents == 5550
        assert summary.total_commission_cents == 550

    def test_export_rows(self, aggregator, eligible_allocation, store_id):
        settlement = aggregator.build_or_update(store_id, 2024, 5).data

        (row,) = aggregator.export_rows(settlement.id).data

        assert row["settlement_number"] == settlement.settlement_number
        assert row["period"] == "2024-05 (May)"
        assert row["allocation_id"] == str(eligible_allocation.id)
        assert row["seller_amount"] == "55.00"
        assert row["shipping"] == "5.00"
        assert row["commission_rate"] == "10.00"
        assert row["commission"] == "5.50"
        assert row["refunded"] == "0.00"
        assert row["net"] == "54.50"
        assert row["currency"] == "USD"
