"""
Monthly settlement aggregation.

SettlementAggregator rolls a store's allocations for one calendar month into
a Settlement version with one item per allocation.

Versioning:
    - No settlement yet: version 1 is created as a draft
    - Latest version is a draft: it is rebuilt in place
    - Latest version is finalized (or later): if the recomputed figures
      differ, version + 1 is created as a draft that supersedes it and
      carries its adjustments; otherwise the latest version is returned
      unchanged

Item figures (cents):
    seller_amount = allocation amount - shipping
    commission = rate(recognized_at) * (seller_amount - refunded), half-even
    net = seller_amount + shipping - commission - refunded

Items:
    Allocations opened or released in the month that are released or
    payout-eligible. One already itemized on a frozen settlement of another
    month is left out, so its net is counted once.

Usage:
    from funds.services import SettlementAggregator

    aggregator = SettlementAggregator()
    result = aggregator.build_or_update(store_id, 2024, 5)
    aggregator.finalize(result.data.id)
"""

from __future__ import annotations

import calendar
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError

from core.clock import SystemClock
from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult
from funds.exceptions import (
    CURRENCY_MISMATCH,
    DUPLICATE_VERSION,
    INVALID_RANGE,
    INVALID_STATE,
    NO_DATA,
    NOT_FOUND,
)
from funds.models import Settlement, SettlementAdjustment, SettlementItem
from funds.models.settlement import settlement_number
from funds.periods import month_bounds, validate_period
from funds.repositories import DjangoEscrowRepository, DjangoSettlementRepository
from funds.services.commission_resolver import CommissionRuleResolver, calculate_commission
from funds.state_machines import AllocationStatus, SettlementStatus

if TYPE_CHECKING:
    from datetime import datetime

    from core.protocols import Clock
    from funds.models import EscrowAllocation
    from funds.protocols import EscrowRepository, SettlementRepository

FROZEN_STATUSES = (
    SettlementStatus.FINALIZED,
    SettlementStatus.APPROVED,
    SettlementStatus.EXPORTED,
)


@dataclass
class PeriodSummary:
    """Totals across the latest settlement version of every store."""

    year: int
    month: int
    settlement_count: int = 0
    status_counts: dict[str, int] = field(default_factory=dict)
    gross_sales_cents: int = 0
    total_commission_cents: int = 0
    total_refunds_cents: int = 0
    net_payable_cents: int = 0


class SettlementAggregator(BaseService):
    """Builds and moves settlements through their lifecycle."""

    def __init__(
        self,
        settlements: SettlementRepository | None = None,
        escrow: EscrowRepository | None = None,
        resolver: CommissionRuleResolver | None = None,
        clock: Clock | None = None,
    ):
        self.settlements = settlements or DjangoSettlementRepository()
        self.escrow = escrow or DjangoEscrowRepository()
        self.resolver = resolver or CommissionRuleResolver()
        self.clock = clock or SystemClock()

    # ==========================================================================
    # Build
    # ==========================================================================

    def build_or_update(
        self, store_id: uuid.UUID, year: int, month: int
    ) -> ServiceResult[Settlement]:
        """
        Create or refresh the store's settlement for a month.

        Returns:
            ServiceResult with the settlement (``item_list`` and
            ``adjustment_list`` attached), or failure INVALID_RANGE,
            CURRENCY_MISMATCH, NO_DATA, DUPLICATE_VERSION
        """
        try:
            validate_period(year, month)
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        period_start, period_end = month_bounds(year, month)
        now = self.clock.now()

        allocations = [
            allocation
            for allocation in self.escrow.allocations_for_period(store_id, period_start, period_end)
            if allocation.status == AllocationStatus.RELEASED or allocation.eligible_as_of(now)
        ]
        # An allocation released a month after it was settled stays on the earlier settlement
        carried = self.settlements.carried_by_other_periods(
            [allocation.id for allocation in allocations], year, month, FROZEN_STATUSES
        )
        allocations = [allocation for allocation in allocations if allocation.id not in carried]
        currencies = {allocation.currency for allocation in allocations}
        if len(currencies) > 1:
            return ServiceResult.failure(
                "Allocations in one settlement must share a currency",
                error_code=CURRENCY_MISMATCH,
                errors={"currency": sorted(currencies)},
            )

        try:
            with self.atomic():
                latest = self.settlements.latest_for_period(store_id, year, month, for_update=True)
                if not allocations and latest is None:
                    return ServiceResult.failure(
                        "No settleable activity in the period",
                        error_code=NO_DATA,
                    )

                items = [self._build_item(allocation) for allocation in allocations]
                currency = currencies.pop() if currencies else latest.currency

                if latest is not None and latest.is_draft:
                    settlement = self._refresh_draft(latest, items, currency, now)
                elif latest is not None and self._unchanged(latest, items):
                    settlement = latest
                    self.settlements.load_adjustments(settlement)
                else:
                    settlement = self._create_version(
                        store_id, year, month, latest, items, currency, now
                    )
        except IntegrityError:
            self.get_logger().warning(
                "Settlement version written concurrently",
                extra={"store_id": str(store_id), "year": year, "month": month},
            )
            return ServiceResult.failure(
                "Settlement version already exists",
                error_code=DUPLICATE_VERSION,
            )

        self.get_logger().info(
            "Built settlement",
            extra={
                "settlement_id": str(settlement.id),
                "settlement_number": settlement.settlement_number,
                "store_id": str(store_id),
                "item_count": len(settlement.item_list),
                "net_payable_cents": settlement.net_payable_cents,
            },
        )
        return ServiceResult.success(settlement)

    def _build_item(self, allocation: EscrowAllocation) -> SettlementItem:
        recognized_at = allocation.recognized_at
        resolved = self.resolver.rate_or_default(
            allocation.store_id, allocation.category_ids, recognized_at
        )
        commission = calculate_commission(allocation.commission_base_cents, resolved.rate)
        return SettlementItem(
            allocation_id=allocation.id,
            escrow_payment_id=allocation.escrow_payment_id,
            order_id=allocation.escrow_payment.order_id,
            seller_amount_cents=allocation.goods_cents,
            shipping_cents=allocation.shipping_cents,
            commission_rate=resolved.rate,
            commission_rule_id=resolved.rule_id,
            commission_cents=commission,
            refunded_cents=allocation.refunded_cents,
            net_cents=allocation.amount_cents - commission - allocation.refunded_cents,
            allocation_status=allocation.status,
            recognized_at=recognized_at,
        )

    def _refresh_draft(
        self,
        settlement: Settlement,
        items: list[SettlementItem],
        currency: str,
        now: datetime,
    ) -> Settlement:
        self.settlements.replace_items(settlement, items)
        adjustments = self.settlements.load_adjustments(settlement)
        settlement.currency = currency
        settlement.generated_at = now
        settlement.recompute_totals(items, adjustments)
        self.settlements.update(settlement, ["currency", "generated_at", *TOTAL_FIELDS])
        return settlement

    def _unchanged(self, settlement: Settlement, items: list[SettlementItem]) -> bool:
        """True when a frozen version already carries exactly these figures."""
        current = self.settlements.load_items(settlement)
        return _item_signature(current) == _item_signature(items)

    def _create_version(
        self,
        store_id: uuid.UUID,
        year: int,
        month: int,
        previous: Settlement | None,
        items: list[SettlementItem],
        currency: str,
        now: datetime,
    ) -> Settlement:
        version = previous.version + 1 if previous else 1
        period_start, period_end = month_bounds(year, month)

        settlement = self.settlements.add(
            Settlement(
                store_id=store_id,
                year=year,
                month=month,
                version=version,
                settlement_number=settlement_number(store_id, year, month, version),
                currency=currency,
                period_start=period_start,
                period_end=period_end,
                generated_at=now,
                supersedes=previous,
                notes=previous.notes if previous else "",
            )
        )
        self.settlements.replace_items(settlement, items)

        adjustments: list[SettlementAdjustment] = []
        if previous is not None:
            for carried in self.settlements.load_adjustments(previous):
                adjustments.append(
                    self.settlements.add_adjustment(
                        SettlementAdjustment(
                            settlement=settlement,
                            original_year=carried.original_year,
                            original_month=carried.original_month,
                            amount_cents=carried.amount_cents,
                            reason=carried.reason,
                            related_order_id=carried.related_order_id,
                            created_at=carried.created_at,
                        )
                    )
                )
        settlement.adjustment_list = adjustments

        settlement.recompute_totals(items, adjustments)
        self.settlements.update(settlement, TOTAL_FIELDS)

        if previous is not None:
            self.get_logger().info(
                "Created corrective settlement version",
                extra={
                    "settlement_id": str(settlement.id),
                    "supersedes": str(previous.id),
                    "version": version,
                },
            )
        return settlement

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def finalize(self, settlement_id: uuid.UUID) -> ServiceResult[Settlement]:
        """DRAFT -> FINALIZED. The version is frozen from here on."""
        with self.atomic():
            settlement = self.settlements.get(settlement_id, for_update=True)
            if settlement is None:
                return ServiceResult.failure("Settlement not found", error_code=NOT_FOUND)
            if settlement.status != SettlementStatus.DRAFT:
                return self._invalid_state(settlement, "finalize")

            settlement.finalize(finalized_at=self.clock.now())
            self.settlements.update(settlement, ["status", "finalized_at"])

        self.get_logger().info(
            "Finalized settlement",
            extra={
                "settlement_id": str(settlement.id),
                "settlement_number": settlement.settlement_number,
                "net_payable_cents": settlement.net_payable_cents,
            },
        )
        return ServiceResult.success(settlement)

    def approve(self, settlement_id: uuid.UUID, approved_by: str) -> ServiceResult[Settlement]:
        """FINALIZED -> APPROVED."""
        invalid = self.validate_required(approved_by=approved_by)
        if invalid is not None:
            return invalid

        with self.atomic():
            settlement = self.settlements.get(settlement_id, for_update=True)
            if settlement is None:
                return ServiceResult.failure("Settlement not found", error_code=NOT_FOUND)
            if settlement.status != SettlementStatus.FINALIZED:
                return self._invalid_state(settlement, "approve")

            settlement.approve(approved_at=self.clock.now(), approved_by=approved_by)
            self.settlements.update(settlement, ["status", "approved_at", "approved_by"])
        return ServiceResult.success(settlement)

    def mark_exported(self, settlement_id: uuid.UUID) -> ServiceResult[Settlement]:
        """FINALIZED/APPROVED -> EXPORTED."""
        with self.atomic():
            settlement = self.settlements.get(settlement_id, for_update=True)
            if settlement is None:
                return ServiceResult.failure("Settlement not found", error_code=NOT_FOUND)
            if settlement.status not in (SettlementStatus.FINALIZED, SettlementStatus.APPROVED):
                return self._invalid_state(settlement, "export")

            settlement.mark_exported(exported_at=self.clock.now())
            self.settlements.update(settlement, ["status", "exported_at"])
        return ServiceResult.success(settlement)

    def add_adjustment(
        self,
        settlement_id: uuid.UUID,
        amount_cents: int,
        reason: str,
        original_year: int,
        original_month: int,
        related_order_id: uuid.UUID | None = None,
    ) -> ServiceResult[SettlementAdjustment]:
        """
        Carry a correction for an earlier period in a draft.

        amount_cents is signed and non-zero; the original period must differ
        from the settlement's own period.
        """
        invalid = self.validate_required(reason=reason)
        if invalid is not None:
            return invalid
        if amount_cents == 0:
            return ServiceResult.failure(
                "Adjustment amount cannot be zero",
                error_code=INVALID_RANGE,
                errors={"amount_cents": ["Must be non-zero"]},
            )
        try:
            validate_period(original_year, original_month)
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        with self.atomic():
            settlement = self.settlements.get(settlement_id, for_update=True)
            if settlement is None:
                return ServiceResult.failure("Settlement not found", error_code=NOT_FOUND)
            if not settlement.is_draft:
                return self._invalid_state(settlement, "adjust")
            if (original_year, original_month) == (settlement.year, settlement.month):
                return ServiceResult.failure(
                    "Adjustments must reference a different period",
                    error_code=INVALID_RANGE,
                    errors={"original_month": [f"{original_year}-{original_month:02d}"]},
                )

            adjustment = self.settlements.add_adjustment(
                SettlementAdjustment(
                    settlement=settlement,
                    original_year=original_year,
                    original_month=original_month,
                    amount_cents=amount_cents,
                    reason=reason.strip(),
                    related_order_id=related_order_id,
                    created_at=self.clock.now(),
                )
            )
            items = self.settlements.load_items(settlement)
            adjustments = self.settlements.load_adjustments(settlement)
            settlement.recompute_totals(items, adjustments)
            self.settlements.update(settlement, TOTAL_FIELDS)

        self.get_logger().info(
            "Added settlement adjustment",
            extra={
                "settlement_id": str(settlement.id),
                "amount_cents": amount_cents,
                "original_period": f"{original_year}-{original_month:02d}",
            },
        )
        return ServiceResult.success(adjustment)

    def update_notes(self, settlement_id: uuid.UUID, notes: str) -> ServiceResult[Settlement]:
        with self.atomic():
            settlement = self.settlements.get(settlement_id, for_update=True)
            if settlement is None:
                return ServiceResult.failure("Settlement not found", error_code=NOT_FOUND)
            if not settlement.is_draft:
                return self._invalid_state(settlement, "edit notes of")

            settlement.notes = notes
            self.settlements.update(settlement, ["notes"])
        return ServiceResult.success(settlement)

    # ==========================================================================
    # Period Operations
    # ==========================================================================

    def stores_without_settlement(self, year: int, month: int) -> list[uuid.UUID]:
        """Stores with escrow activity in the period but no settlement (missed runs)."""
        period_start, period_end = month_bounds(year, month)
        active = self.escrow.stores_with_activity(period_start, period_end)
        settled = self.settlements.store_ids_for_period(year, month)
        return [store_id for store_id in active if store_id not in settled]

    def generate_all(self, year: int, month: int) -> ServiceResult[dict[str, Any]]:
        """Build settlements for every store that is missing one."""
        try:
            validate_period(year, month)
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        created: list[str] = []
        skipped: dict[str, str] = {}
        for store_id in self.stores_without_settlement(year, month):
            result = self.build_or_update(store_id, year, month)
            if result.success:
                created.append(str(result.data.id))
            else:
                skipped[str(store_id)] = result.error_code

        self.get_logger().info(
            "Generated settlements for period",
            extra={
                "year": year,
                "month": month,
                "created_count": len(created),
                "skipped_count": len(skipped),
            },
        )
        return ServiceResult.success({"created": created, "skipped": skipped})

    def period_summary(self, year: int, month: int) -> ServiceResult[PeriodSummary]:
        try:
            validate_period(year, month)
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)

        latest: dict[uuid.UUID, Settlement] = {}
        for settlement in self.settlements.for_period(year, month):
            current = latest.get(settlement.store_id)
            if current is None or settlement.version > current.version:
                latest[settlement.store_id] = settlement

        summary = PeriodSummary(year=year, month=month, settlement_count=len(latest))
        summary.status_counts = dict(Counter(s.status for s in latest.values()))
        for settlement in latest.values():
            summary.gross_sales_cents += settlement.gross_sales_cents
            summary.total_commission_cents += settlement.total_commission_cents
            summary.total_refunds_cents += settlement.total_refunds_cents
            summary.net_payable_cents += settlement.net_payable_cents
        return ServiceResult.success(summary)

    def export_rows(self, settlement_id: uuid.UUID) -> ServiceResult[list[dict[str, Any]]]:
        """One flat row per item, ready for csv.DictWriter."""
        settlement = self.settlements.get(settlement_id)
        if settlement is None:
            return ServiceResult.failure("Settlement not found", error_code=NOT_FOUND)

        period = f"{settlement.year}-{settlement.month:02d} ({calendar.month_name[settlement.month]})"
        rows = [
            {
                "settlement_number": settlement.settlement_number,
                "period": period,
                "order_id": str(item.order_id),
                "allocation_id": str(item.allocation_id),
                "recognized_at": item.recognized_at.isoformat(),
                "seller_amount": _decimal(item.seller_amount_cents),
                "shipping": _decimal(item.shipping_cents),
                "commission_rate": str(item.commission_rate),
                "commission": _decimal(item.commission_cents),
                "refunded": _decimal(item.refunded_cents),
                "net": _decimal(item.net_cents),
                "currency": settlement.currency.upper(),
            }
            for item in self.settlements.load_items(settlement)
        ]
        return ServiceResult.success(rows)

    def _invalid_state(self, settlement: Settlement, action: str) -> ServiceResult:
        return ServiceResult.failure(
            f"Cannot {action} settlement in status {settlement.status}",
            error_code=INVALID_STATE,
            errors={"status": [settlement.status]},
        )


TOTAL_FIELDS = [
    "gross_sales_cents",
    "total_shipping_cents",
    "total_commission_cents",
    "total_refunds_cents",
    "total_adjustments_cents",
    "net_payable_cents",
    "order_count",
]


def _item_signature(items) -> set[tuple]:
    return {
        (
            item.allocation_id,
            item.seller_amount_cents,
            item.shipping_cents,
            item.commission_cents,
            item.refunded_cents,
            item.net_cents,
        )
        for item in items
    }


def _decimal(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"
