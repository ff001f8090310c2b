"""
Settlement models.

A Settlement is a versioned monthly rollup of one store's allocations.
Version 1 is created as a draft; a draft is rebuilt in place on every run.
Once finalized a version is frozen, and a later run for the same period
creates version + 1 instead.

Models:
    Settlement: One version of a store's monthly settlement
    SettlementItem: One contributing allocation
    SettlementAdjustment: Manual correction referencing another period
"""

from __future__ import annotations

from datetime import datetime

from django.db import models
from django.db.models import Q

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from funds.periods import MAX_SETTLEMENT_YEAR, MIN_SETTLEMENT_YEAR
from funds.state_machines import AllocationStatus, SettlementStatus


def settlement_number(store_id, year: int, month: int, version: int) -> str:
    """STL-{store prefix}-{YYYYMM}-V{version}"""
    prefix = str(store_id).replace("-", "")[:8].upper()
    return f"STL-{prefix}-{year}{month:02d}-V{version}"


class Settlement(UUIDPrimaryKeyMixin, BaseModel):
    """
    One version of a store's settlement for a calendar month.

    State Flow:
        DRAFT -> FINALIZED -> APPROVED -> EXPORTED
        FINALIZED -> EXPORTED

    Totals (cents):
        gross_sales = sum(allocation amount - shipping)
        total_shipping = sum(shipping)
        total_commission = sum(item commission)
        total_refunds = sum(item refunded)
        total_adjustments = sum(adjustment amounts), signed
        net_payable = gross + shipping - commission - refunds + adjustments

    Constraints:
        - (store_id, year, month, version) is unique
        - month 1..12, year 2020..2100, version >= 1
    """

    store_id = models.UUIDField(db_index=True)
    year = models.PositiveSmallIntegerField()
    month = models.PositiveSmallIntegerField()
    version = models.PositiveIntegerField(default=1)
    settlement_number = models.CharField(max_length=40, db_index=True)

    status = FSMField(
        default=SettlementStatus.DRAFT,
        choices=SettlementStatus.choices,
        db_index=True,
        protected=True,
    )

    currency = models.CharField(max_length=3, default="usd")
    period_start = models.DateTimeField()
    period_end = models.DateTimeField()

    # ==========================================================================
    # Totals
    # ==========================================================================

    gross_sales_cents = models.BigIntegerField(default=0)
    total_shipping_cents = models.BigIntegerField(default=0)
    total_commission_cents = models.BigIntegerField(default=0)
    total_refunds_cents = models.BigIntegerField(default=0)
    total_adjustments_cents = models.BigIntegerField(default=0)
    net_payable_cents = models.BigIntegerField(default=0)
    order_count = models.PositiveIntegerField(default=0)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    supersedes = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        related_name="superseded_by",
        null=True,
        blank=True,
    )
    notes = models.TextField(blank=True, default="")
    generated_at = models.DateTimeField()
    finalized_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.CharField(max_length=255, blank=True, default="")
    exported_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-year", "-month", "store_id", "-version"]
        verbose_name = "Settlement"
        verbose_name_plural = "Settlements"
        indexes = [
            models.Index(fields=["year", "month", "status"], name="settlement_period_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["store_id", "year", "month", "version"],
                name="settlement_store_period_version_unique",
            ),
            models.CheckConstraint(
                condition=Q(month__gte=1) & Q(month__lte=12),
                name="settlement_month_range",
            ),
            models.CheckConstraint(
                condition=Q(year__gte=MIN_SETTLEMENT_YEAR) & Q(year__lte=MAX_SETTLEMENT_YEAR),
                name="settlement_year_range",
            ),
            models.CheckConstraint(
                condition=Q(version__gte=1),
                name="settlement_version_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.settlement_number} ({self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SettlementStatus.DRAFT,
        target=SettlementStatus.FINALIZED,
    )
    def finalize(self, finalized_at: datetime):
        """Freeze this version. Transition: DRAFT -> FINALIZED"""
        self.finalized_at = finalized_at

    @transition(
        field=status,
        source=SettlementStatus.FINALIZED,
        target=SettlementStatus.APPROVED,
    )
    def approve(self, approved_at: datetime, approved_by: str):
        """Transition: FINALIZED -> APPROVED"""
        self.approved_at = approved_at
        self.approved_by = approved_by

    @transition(
        field=status,
        source=[SettlementStatus.FINALIZED, SettlementStatus.APPROVED],
        target=SettlementStatus.EXPORTED,
    )
    def mark_exported(self, exported_at: datetime):
        """Handed to accounting. Transition: FINALIZED/APPROVED -> EXPORTED"""
        self.exported_at = exported_at

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_draft(self) -> bool:
        return self.status == SettlementStatus.DRAFT

    @property
    def is_finalized(self) -> bool:
        """True for every frozen version (finalized, approved or exported)."""
        return self.status != SettlementStatus.DRAFT

    def recompute_totals(self, items: list[SettlementItem], adjustments: list[SettlementAdjustment]) -> None:
        """Recalculate every total from the given children."""
        self.gross_sales_cents = sum(item.seller_amount_cents for item in items)
        self.total_shipping_cents = sum(item.shipping_cents for item in items)
        self.total_commission_cents = sum(item.commission_cents for item in items)
        self.total_refunds_cents = sum(item.refunded_cents for item in items)
        self.total_adjustments_cents = sum(adj.amount_cents for adj in adjustments)
        self.net_payable_cents = (
            self.gross_sales_cents
            + self.total_shipping_cents
            - self.total_commission_cents
            - self.total_refunds_cents
            + self.total_adjustments_cents
        )
        self.order_count = len({item.order_id for item in items})


class SettlementItem(UUIDPrimaryKeyMixin, models.Model):
    """
    One allocation's contribution to a settlement version.

    net_cents = seller_amount + shipping - commission - refunded
    """

    settlement = models.ForeignKey(
        Settlement,
        on_delete=models.CASCADE,
        related_name="items",
    )
    allocation = models.ForeignKey(
        "funds.EscrowAllocation",
        on_delete=models.PROTECT,
        related_name="settlement_items",
    )
    escrow_payment_id = models.UUIDField()
    order_id = models.UUIDField()

    seller_amount_cents = models.BigIntegerField()
    shipping_cents = models.BigIntegerField(default=0)
    commission_rate = models.DecimalField(max_digits=5, decimal_places=2)
    commission_rule_id = models.UUIDField(null=True, blank=True)
    commission_cents = models.BigIntegerField()
    refunded_cents = models.BigIntegerField(default=0)
    net_cents = models.BigIntegerField()

    allocation_status = models.CharField(max_length=20, choices=AllocationStatus.choices)
    recognized_at = models.DateTimeField()

    class Meta:
        ordering = ["recognized_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["settlement", "allocation"],
                name="settlement_item_allocation_unique",
            ),
        ]

    def __str__(self) -> str:
        return f"SettlementItem({self.allocation_id}, net={self.net_cents})"


class SettlementAdjustment(UUIDPrimaryKeyMixin, models.Model):
    """
    Manual correction carried in a settlement for an earlier period.

    amount_cents is signed: positive owes the seller more, negative less.
    """

    settlement = models.ForeignKey(
        Settlement,
        on_delete=models.CASCADE,
        related_name="adjustments",
    )
    original_year = models.PositiveSmallIntegerField()
    original_month = models.PositiveSmallIntegerField()
    amount_cents = models.BigIntegerField()
    reason = models.CharField(max_length=500)
    related_order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField()

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=~Q(amount_cents=0),
                name="settlement_adjustment_nonzero",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"SettlementAdjustment({self.original_year}-{self.original_month:02d}, "
            f"{self.amount_cents})"
        )
