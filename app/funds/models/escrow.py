"""
Escrow models.

An EscrowPayment records one captured buyer payment. It owns one
EscrowAllocation per (store, shipment) present in the order; allocation
amounts always sum to the payment total.

Usage:
    from funds.models import EscrowAllocation

    allocation.release(released_at=now, reference="PO-20240531-...")
    allocation.save()
"""

from __future__ import annotations

from datetime import datetime

from django.db import models
from django.db.models import F, Q

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from funds.state_machines import AllocationStatus


class EscrowPayment(UUIDPrimaryKeyMixin, BaseModel):
    """
    One buyer payment capture held in escrow.

    Immutable after creation; state changes happen on its allocations.

    Fields:
        order_id: Order the payment was captured for
        buyer_id: Paying customer
        total_cents: Captured amount in cents
        currency: ISO 4217 currency code (lowercase)
        opened_at: Capture time from the injected clock
        payment_reference: Provider reference of the capture, if known
    """

    order_id = models.UUIDField(db_index=True)
    buyer_id = models.UUIDField(db_index=True)
    total_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="usd")
    opened_at = models.DateTimeField(db_index=True)
    payment_reference = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-opened_at"]
        verbose_name = "Escrow payment"
        verbose_name_plural = "Escrow payments"
        constraints = [
            models.CheckConstraint(
                condition=Q(total_cents__gt=0),
                name="escrow_payment_total_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowPayment({self.order_id}, {self.total_cents / 100:.2f} {self.currency.upper()})"


class EscrowAllocation(UUIDPrimaryKeyMixin, BaseModel):
    """
    One store's slice of an escrow payment.

    State Flow:
        HELD -> RELEASED (payout confirmed)
        HELD -> REFUNDED (full refund)

    Fields:
        amount_cents: Original allocated amount, shipping included; never changes
        shipping_cents: Shipping part of amount_cents (not commissionable)
        refunded_cents: Sum of partial and full refunds against this allocation
        category_ids: Normalized category identifiers of the items, used for
            commission resolution
        delivered_at: Shipment delivery time reported by the order workflow
        payout_eligible_at: When the return window elapsed; None until then
        released_at / refunded_at: Terminal transition times

    Constraints:
        - amount_cents > 0
        - shipping_cents <= amount_cents
        - refunded_cents <= amount_cents
    """

    escrow_payment = models.ForeignKey(
        EscrowPayment,
        on_delete=models.PROTECT,
        related_name="allocations",
    )
    store_id = models.UUIDField(db_index=True)
    shipment_id = models.UUIDField(null=True, blank=True)

    amount_cents = models.PositiveBigIntegerField()
    shipping_cents = models.PositiveBigIntegerField(default=0)
    refunded_cents = models.PositiveBigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="usd")
    category_ids = models.JSONField(default=list, blank=True)

    status = FSMField(
        default=AllocationStatus.HELD,
        choices=AllocationStatus.choices,
        db_index=True,
        protected=True,
    )

    opened_at = models.DateTimeField(db_index=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    payout_eligible_at = models.DateTimeField(null=True, blank=True, db_index=True)
    released_at = models.DateTimeField(null=True, blank=True, db_index=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    payout_reference = models.CharField(max_length=255, blank=True, default="")
    refund_reference = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["opened_at", "id"]
        verbose_name = "Escrow allocation"
        verbose_name_plural = "Escrow allocations"
        indexes = [
            models.Index(
                fields=["store_id", "status", "payout_eligible_at"],
                name="escrow_alloc_store_status_idx",
            ),
            models.Index(fields=["store_id", "opened_at"], name="escrow_alloc_store_opened_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="escrow_allocation_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(shipping_cents__lte=F("amount_cents")),
                name="escrow_allocation_shipping_within_amount",
            ),
            models.CheckConstraint(
                condition=Q(refunded_cents__lte=F("amount_cents")),
                name="escrow_allocation_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowAllocation({self.store_id}, {self.status}, {self.amount_cents})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=AllocationStatus.HELD,
        target=AllocationStatus.RELEASED,
    )
    def release(self, released_at: datetime, reference: str = ""):
        """
        Funds paid out to the seller.

        Transition: HELD -> RELEASED
        """
        self.released_at = released_at
        self.payout_reference = reference or ""

    @transition(
        field=status,
        source=AllocationStatus.HELD,
        target=AllocationStatus.REFUNDED,
    )
    def refund(self, refunded_at: datetime, amount_cents: int, reference: str = ""):
        """
        Refund the remaining amount to the buyer.

        Transition: HELD -> REFUNDED
        """
        self.refunded_cents += amount_cents
        self.refunded_at = refunded_at
        self.refund_reference = reference or ""

    def apply_partial_refund(self, amount_cents: int, reference: str = "") -> None:
        """Reduce the refundable remainder without leaving HELD."""
        self.refunded_cents += amount_cents
        if reference:
            self.refund_reference = reference

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def remaining_cents(self) -> int:
        """Amount still refundable or payable."""
        return self.amount_cents - self.refunded_cents

    @property
    def goods_cents(self) -> int:
        return self.amount_cents - self.shipping_cents

    @property
    def commission_base_cents(self) -> int:
        """Goods value net of refunds; shipping is not commissionable."""
        return max(self.goods_cents - self.refunded_cents, 0)

    @property
    def is_held(self) -> bool:
        return self.status == AllocationStatus.HELD

    @property
    def is_terminal(self) -> bool:
        return self.status in (AllocationStatus.RELEASED, AllocationStatus.REFUNDED)

    @property
    def is_eligible_for_payout(self) -> bool:
        return self.is_held and self.payout_eligible_at is not None

    def eligible_as_of(self, as_of: datetime) -> bool:
        return self.is_eligible_for_payout and self.payout_eligible_at <= as_of

    @property
    def recognized_at(self) -> datetime:
        """Date commission is resolved at: release time, else capture time."""
        return self.released_at or self.opened_at
