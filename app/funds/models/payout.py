"""
Seller payout models.

A SellerPayout batches a store's eligible escrow allocations into one
transfer. Each allocation joins through a SellerPayoutItem; at most one
active item may reference an allocation at a time, enforced by a partial
unique index.

Usage:
    from funds.models import SellerPayout

    payout.start_processing(started_at=now)
    payout.save()

    # After the provider confirms the transfer
    payout.mark_paid(paid_at=now, provider_reference="tr_123")
    payout.save()
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from django.db import models
from django.db.models import Q

from django_fsm import FSMField, transition

from core.model_mixins import OptimisticLockMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel
from funds.state_machines import PayoutFrequency, PayoutMethod, PayoutStatus


class PayoutSettings(UUIDPrimaryKeyMixin, BaseModel):
    """
    How and when one store is paid.

    Fields:
        payout_method: Transfer rail used for the store
        destination_reference: Provider account identifier (acct_xxx for
            Stripe Connect, masked IBAN for bank transfer)
        is_verified: Destination confirmed; unverified stores are not scheduled
        frequency: weekly, biweekly or monthly
        payout_day: Weekday for weekly/biweekly (0=Monday), day of month for
            monthly (clamped to the month length)
        minimum_payout_cents: Payouts below this are not created
    """

    store_id = models.UUIDField(unique=True)
    payout_method = models.CharField(
        max_length=30,
        choices=PayoutMethod.choices,
        default=PayoutMethod.STRIPE_CONNECT,
    )
    destination_reference = models.CharField(max_length=255, blank=True, default="")
    is_verified = models.BooleanField(default=False)

    frequency = models.CharField(
        max_length=20,
        choices=PayoutFrequency.choices,
        default=PayoutFrequency.WEEKLY,
    )
    payout_day = models.PositiveSmallIntegerField(default=4)
    minimum_payout_cents = models.PositiveBigIntegerField(default=1000)
    currency = models.CharField(max_length=3, default="usd")

    class Meta:
        verbose_name = "Payout settings"
        verbose_name_plural = "Payout settings"
        constraints = [
            models.CheckConstraint(
                condition=Q(payout_day__lte=31),
                name="payout_settings_day_range",
            ),
        ]

    def __str__(self) -> str:
        return f"PayoutSettings({self.store_id}, {self.frequency}, {self.payout_method})"


class SellerPayout(UUIDPrimaryKeyMixin, OptimisticLockMixin, BaseModel):
    """
    One transfer of escrowed funds to a store.

    State Flow:
        SCHEDULED -> PROCESSING -> PAID
        SCHEDULED/PROCESSING -> FAILED
        FAILED -> SCHEDULED (automatic retry, or operator reschedule)

    Retry:
        retry_count counts failed attempts. A FAILED payout with
        retry_count < max_retries and next_retry_at set waits for the retry
        sweep; any other FAILED payout is terminal and its items are
        deactivated so the allocations can be scheduled again.
    """

    store_id = models.UUIDField(db_index=True)

    status = FSMField(
        default=PayoutStatus.SCHEDULED,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
    )
    payout_reference = models.CharField(max_length=64, unique=True)
    scheduled_date = models.DateTimeField(db_index=True)

    total_cents = models.BigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="usd")
    payout_method = models.CharField(max_length=30, choices=PayoutMethod.choices)
    destination_reference = models.CharField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Retry
    # ==========================================================================

    retry_count = models.PositiveIntegerField(default=0)
    max_retries = models.PositiveIntegerField(default=3)
    next_retry_at = models.DateTimeField(null=True, blank=True, db_index=True)

    # ==========================================================================
    # Outcome
    # ==========================================================================

    provider_reference = models.CharField(max_length=255, blank=True, default="")
    processing_started_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    # Shown to the seller
    failure_reason = models.CharField(max_length=255, blank=True, default="")
    failure_code = models.CharField(max_length=100, blank=True, default="")
    # Provider detail, admin only
    last_error = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-scheduled_date"]
        verbose_name = "Seller payout"
        verbose_name_plural = "Seller payouts"
        indexes = [
            models.Index(fields=["store_id", "status"], name="payout_store_status_idx"),
            models.Index(fields=["status", "scheduled_date"], name="payout_status_scheduled_idx"),
            models.Index(fields=["status", "next_retry_at"], name="payout_status_retry_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(total_cents__gte=0),
                name="seller_payout_total_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"SellerPayout({self.payout_reference}, {self.status}, {self.total_cents})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PayoutStatus.SCHEDULED,
        target=PayoutStatus.PROCESSING,
    )
    def start_processing(self, started_at: datetime):
        """
        Transfer call about to be made.

        Transition: SCHEDULED -> PROCESSING
        """
        self.processing_started_at = started_at
        self.next_retry_at = None

    @transition(
        field=status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.PAID,
    )
    def mark_paid(self, paid_at: datetime, provider_reference: str = ""):
        """Transition: PROCESSING -> PAID"""
        self.paid_at = paid_at
        self.provider_reference = provider_reference or ""
        self.failure_reason = ""
        self.failure_code = ""

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING],
        target=PayoutStatus.FAILED,
    )
    def mark_failed(
        self,
        failed_at: datetime,
        reason: str,
        code: str = "",
        detail: str = "",
        next_retry_at: datetime | None = None,
    ):
        """
        Record a failed attempt.

        Transition: SCHEDULED/PROCESSING -> FAILED
        """
        self.retry_count += 1
        self.failed_at = failed_at
        self.failure_reason = reason[:255]
        self.failure_code = code
        self.last_error = detail
        self.next_retry_at = next_retry_at

    @transition(
        field=status,
        source=PayoutStatus.FAILED,
        target=PayoutStatus.SCHEDULED,
        conditions=[lambda payout: payout.can_retry],
    )
    def retry(self, scheduled_date: datetime):
        """
        Automatic retry after backoff.

        Transition: FAILED -> SCHEDULED
        """
        self.scheduled_date = scheduled_date
        self.next_retry_at = None

    @transition(
        field=status,
        source=PayoutStatus.FAILED,
        target=PayoutStatus.SCHEDULED,
    )
    def reschedule(self, scheduled_date: datetime):
        """
        Operator action on a terminally failed payout.

        Transition: FAILED -> SCHEDULED (retry budget reset)
        """
        self.scheduled_date = scheduled_date
        self.retry_count = 0
        self.next_retry_at = None
        self.failure_reason = ""
        self.failure_code = ""

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def can_retry(self) -> bool:
        return (
            self.status == PayoutStatus.FAILED
            and self.retry_count < self.max_retries
            and self.next_retry_at is not None
        )

    @property
    def is_terminal_failure(self) -> bool:
        return self.status == PayoutStatus.FAILED and not self.can_retry

    @property
    def is_active(self) -> bool:
        """Still claims its allocations."""
        return not self.is_terminal_failure


class SellerPayoutItem(UUIDPrimaryKeyMixin, models.Model):
    """
    One allocation carried by a payout.

    amount_cents = gross_cents - commission_cents, where gross_cents is the
    allocation's remaining amount when the payout was scheduled.

    Constraints:
        - allocation is unique among active items
    """

    payout = models.ForeignKey(
        SellerPayout,
        on_delete=models.CASCADE,
        related_name="items",
    )
    allocation = models.ForeignKey(
        "funds.EscrowAllocation",
        on_delete=models.PROTECT,
        related_name="payout_items",
    )
    escrow_payment_id = models.UUIDField()

    gross_cents = models.BigIntegerField()
    commission_rate = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("0")
    )
    commission_cents = models.BigIntegerField(default=0)
    amount_cents = models.BigIntegerField()
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["allocation"],
                condition=Q(is_active=True),
                name="payout_item_active_allocation_unique",
            ),
            models.CheckConstraint(
                condition=Q(amount_cents__gte=0),
                name="payout_item_amount_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"SellerPayoutItem({self.allocation_id}, {self.amount_cents})"
