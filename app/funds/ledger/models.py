"""
Escrow ledger model.

EscrowLedgerEntry is the append-only audit trail of money entering and
leaving escrow. For any escrow payment:

    sum(credits) - sum(debits) == sum(remaining amount of its held allocations)

Entries are never updated or deleted; save() on an existing row and delete()
both raise.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Case, Q, Sum, Value, When
from django.db.models.functions import Coalesce

from core.model_mixins import UUIDPrimaryKeyMixin
from funds.state_machines import LedgerDirection, LedgerReason


class EscrowLedgerQuerySet(models.QuerySet):
    def balance_cents(self) -> int:
        """Credits minus debits over the filtered entries."""
        result = self.aggregate(
            credits=Coalesce(
                Sum(
                    Case(
                        When(direction=LedgerDirection.CREDIT, then="amount_cents"),
                        default=Value(0),
                        output_field=models.BigIntegerField(),
                    )
                ),
                Value(0),
                output_field=models.BigIntegerField(),
            ),
            debits=Coalesce(
                Sum(
                    Case(
                        When(direction=LedgerDirection.DEBIT, then="amount_cents"),
                        default=Value(0),
                        output_field=models.BigIntegerField(),
                    )
                ),
                Value(0),
                output_field=models.BigIntegerField(),
            ),
        )
        return result["credits"] - result["debits"]


class EscrowLedgerEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    One debit or credit against an escrow payment.

    Fields:
        escrow_payment: Payment whose escrow balance moved
        allocation: Allocation the movement belongs to
        store_id: Store of the allocation (denormalized for store queries)
        direction: credit (funds in) or debit (funds out)
        amount_cents: Always positive; direction carries the sign
        reason: Why the entry was written
        recorded_at: Business time from the injected clock
        idempotency_key: Unique key preventing duplicate entries

    Constraints:
        - amount_cents must be positive
        - idempotency_key must be unique
    """

    escrow_payment = models.ForeignKey(
        "funds.EscrowPayment",
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )
    allocation = models.ForeignKey(
        "funds.EscrowAllocation",
        on_delete=models.PROTECT,
        related_name="ledger_entries",
        null=True,
        blank=True,
    )
    store_id = models.UUIDField(db_index=True)

    direction = models.CharField(max_length=10, choices=LedgerDirection.choices)
    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount in cents (always positive)",
    )
    currency = models.CharField(max_length=3, default="usd")
    reason = models.CharField(max_length=30, choices=LedgerReason.choices)
    description = models.TextField(blank=True, default="")

    recorded_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key to prevent duplicate entries",
    )

    objects = EscrowLedgerQuerySet.as_manager()

    class Meta:
        ordering = ["recorded_at", "created_at"]
        verbose_name = "Escrow ledger entry"
        verbose_name_plural = "Escrow ledger entries"
        indexes = [
            models.Index(fields=["escrow_payment", "direction"], name="escrow_ledger_payment_dir_idx"),
            models.Index(fields=["store_id", "recorded_at"], name="escrow_ledger_store_rec_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="escrow_ledger_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        sign = "+" if self.direction == LedgerDirection.CREDIT else "-"
        return f"{self.get_reason_display()}: {sign}{self.amount_cents} {self.currency.upper()}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Escrow ledger entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Escrow ledger entries cannot be deleted")
