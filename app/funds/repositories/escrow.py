"""
Django ORM repository for escrow payments and allocations.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

from django.db.models import Q

from funds.models import EscrowAllocation, EscrowPayment, SellerPayoutItem
from funds.state_machines import AllocationStatus


class DjangoEscrowRepository:
    def get_payment(self, payment_id: uuid.UUID, for_update: bool = False) -> EscrowPayment | None:
        queryset = EscrowPayment.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=payment_id).first()

    def get_allocation(
        self, allocation_id: uuid.UUID, for_update: bool = False
    ) -> EscrowAllocation | None:
        queryset = EscrowAllocation.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=allocation_id).first()

    def load_allocations(
        self, payment: EscrowPayment, for_update: bool = False
    ) -> list[EscrowAllocation]:
        """Fetch the payment's allocations and attach them as ``allocation_list``."""
        queryset = EscrowAllocation.objects.filter(escrow_payment_id=payment.pk)
        if for_update:
            queryset = queryset.select_for_update()
        payment.allocation_list = list(queryset.order_by("opened_at", "id"))
        return payment.allocation_list

    def add_payment(
        self, payment: EscrowPayment, allocations: list[EscrowAllocation]
    ) -> EscrowPayment:
        payment.save(force_insert=True)
        for allocation in allocations:
            allocation.escrow_payment = payment
        EscrowAllocation.objects.bulk_create(allocations)
        payment.allocation_list = list(allocations)
        return payment

    def update_allocation(self, allocation: EscrowAllocation, fields: Iterable[str]) -> None:
        allocation.save(update_fields=[*fields, "updated_at"])

    def allocations_for_period(
        self, store_id: uuid.UUID, period_start: datetime, period_end: datetime
    ) -> list[EscrowAllocation]:
        """
        Allocations opened or released inside [period_start, period_end).

        Refunded allocations are excluded; eligibility of held ones is
        decided by the caller against its clock.
        """
        in_period = Q(opened_at__gte=period_start, opened_at__lt=period_end) | Q(
            released_at__gte=period_start, released_at__lt=period_end
        )
        return list(
            EscrowAllocation.objects.filter(in_period, store_id=store_id)
            .filter(status__in=[AllocationStatus.HELD, AllocationStatus.RELEASED])
            .select_related("escrow_payment")
            .order_by("opened_at", "id")
        )

    def eligible_for_payout(
        self, store_id: uuid.UUID, as_of: datetime, for_update: bool = False
    ) -> list[EscrowAllocation]:
        queryset = EscrowAllocation.objects.filter(
            store_id=store_id,
            status=AllocationStatus.HELD,
            payout_eligible_at__isnull=False,
            payout_eligible_at__lte=as_of,
        ).order_by("payout_eligible_at", "id")
        if for_update:
            queryset = queryset.select_for_update()
        return list(queryset)

    def stores_with_eligible(self, as_of: datetime) -> list[uuid.UUID]:
        return list(
            EscrowAllocation.objects.filter(
                status=AllocationStatus.HELD,
                payout_eligible_at__isnull=False,
                payout_eligible_at__lte=as_of,
            )
            .order_by("store_id")
            .values_list("store_id", flat=True)
            .distinct()
        )

    def stores_with_activity(self, period_start: datetime, period_end: datetime) -> list[uuid.UUID]:
        in_period = Q(opened_at__gte=period_start, opened_at__lt=period_end) | Q(
            released_at__gte=period_start, released_at__lt=period_end
        )
        return list(
            EscrowAllocation.objects.filter(in_period)
            .order_by("store_id")
            .values_list("store_id", flat=True)
            .distinct()
        )

    def has_active_claim(self, allocation_id: uuid.UUID) -> bool:
        """True while an active payout item references the allocation."""
        return SellerPayoutItem.objects.filter(
            allocation_id=allocation_id, is_active=True
        ).exists()

    def held_for_store(self, store_id: uuid.UUID) -> list[EscrowAllocation]:
        return list(
            EscrowAllocation.objects.filter(store_id=store_id, status=AllocationStatus.HELD)
        )

    def claimed_ids(self, allocation_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        return set(
            SellerPayoutItem.objects.filter(
                allocation_id__in=list(allocation_ids), is_active=True
            ).values_list("allocation_id", flat=True)
        )

    def delivered_awaiting_eligibility(self, delivered_before: datetime) -> list[EscrowAllocation]:
        """Held allocations delivered on or before the cutoff and not yet eligible."""
        return list(
            EscrowAllocation.objects.filter(
                status=AllocationStatus.HELD,
                delivered_at__isnull=False,
                delivered_at__lte=delivered_before,
                payout_eligible_at__isnull=True,
            ).order_by("delivered_at", "id")
        )
