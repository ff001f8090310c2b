"""
Django ORM repository for payout settings, payouts and payout items.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

from django.db.models import F

from funds.models import PayoutSettings, SellerPayout, SellerPayoutItem
from funds.state_machines import PayoutStatus


class DjangoPayoutRepository:
    def get(self, payout_id: uuid.UUID, for_update: bool = False) -> SellerPayout | None:
        queryset = SellerPayout.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=payout_id).first()

    def get_settings(self, store_id: uuid.UUID) -> PayoutSettings | None:
        return PayoutSettings.objects.filter(store_id=store_id).first()

    def verified_store_ids(self) -> list[uuid.UUID]:
        return list(
            PayoutSettings.objects.filter(is_verified=True)
            .order_by("store_id")
            .values_list("store_id", flat=True)
        )

    def open_for_store(self, store_id: uuid.UUID, for_update: bool = False) -> SellerPayout | None:
        """The store's SCHEDULED payout that has never been attempted, if any."""
        queryset = SellerPayout.objects.filter(
            store_id=store_id,
            status=PayoutStatus.SCHEDULED,
            retry_count=0,
        )
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.order_by("scheduled_date").first()

    def load_items(self, payout: SellerPayout, active_only: bool = True) -> list[SellerPayoutItem]:
        """Fetch items and attach them as ``item_list``."""
        queryset = SellerPayoutItem.objects.filter(payout_id=payout.pk)
        if active_only:
            queryset = queryset.filter(is_active=True)
        payout.item_list = list(queryset.order_by("created_at", "id"))
        return payout.item_list

    def add(self, payout: SellerPayout) -> SellerPayout:
        payout.save(force_insert=True)
        return payout

    def update(self, payout: SellerPayout, fields: Iterable[str]) -> None:
        payout.save(update_fields=[*fields, "updated_at"])

    def add_items(self, items: list[SellerPayoutItem]) -> None:
        SellerPayoutItem.objects.bulk_create(items)

    def deactivate_items(self, payout: SellerPayout) -> int:
        """Release the payout's claims on its allocations."""
        return SellerPayoutItem.objects.filter(payout_id=payout.pk, is_active=True).update(
            is_active=False
        )

    def reactivate_items(self, payout: SellerPayout) -> int:
        return SellerPayoutItem.objects.filter(payout_id=payout.pk, is_active=False).update(
            is_active=True
        )

    def due(self, before: datetime) -> list[SellerPayout]:
        return list(
            SellerPayout.objects.filter(
                status=PayoutStatus.SCHEDULED,
                scheduled_date__lt=before,
            ).order_by("scheduled_date", "id")
        )

    def due_for_retry(self, as_of: datetime) -> list[SellerPayout]:
        return list(
            SellerPayout.objects.filter(
                status=PayoutStatus.FAILED,
                next_retry_at__isnull=False,
                next_retry_at__lte=as_of,
                retry_count__lt=F("max_retries"),
            ).order_by("next_retry_at", "id")
        )

    def processing(self, started_before: datetime | None = None) -> list[SellerPayout]:
        queryset = SellerPayout.objects.filter(status=PayoutStatus.PROCESSING)
        if started_before is not None:
            queryset = queryset.filter(processing_started_at__lte=started_before)
        return list(queryset.order_by("processing_started_at", "id"))
