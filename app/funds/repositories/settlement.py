"""
Django ORM repository for settlements, their items and adjustments.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from funds.models import Settlement, SettlementAdjustment, SettlementItem


class DjangoSettlementRepository:
    def get(self, settlement_id: uuid.UUID, for_update: bool = False) -> Settlement | None:
        queryset = Settlement.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=settlement_id).first()

    def latest_for_period(
        self, store_id: uuid.UUID, year: int, month: int, for_update: bool = False
    ) -> Settlement | None:
        """Highest version for (store, year, month)."""
        queryset = Settlement.objects.filter(store_id=store_id, year=year, month=month)
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.order_by("-version").first()

    def for_period(
        self, year: int, month: int, statuses: Iterable[str] | None = None
    ) -> list[Settlement]:
        queryset = Settlement.objects.filter(year=year, month=month)
        if statuses is not None:
            queryset = queryset.filter(status__in=list(statuses))
        return list(queryset.order_by("store_id", "version"))

    def store_ids_for_period(self, year: int, month: int) -> set[uuid.UUID]:
        return set(
            Settlement.objects.filter(year=year, month=month).values_list("store_id", flat=True)
        )

    def load_items(self, settlement: Settlement) -> list[SettlementItem]:
        """Fetch items and attach them as ``item_list``."""
        settlement.item_list = list(
            SettlementItem.objects.filter(settlement_id=settlement.pk).order_by(
                "recognized_at", "id"
            )
        )
        return settlement.item_list

    def load_adjustments(self, settlement: Settlement) -> list[SettlementAdjustment]:
        """Fetch adjustments and attach them as ``adjustment_list``."""
        settlement.adjustment_list = list(
            SettlementAdjustment.objects.filter(settlement_id=settlement.pk).order_by(
                "created_at", "id"
            )
        )
        return settlement.adjustment_list

    def add(self, settlement: Settlement) -> Settlement:
        settlement.save(force_insert=True)
        return settlement

    def update(self, settlement: Settlement, fields: Iterable[str]) -> None:
        settlement.save(update_fields=[*fields, "updated_at"])

    def replace_items(self, settlement: Settlement, items: list[SettlementItem]) -> None:
        """Swap the item set of a draft."""
        SettlementItem.objects.filter(settlement_id=settlement.pk).delete()
        for item in items:
            item.settlement = settlement
        SettlementItem.objects.bulk_create(items)
        settlement.item_list = list(items)

    def add_adjustment(self, adjustment: SettlementAdjustment) -> SettlementAdjustment:
        adjustment.save(force_insert=True)
        return adjustment

    def carried_by_other_periods(
        self,
        allocation_ids: Iterable[uuid.UUID],
        year: int,
        month: int,
        statuses: Iterable[str],
    ) -> set[uuid.UUID]:
        """Allocations already itemized on a settlement of another month in ``statuses``."""
        return set(
            SettlementItem.objects.filter(
                allocation_id__in=list(allocation_ids),
                settlement__status__in=list(statuses),
            )
            .exclude(settlement__year=year, settlement__month=month)
            .values_list("allocation_id", flat=True)
        )
