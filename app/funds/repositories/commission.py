"""
Django ORM repository for commission rules.

Rule reads take no locks; rules are written rarely through
CommissionRuleService.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

from django.db.models import Q

from funds.models import CommissionRule
from funds.models.commission import normalize_category_id
from funds.state_machines import CommissionRuleType


class DjangoCommissionRuleRepository:
    def get(self, rule_id: uuid.UUID, for_update: bool = False) -> CommissionRule | None:
        queryset = CommissionRule.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=rule_id).first()

    def matching(
        self,
        rule_type: str,
        as_of: datetime,
        store_id: uuid.UUID | None = None,
        category_ids: Iterable[str] | None = None,
    ) -> list[CommissionRule]:
        """Active rules of one type whose window contains ``as_of``, newest first."""
        queryset = CommissionRule.objects.filter(
            Q(effective_from__isnull=True) | Q(effective_from__lte=as_of),
            Q(effective_to__isnull=True) | Q(effective_to__gte=as_of),
            rule_type=rule_type,
            is_active=True,
        )
        if rule_type == CommissionRuleType.SELLER:
            queryset = queryset.filter(store_id=store_id)
        elif rule_type == CommissionRuleType.CATEGORY:
            normalized = {normalize_category_id(value) for value in category_ids or []}
            normalized.discard(None)
            if not normalized:
                return []
            queryset = queryset.filter(category_id__in=normalized)
        return list(queryset.order_by("-created_at", "-id"))

    def in_scope(
        self,
        rule_type: str,
        category_id: str | None,
        store_id: uuid.UUID | None,
        exclude_id: uuid.UUID | None = None,
    ) -> list[CommissionRule]:
        """Active rules sharing the scope (type plus category or store)."""
        queryset = CommissionRule.objects.filter(
            rule_type=rule_type,
            category_id=normalize_category_id(category_id),
            store_id=store_id,
            is_active=True,
        )
        if exclude_id is not None:
            queryset = queryset.exclude(pk=exclude_id)
        return list(queryset.order_by("effective_from"))

    def add(self, rule: CommissionRule) -> CommissionRule:
        rule.save(force_insert=True)
        return rule

    def update(self, rule: CommissionRule, fields: Iterable[str]) -> None:
        rule.save(update_fields=[*fields, "updated_at"])
