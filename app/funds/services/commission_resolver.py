"""
Commission rate resolution and rule administration.

Resolution order, first match wins:
    1. Active SELLER rule for the store whose window contains the date
    2. Active CATEGORY rule for the category whose window contains the date
    3. Active GLOBAL rule whose window contains the date

If a scope has several matching rules (overlap is prevented on write, not by
the database) the most recently created one wins. Category identifiers are
compared case-insensitively.

Usage:
    from funds.services import CommissionRuleResolver, calculate_commission

    resolver = CommissionRuleResolver()
    result = resolver.resolve(store_id, "books", as_of=now)
    if result.success:
        commission = calculate_commission(goods_cents, result.data.rate)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import BaseService, ServiceResult
from funds.exceptions import INVALID_RANGE, NOT_FOUND, RULE_OVERLAP, InvalidRangeError
from funds.ledger.types import HUNDRED, round_cents
from funds.models import CommissionRule
from funds.models.commission import normalize_category_id
from funds.periods import windows_overlap
from funds.repositories import DjangoCommissionRuleRepository
from funds.state_machines import CommissionRuleType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from funds.protocols import CommissionRuleRepository

MIN_RATE = Decimal("0")
MAX_RATE = Decimal("100")

_UNSET = object()


def calculate_commission(base_cents: int, rate: Decimal) -> int:
    """
    Commission in cents for ``rate`` percent of ``base_cents``.

    Rounded half-even to the cent.

    Raises:
        InvalidRangeError: rate outside 0..100 or negative base
    """
    rate = Decimal(rate)
    if not MIN_RATE <= rate <= MAX_RATE:
        raise InvalidRangeError(
            "Commission rate must be between 0 and 100",
            details={"commission_rate": str(rate)},
        )
    if base_cents < 0:
        raise InvalidRangeError(
            "Commission base cannot be negative",
            details={"base_cents": base_cents},
        )
    return round_cents(Decimal(base_cents) * rate / HUNDRED)


@dataclass(frozen=True)
class ResolvedRate:
    """
    A resolved commission rate.

    rule_id and rule_type are None when the configured default was used.
    """

    rate: Decimal
    rule_id: uuid.UUID | None = None
    rule_type: str | None = None

    @classmethod
    def from_rule(cls, rule: CommissionRule) -> ResolvedRate:
        return cls(rate=rule.commission_rate, rule_id=rule.id, rule_type=rule.rule_type)

    @property
    def is_default(self) -> bool:
        return self.rule_id is None


class CommissionRuleResolver(BaseService):
    """Resolves the commission rate for a (store, category, date)."""

    def __init__(self, rules: CommissionRuleRepository | None = None):
        self.rules = rules or DjangoCommissionRuleRepository()

    def resolve(
        self,
        store_id: uuid.UUID,
        category_id: str | None,
        as_of: datetime,
    ) -> ServiceResult[ResolvedRate]:
        """
        Resolve the rate for one optional category.

        Returns:
            ServiceResult with ResolvedRate, or failure NOT_FOUND when no
            rule of any scope applies
        """
        categories = [category_id] if category_id else []
        return self.resolve_for_categories(store_id, categories, as_of, prefer="newest")

    def resolve_for_categories(
        self,
        store_id: uuid.UUID,
        category_ids: Iterable[str],
        as_of: datetime,
        prefer: str = "highest",
    ) -> ServiceResult[ResolvedRate]:
        """
        Resolve the rate for an allocation spanning several categories.

        A seller rule wins outright. Otherwise the highest matching category
        rate applies (``prefer="highest"``), or the newest matching category
        rule (``prefer="newest"``). Global comes last.
        """
        seller_rules = self.rules.matching(CommissionRuleType.SELLER, as_of, store_id=store_id)
        if seller_rules:
            return ServiceResult.success(ResolvedRate.from_rule(seller_rules[0]))

        categories = [value for value in category_ids if normalize_category_id(value)]
        if categories:
            category_rules = self.rules.matching(
                CommissionRuleType.CATEGORY, as_of, category_ids=categories
            )
            if category_rules:
                if prefer == "highest":
                    # Stable sort keeps newest-first among equal rates
                    category_rules = sorted(
                        category_rules, key=lambda rule: rule.commission_rate, reverse=True
                    )
                return ServiceResult.success(ResolvedRate.from_rule(category_rules[0]))

        global_rules = self.rules.matching(CommissionRuleType.GLOBAL, as_of)
        if global_rules:
            return ServiceResult.success(ResolvedRate.from_rule(global_rules[0]))

        return ServiceResult.failure(
            "No commission rule applies",
            error_code=NOT_FOUND,
        )

    def rate_or_default(
        self,
        store_id: uuid.UUID,
        category_ids: Iterable[str],
        as_of: datetime,
    ) -> ResolvedRate:
        """Resolved rate, falling back to FUNDS_DEFAULT_COMMISSION_RATE."""
        result = self.resolve_for_categories(store_id, list(category_ids), as_of)
        if result.success:
            return result.data

        default_rate = Decimal(settings.FUNDS_DEFAULT_COMMISSION_RATE)
        self.get_logger().info(
            "No commission rule applies, using default rate",
            extra={
                "store_id": str(store_id),
                "as_of": as_of.isoformat(),
                "commission_rate": str(default_rate),
            },
        )
        return ResolvedRate(rate=default_rate)


class CommissionRuleService(BaseService):
    """
    Commission rule administration.

    Every write that can make a rule active or move its window runs the
    overlap query first; conflicting rules come back in ServiceResult.data.
    """

    def __init__(self, rules: CommissionRuleRepository | None = None):
        self.rules = rules or DjangoCommissionRuleRepository()

    def get_overlapping_rules(
        self,
        rule_type: str,
        category_id: str | None,
        store_id: uuid.UUID | None,
        effective_from: datetime | None,
        effective_to: datetime | None,
        exclude_id: uuid.UUID | None = None,
    ) -> list[CommissionRule]:
        """Active rules of the same scope whose window overlaps the given one."""
        candidates = self.rules.in_scope(rule_type, category_id, store_id, exclude_id=exclude_id)
        return [
            rule
            for rule in candidates
            if windows_overlap(
                rule.effective_from, rule.effective_to, effective_from, effective_to
            )
        ]

    def create_rule(
        self,
        rule_type: str,
        commission_rate: Decimal,
        category_id: str | None = None,
        store_id: uuid.UUID | None = None,
        effective_from: datetime | None = None,
        effective_to: datetime | None = None,
        description: str = "",
        is_active: bool = True,
    ) -> ServiceResult[CommissionRule]:
        category_id = normalize_category_id(category_id)
        invalid = self._validate(
            rule_type, commission_rate, category_id, store_id, effective_from, effective_to
        )
        if invalid is not None:
            return invalid

        with self.atomic():
            if is_active:
                conflicts = self.get_overlapping_rules(
                    rule_type, category_id, store_id, effective_from, effective_to
                )
                if conflicts:
                    return self._overlap_failure(conflicts)

            rule = self.rules.add(
                CommissionRule(
                    rule_type=rule_type,
                    category_id=category_id,
                    store_id=store_id,
                    commission_rate=Decimal(commission_rate),
                    effective_from=effective_from,
                    effective_to=effective_to,
                    description=description,
                    is_active=is_active,
                )
            )

        self.get_logger().info(
            "Created commission rule",
            extra={
                "rule_id": str(rule.id),
                "rule_type": rule_type,
                "commission_rate": str(rule.commission_rate),
            },
        )
        return ServiceResult.success(rule)

    def update_rule(
        self,
        rule_id: uuid.UUID,
        commission_rate: Decimal | None = None,
        effective_from=_UNSET,
        effective_to=_UNSET,
        description: str | None = None,
    ) -> ServiceResult[CommissionRule]:
        """
        Change rate, window or description.

        Pass ``effective_from=None`` / ``effective_to=None`` to make a bound
        unbounded; omit them to keep the current value.
        """
        with self.atomic():
            rule = self.rules.get(rule_id, for_update=True)
            if rule is None:
                return ServiceResult.failure("Commission rule not found", error_code=NOT_FOUND)

            new_rate = rule.commission_rate if commission_rate is None else Decimal(commission_rate)
            new_from = rule.effective_from if effective_from is _UNSET else effective_from
            new_to = rule.effective_to if effective_to is _UNSET else effective_to

            invalid = self._validate(
                rule.rule_type, new_rate, rule.category_id, rule.store_id, new_from, new_to
            )
            if invalid is not None:
                return invalid

            if rule.is_active:
                conflicts = self.get_overlapping_rules(
                    rule.rule_type,
                    rule.category_id,
                    rule.store_id,
                    new_from,
                    new_to,
                    exclude_id=rule.id,
                )
                if conflicts:
                    return self._overlap_failure(conflicts)

            rule.commission_rate = new_rate
            rule.effective_from = new_from
            rule.effective_to = new_to
            if description is not None:
                rule.description = description
            self.rules.update(
                rule, ["commission_rate", "effective_from", "effective_to", "description"]
            )

        self.get_logger().info(
            "Updated commission rule",
            extra={"rule_id": str(rule.id), "commission_rate": str(rule.commission_rate)},
        )
        return ServiceResult.success(rule)

    def activate(self, rule_id: uuid.UUID) -> ServiceResult[CommissionRule]:
        with self.atomic():
            rule = self.rules.get(rule_id, for_update=True)
            if rule is None:
                return ServiceResult.failure("Commission rule not found", error_code=NOT_FOUND)
            if rule.is_active:
                return ServiceResult.success(rule)

            conflicts = self.get_overlapping_rules(
                rule.rule_type,
                rule.category_id,
                rule.store_id,
                rule.effective_from,
                rule.effective_to,
                exclude_id=rule.id,
            )
            if conflicts:
                return self._overlap_failure(conflicts)

            rule.is_active = True
            self.rules.update(rule, ["is_active"])
        return ServiceResult.success(rule)

    def deactivate(self, rule_id: uuid.UUID) -> ServiceResult[CommissionRule]:
        with self.atomic():
            rule = self.rules.get(rule_id, for_update=True)
            if rule is None:
                return ServiceResult.failure("Commission rule not found", error_code=NOT_FOUND)
            if rule.is_active:
                rule.is_active = False
                self.rules.update(rule, ["is_active"])
        return ServiceResult.success(rule)

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _validate(
        self,
        rule_type: str,
        commission_rate: Decimal,
        category_id: str | None,
        store_id: uuid.UUID | None,
        effective_from: datetime | None,
        effective_to: datetime | None,
    ) -> ServiceResult | None:
        errors: dict[str, list[str]] = {}

        if rule_type not in CommissionRuleType.values:
            errors["rule_type"] = [f"Unknown rule type: {rule_type}"]
        if commission_rate is None or not MIN_RATE <= Decimal(commission_rate) <= MAX_RATE:
            errors["commission_rate"] = ["Must be between 0 and 100"]
        if (rule_type == CommissionRuleType.CATEGORY) != (category_id is not None):
            errors["category_id"] = ["Required for category rules and only for them"]
        if (rule_type == CommissionRuleType.SELLER) != (store_id is not None):
            errors["store_id"] = ["Required for seller rules and only for them"]
        if effective_from and effective_to and effective_from > effective_to:
            errors["effective_to"] = ["Must not be before effective_from"]

        if errors:
            return ServiceResult.failure(
                "Invalid commission rule",
                error_code=INVALID_RANGE,
                errors=errors,
            )
        return None

    def _overlap_failure(self, conflicts: list[CommissionRule]) -> ServiceResult:
        self.get_logger().warning(
            "Commission rule window overlaps an active rule",
            extra={"conflicting_rule_ids": [str(rule.id) for rule in conflicts]},
        )
        return ServiceResult.failure(
            "Rule window overlaps an active rule of the same scope",
            error_code=RULE_OVERLAP,
            data=conflicts,
        )
