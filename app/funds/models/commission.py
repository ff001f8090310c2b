"""
Commission rule model.

A rule applies a percentage at one of three scopes. Resolution priority is
seller, then category, then global. Within one scope, active rules must not
have overlapping effective windows; that is checked at write time by
CommissionRuleService, not by a database constraint.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import F, Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from funds.periods import window_contains
from funds.state_machines import CommissionRuleType


def normalize_category_id(value: str | None) -> str | None:
    """
    Canonical form of a category identifier.

    Category matching is case-insensitive and ignores surrounding whitespace.
    """
    if value is None:
        return None
    normalized = str(value).strip().casefold()
    return normalized or None


class CommissionRule(UUIDPrimaryKeyMixin, BaseModel):
    """
    Commission percentage for a scope and an effective window.

    Fields:
        rule_type: global, category or seller
        category_id: Set iff rule_type is category (stored normalized)
        store_id: Set iff rule_type is seller
        commission_rate: Percentage 0-100 with two decimals
        is_active: Inactive rules are ignored by resolution and overlap checks
        effective_from / effective_to: Inclusive bounds, None means unbounded
    """

    rule_type = models.CharField(
        max_length=20,
        choices=CommissionRuleType.choices,
        db_index=True,
    )
    category_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    store_id = models.UUIDField(null=True, blank=True, db_index=True)

    commission_rate = models.DecimalField(max_digits=5, decimal_places=2)
    is_active = models.BooleanField(default=True, db_index=True)

    effective_from = models.DateTimeField(null=True, blank=True)
    effective_to = models.DateTimeField(null=True, blank=True)

    description = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Commission rule"
        verbose_name_plural = "Commission rules"
        indexes = [
            models.Index(fields=["rule_type", "is_active"], name="comm_rule_type_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(commission_rate__gte=Decimal("0"))
                & Q(commission_rate__lte=Decimal("100")),
                name="commission_rule_rate_range",
            ),
            models.CheckConstraint(
                condition=(
                    Q(rule_type=CommissionRuleType.CATEGORY, category_id__isnull=False)
                    | (~Q(rule_type=CommissionRuleType.CATEGORY) & Q(category_id__isnull=True))
                ),
                name="commission_rule_category_scope",
            ),
            models.CheckConstraint(
                condition=(
                    Q(rule_type=CommissionRuleType.SELLER, store_id__isnull=False)
                    | (~Q(rule_type=CommissionRuleType.SELLER) & Q(store_id__isnull=True))
                ),
                name="commission_rule_store_scope",
            ),
            models.CheckConstraint(
                condition=(
                    Q(effective_from__isnull=True)
                    | Q(effective_to__isnull=True)
                    | Q(effective_from__lte=F("effective_to"))
                ),
                name="commission_rule_window_ordered",
            ),
        ]

    def __str__(self) -> str:
        scope = self.category_id or self.store_id or "all"
        return f"CommissionRule({self.rule_type}:{scope}, {self.commission_rate}%)"

    def save(self, *args, **kwargs):
        self.category_id = normalize_category_id(self.category_id)
        super().save(*args, **kwargs)

    def applies_at(self, instant) -> bool:
        return self.is_active and window_contains(
            self.effective_from, self.effective_to, instant
        )

    @property
    def scope_key(self) -> tuple:
        return (self.rule_type, self.category_id, self.store_id)
