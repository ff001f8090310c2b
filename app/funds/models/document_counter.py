"""
Per-year document sequence.

One row per (document type, year). Numbers are taken with the row locked
via select_for_update(), so two issuers in the same year queue on the row
instead of reading the same maximum suffix.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from funds.state_machines import DocumentType


class DocumentCounter(models.Model):
    doc_type = models.CharField(max_length=5, choices=DocumentType.choices)
    year = models.PositiveSmallIntegerField()
    next_number = models.PositiveIntegerField(default=1)

    class Meta:
        verbose_name = "Document counter"
        verbose_name_plural = "Document counters"
        constraints = [
            models.UniqueConstraint(
                fields=["doc_type", "year"],
                name="document_counter_type_year_unique",
            ),
            models.CheckConstraint(
                condition=Q(next_number__gte=1),
                name="document_counter_next_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.doc_type}-{self.year}: next {self.next_number}"
