"""
Collaborator contracts for seller funds services.

Each aggregate has a repository contract: load by id (optionally row-locked),
load by scope, add, update, and an explicit hydration step that fetches a
child collection and attaches it to the root (``payment.allocation_list``,
``settlement.item_list``, ``payout.item_list``, ``invoice.line_list``).
Services never rely on lazy relation access for children they reason about.

Default implementations live in funds.repositories (Django ORM) and
funds.adapters (Stripe). Tests substitute MagicMock or in-memory fakes.

Usage:
    from funds.protocols import TransferProvider, TransferRequest

    class FakeProvider:
        def transfer(self, request: TransferRequest) -> TransferResult:
            return TransferResult.succeeded("tr_fake")

        def lookup(self, payout) -> TransferResult:
            return TransferResult.unknown("not found")
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from django.db import models

if TYPE_CHECKING:
    from collections.abc import Iterable

    from funds.models import (
        CommissionInvoice,
        CommissionRule,
        CreditNote,
        CreditNoteLine,
        EscrowAllocation,
        EscrowPayment,
        InvoiceLine,
        PayoutSettings,
        SellerPayout,
        SellerPayoutItem,
        Settlement,
        SettlementAdjustment,
        SettlementItem,
    )


# =============================================================================
# Transfer Provider
# =============================================================================


class TransferOutcome(models.TextChoices):
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    UNKNOWN = "unknown", "Unknown"


@dataclass
class TransferRequest:
    """
    One outbound transfer.

    idempotency_key is the payout id, so repeated attempts for the same
    payout can never create a second transfer.
    """

    payout_id: uuid.UUID
    store_id: uuid.UUID
    amount_cents: int
    currency: str
    payout_method: str
    destination_reference: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class TransferResult:
    """
    Provider answer for a transfer or a status lookup.

    UNKNOWN means the provider may have applied the transfer; the payout
    stays PROCESSING until reconciliation settles it.
    """

    outcome: str
    reference: str = ""
    error_code: str = ""
    error_message: str = ""
    retryable: bool = False

    @classmethod
    def succeeded(cls, reference: str) -> TransferResult:
        return cls(outcome=TransferOutcome.SUCCEEDED, reference=reference)

    @classmethod
    def failed(cls, error_code: str, error_message: str, retryable: bool) -> TransferResult:
        return cls(
            outcome=TransferOutcome.FAILED,
            error_code=error_code,
            error_message=error_message,
            retryable=retryable,
        )

    @classmethod
    def unknown(cls, error_message: str = "") -> TransferResult:
        return cls(outcome=TransferOutcome.UNKNOWN, error_message=error_message)

    @property
    def is_success(self) -> bool:
        return self.outcome == TransferOutcome.SUCCEEDED

    @property
    def is_unknown(self) -> bool:
        return self.outcome == TransferOutcome.UNKNOWN


@runtime_checkable
class TransferProvider(Protocol):
    """Payment transfer collaborator used by PayoutScheduler."""

    def transfer(self, request: TransferRequest) -> TransferResult:
        """Create the transfer. Must be bounded by a timeout."""
        ...

    def lookup(self, payout: SellerPayout) -> TransferResult:
        """Find the transfer created for a payout, if any."""
        ...


# =============================================================================
# Repositories
# =============================================================================


class EscrowRepository(Protocol):
    def get_payment(self, payment_id: uuid.UUID, for_update: bool = False) -> EscrowPayment | None: ...

    def get_allocation(
        self, allocation_id: uuid.UUID, for_update: bool = False
    ) -> EscrowAllocation | None: ...

    def load_allocations(
        self, payment: EscrowPayment, for_update: bool = False
    ) -> list[EscrowAllocation]: ...

    def add_payment(
        self, payment: EscrowPayment, allocations: list[EscrowAllocation]
    ) -> EscrowPayment: ...

    def update_allocation(self, allocation: EscrowAllocation, fields: Iterable[str]) -> None: ...

    def allocations_for_period(
        self, store_id: uuid.UUID, period_start: datetime, period_end: datetime
    ) -> list[EscrowAllocation]: ...

    def eligible_for_payout(
        self, store_id: uuid.UUID, as_of: datetime, for_update: bool = False
    ) -> list[EscrowAllocation]: ...

    def stores_with_eligible(self, as_of: datetime) -> list[uuid.UUID]: ...

    def stores_with_activity(self, period_start: datetime, period_end: datetime) -> list[uuid.UUID]: ...

    def has_active_claim(self, allocation_id: uuid.UUID) -> bool: ...

    def held_for_store(self, store_id: uuid.UUID) -> list[EscrowAllocation]: ...

    def claimed_ids(self, allocation_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]: ...

    def delivered_awaiting_eligibility(self, delivered_before: datetime) -> list[EscrowAllocation]: ...


class CommissionRuleRepository(Protocol):
    def get(self, rule_id: uuid.UUID, for_update: bool = False) -> CommissionRule | None: ...

    def matching(
        self,
        rule_type: str,
        as_of: datetime,
        store_id: uuid.UUID | None = None,
        category_ids: Iterable[str] | None = None,
    ) -> list[CommissionRule]: ...

    def in_scope(
        self,
        rule_type: str,
        category_id: str | None,
        store_id: uuid.UUID | None,
        exclude_id: uuid.UUID | None = None,
    ) -> list[CommissionRule]: ...

    def add(self, rule: CommissionRule) -> CommissionRule: ...

    def update(self, rule: CommissionRule, fields: Iterable[str]) -> None: ...


class SettlementRepository(Protocol):
    def get(self, settlement_id: uuid.UUID, for_update: bool = False) -> Settlement | None: ...

    def latest_for_period(
        self, store_id: uuid.UUID, year: int, month: int, for_update: bool = False
    ) -> Settlement | None: ...

    def for_period(self, year: int, month: int, statuses: Iterable[str] | None = None) -> list[Settlement]: ...

    def store_ids_for_period(self, year: int, month: int) -> set[uuid.UUID]: ...

    def load_items(self, settlement: Settlement) -> list[SettlementItem]: ...

    def load_adjustments(self, settlement: Settlement) -> list[SettlementAdjustment]: ...

    def add(self, settlement: Settlement) -> Settlement: ...

    def update(self, settlement: Settlement, fields: Iterable[str]) -> None: ...

    def replace_items(self, settlement: Settlement, items: list[SettlementItem]) -> None: ...

    def add_adjustment(self, adjustment: SettlementAdjustment) -> SettlementAdjustment: ...

    def carried_by_other_periods(
        self,
        allocation_ids: Iterable[uuid.UUID],
        year: int,
        month: int,
        statuses: Iterable[str],
    ) -> set[uuid.UUID]: ...


class PayoutRepository(Protocol):
    def get(self, payout_id: uuid.UUID, for_update: bool = False) -> SellerPayout | None: ...

    def get_settings(self, store_id: uuid.UUID) -> PayoutSettings | None: ...

    def verified_store_ids(self) -> list[uuid.UUID]: ...

    def open_for_store(self, store_id: uuid.UUID, for_update: bool = False) -> SellerPayout | None: ...

    def load_items(self, payout: SellerPayout, active_only: bool = True) -> list[SellerPayoutItem]: ...

    def add(self, payout: SellerPayout) -> SellerPayout: ...

    def update(self, payout: SellerPayout, fields: Iterable[str]) -> None: ...

    def add_items(self, items: list[SellerPayoutItem]) -> None: ...

    def deactivate_items(self, payout: SellerPayout) -> int: ...

    def reactivate_items(self, payout: SellerPayout) -> int: ...

    def due(self, before: datetime) -> list[SellerPayout]: ...

    def due_for_retry(self, as_of: datetime) -> list[SellerPayout]: ...

    def processing(self, started_before: datetime | None = None) -> list[SellerPayout]: ...


class InvoiceRepository(Protocol):
    def get(self, invoice_id: uuid.UUID, for_update: bool = False) -> CommissionInvoice | None: ...

    def get_for_settlement(self, settlement_id: uuid.UUID) -> CommissionInvoice | None: ...

    def load_lines(self, invoice: CommissionInvoice) -> list[InvoiceLine]: ...

    def load_credit_notes(self, invoice: CommissionInvoice) -> list[CreditNote]: ...

    def add(self, invoice: CommissionInvoice, lines: list[InvoiceLine]) -> CommissionInvoice: ...

    def update(self, invoice: CommissionInvoice, fields: Iterable[str]) -> None: ...

    def add_credit_note(self, credit_note: CreditNote, lines: list[CreditNoteLine]) -> CreditNote: ...

    def next_sequence(self, doc_type: str, year: int) -> int: ...
