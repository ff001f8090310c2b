"""
Escrow account service.

EscrowAccount owns an escrow payment, its allocations and their ledger
entries. Every state change of an allocation and the ledger entry recording
it are written in one transaction while the payment row is locked.

Invariants kept here:
    - Allocation amounts sum to the payment total
    - RELEASED and REFUNDED are terminal
    - Ledger credits minus debits equal the remaining amount of held
      allocations

Operations are pure validations plus local writes; nothing here calls an
external service or retries.

Usage:
    from funds.services import AllocationSpec, EscrowAccount

    account = EscrowAccount()
    result = account.open(
        order_id=order.id,
        buyer_id=buyer.id,
        total_cents=10000,
        currency="usd",
        allocations=[
            AllocationSpec(store_id=store_a, amount_cents=6000),
            AllocationSpec(store_id=store_b, amount_cents=4000),
        ],
    )
    if not result:
        raise ValueError(result.error_code)   # AMOUNT_MISMATCH, ...
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError

from core.clock import SystemClock
from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult
from funds.exceptions import (
    ALLOCATION_CLAIMED,
    AMOUNT_MISMATCH,
    INVALID_RANGE,
    INVALID_STATE,
    LEDGER_FAILED,
    NOT_FOUND,
    AllocationClaimedError,
    InvalidRangeError,
    InvalidStateError,
)
from funds.ledger import LedgerService, RecordEntryParams, ledger
from funds.ledger.types import normalize_currency
from funds.models import EscrowAllocation, EscrowPayment
from funds.models.commission import normalize_category_id
from funds.repositories import DjangoEscrowRepository
from funds.state_machines import AllocationStatus, LedgerDirection, LedgerReason

if TYPE_CHECKING:
    from core.protocols import Clock
    from funds.protocols import EscrowRepository

# Returned instead of database detail when escrow rows or ledger entries cannot be written
LEDGER_FAILED_MESSAGE = "The escrow update could not be recorded. Please try again later."


# =============================================================================
# Types
# =============================================================================


@dataclass
class AllocationSpec:
    """
    One store's share of a captured payment.

    amount_cents includes shipping_cents.
    """

    store_id: uuid.UUID
    amount_cents: int
    shipment_id: uuid.UUID | None = None
    shipping_cents: int = 0
    category_ids: Iterable[str] = field(default_factory=list)


@dataclass
class EscrowBalance:
    """Escrow position of one store."""

    store_id: uuid.UUID
    currency: str
    held_cents: int = 0
    eligible_cents: int = 0
    pending_payout_cents: int = 0
    allocation_count: int = 0


@dataclass
class LedgerCheck:
    escrow_payment_id: uuid.UUID
    ledger_cents: int
    held_cents: int

    @property
    def is_consistent(self) -> bool:
        return self.ledger_cents == self.held_cents


# =============================================================================
# Escrow Account
# =============================================================================


class EscrowAccount(BaseService):
    """
    Escrow payment and allocation lifecycle.

    Collaborators are injected; defaults bind the Django repository, the
    shared ledger service and the system clock.
    """

    def __init__(
        self,
        escrow: EscrowRepository | None = None,
        ledger_service: LedgerService | None = None,
        clock: Clock | None = None,
    ):
        self.escrow = escrow or DjangoEscrowRepository()
        self.ledger = ledger_service or ledger
        self.clock = clock or SystemClock()

    # ==========================================================================
    # Open
    # ==========================================================================

    def open(
        self,
        order_id: uuid.UUID,
        buyer_id: uuid.UUID,
        total_cents: int,
        currency: str,
        allocations: list[AllocationSpec],
        payment_reference: str = "",
    ) -> ServiceResult[EscrowPayment]:
        """
        Hold a captured buyer payment in escrow.

        Creates one HELD allocation per spec and one credit ledger entry per
        allocation.

        Returns:
            ServiceResult with the payment (``allocation_list`` attached), or
            failure AMOUNT_MISMATCH / INVALID_RANGE / LEDGER_FAILED
        """
        try:
            currency = normalize_currency(currency)
        except ValueError as e:
            return ServiceResult.failure(str(e), error_code=INVALID_RANGE)

        invalid = self._validate_specs(total_cents, allocations)
        if invalid is not None:
            return invalid

        now = self.clock.now()
        payment = EscrowPayment(
            order_id=order_id,
            buyer_id=buyer_id,
            total_cents=total_cents,
            currency=currency,
            opened_at=now,
            payment_reference=payment_reference,
        )
        rows = [
            EscrowAllocation(
                id=uuid.uuid4(),
                store_id=spec.store_id,
                shipment_id=spec.shipment_id,
                amount_cents=spec.amount_cents,
                shipping_cents=spec.shipping_cents,
                currency=currency,
                category_ids=sorted(
                    {normalize_category_id(value) for value in spec.category_ids} - {None}
                ),
                opened_at=now,
            )
            for spec in allocations
        ]

        try:
            with self.atomic():
                self.escrow.add_payment(payment, rows)
                self.ledger.record_entries(
                    [
                        RecordEntryParams(
                            escrow_payment_id=payment.id,
                            allocation_id=allocation.id,
                            store_id=allocation.store_id,
                            direction=LedgerDirection.CREDIT,
                            amount_cents=allocation.amount_cents,
                            currency=currency,
                            reason=LedgerReason.FUNDS_CAPTURED,
                            idempotency_key=f"escrow:capture:{allocation.id}",
                            description=f"Captured for order {order_id}",
                            recorded_at=now,
                        )
                        for allocation in rows
                    ]
                )
        except DatabaseError as e:
            return self._ledger_failure(e, f"Opening escrow for order {order_id}")

        self.get_logger().info(
            "Opened escrow payment",
            extra={
                "escrow_payment_id": str(payment.id),
                "order_id": str(order_id),
                "total_cents": total_cents,
                "allocation_count": len(rows),
            },
        )
        return ServiceResult.success(payment)

    def _validate_specs(
        self, total_cents: int, allocations: list[AllocationSpec]
    ) -> ServiceResult | None:
        if total_cents <= 0:
            return ServiceResult.failure(
                "Payment total must be positive",
                error_code=INVALID_RANGE,
                errors={"total_cents": ["Must be positive"]},
            )
        if not allocations:
            return ServiceResult.failure(
                "At least one allocation is required",
                error_code=AMOUNT_MISMATCH,
            )

        seen: set[tuple] = set()
        for spec in allocations:
            if spec.amount_cents <= 0:
                return ServiceResult.failure(
                    "Allocation amounts must be positive",
                    error_code=INVALID_RANGE,
                    errors={"amount_cents": [f"{spec.store_id}: {spec.amount_cents}"]},
                )
            if not 0 <= spec.shipping_cents <= spec.amount_cents:
                return ServiceResult.failure(
                    "Shipping must be between 0 and the allocation amount",
                    error_code=INVALID_RANGE,
                    errors={"shipping_cents": [f"{spec.store_id}: {spec.shipping_cents}"]},
                )
            key = (spec.store_id, spec.shipment_id)
            if key in seen:
                return ServiceResult.failure(
                    "Duplicate allocation for store and shipment",
                    error_code=INVALID_RANGE,
                    errors={"store_id": [str(spec.store_id)]},
                )
            seen.add(key)

        allocated = sum(spec.amount_cents for spec in allocations)
        if allocated != total_cents:
            return ServiceResult.failure(
                f"Allocations sum to {allocated}, payment total is {total_cents}",
                error_code=AMOUNT_MISMATCH,
            )
        return None

    # ==========================================================================
    # Eligibility
    # ==========================================================================

    def mark_eligible(
        self, allocation_id: uuid.UUID, eligible_at: datetime
    ) -> ServiceResult[EscrowAllocation]:
        """
        Record when an allocation became payable.

        Setting the value it already has is a no-op. A different value is
        accepted only while no payout holds the allocation.
        """
        with self.atomic():
            allocation = self.lock_allocation(allocation_id)
            if allocation is None:
                return ServiceResult.failure("Allocation not found", error_code=NOT_FOUND)

            if allocation.status != AllocationStatus.HELD:
                return self._invalid_state(allocation, "mark eligible")

            if eligible_at > self.clock.now():
                return ServiceResult.failure(
                    "Eligibility date is in the future",
                    error_code=INVALID_RANGE,
                    errors={"eligible_at": [eligible_at.isoformat()]},
                )

            if allocation.payout_eligible_at == eligible_at:
                return ServiceResult.success(allocation)

            if allocation.payout_eligible_at is not None and self.escrow.has_active_claim(
                allocation.id
            ):
                return ServiceResult.failure(
                    "Allocation is part of an active payout",
                    error_code=ALLOCATION_CLAIMED,
                )

            allocation.payout_eligible_at = eligible_at
            self.escrow.update_allocation(allocation, ["payout_eligible_at"])

        self.get_logger().info(
            "Allocation eligible for payout",
            extra={
                "allocation_id": str(allocation.id),
                "store_id": str(allocation.store_id),
                "eligible_at": eligible_at.isoformat(),
            },
        )
        return ServiceResult.success(allocation)

    def mark_delivered(
        self, allocation_id: uuid.UUID, delivered_at: datetime
    ) -> ServiceResult[EscrowAllocation]:
        """
        Record shipment delivery.

        Eligibility is delivered_at + FUNDS_RETURN_WINDOW_DAYS. If the window
        has already elapsed the allocation is marked eligible now; otherwise
        promote_eligible() picks it up once it has.
        """
        with self.atomic():
            allocation = self.lock_allocation(allocation_id)
            if allocation is None:
                return ServiceResult.failure("Allocation not found", error_code=NOT_FOUND)
            if allocation.status != AllocationStatus.HELD:
                return self._invalid_state(allocation, "mark delivered")

            if allocation.delivered_at != delivered_at:
                allocation.delivered_at = delivered_at
                self.escrow.update_allocation(allocation, ["delivered_at"])

        eligible_at = delivered_at + self.return_window
        if eligible_at <= self.clock.now():
            return self.mark_eligible(allocation_id, eligible_at)
        return ServiceResult.success(allocation)

    def promote_eligible(self) -> ServiceResult[list[uuid.UUID]]:
        """Mark every delivered allocation whose return window has elapsed."""
        cutoff = self.clock.now() - self.return_window
        promoted: list[uuid.UUID] = []

        for allocation in self.escrow.delivered_awaiting_eligibility(cutoff):
            result = self.mark_eligible(allocation.id, allocation.delivered_at + self.return_window)
            if result.success:
                promoted.append(allocation.id)
            else:
                self.get_logger().warning(
                    "Could not mark allocation eligible",
                    extra={"allocation_id": str(allocation.id), "error_code": result.error_code},
                )

        return ServiceResult.success(promoted)

    @property
    def return_window(self) -> timedelta:
        return timedelta(days=settings.FUNDS_RETURN_WINDOW_DAYS)

    # ==========================================================================
    # Release
    # ==========================================================================

    def release(
        self, allocation_id: uuid.UUID, reference: str = ""
    ) -> ServiceResult[EscrowAllocation]:
        """
        Pay an allocation out of escrow.

        Valid only from HELD. Appends a debit of the remaining amount.
        """
        try:
            with self.atomic():
                allocation = self.lock_allocation(allocation_id)
                if allocation is None:
                    return ServiceResult.failure("Allocation not found", error_code=NOT_FOUND)
                self.apply_release(allocation, reference)
        except BaseApplicationError as e:
            return self.failure_from_error(e)
        except DatabaseError as e:
            return self._ledger_failure(e, f"Releasing allocation {allocation_id}")
        return ServiceResult.success(allocation)

    def apply_release(self, allocation: EscrowAllocation, reference: str = "") -> None:
        """
        Release an allocation the caller has already locked.

        Used by PayoutScheduler inside its own transaction.

        Raises:
            InvalidStateError: allocation is not HELD
        """
        if allocation.status != AllocationStatus.HELD:
            raise InvalidStateError(
                f"Cannot release allocation in status {allocation.status}",
                details={"allocation_id": str(allocation.id), "status": allocation.status},
            )

        now = self.clock.now()
        remaining = allocation.remaining_cents
        allocation.release(released_at=now, reference=reference)
        self.escrow.update_allocation(
            allocation, ["status", "released_at", "payout_reference"]
        )

        if remaining > 0:
            self.ledger.record_entry(
                RecordEntryParams(
                    escrow_payment_id=allocation.escrow_payment_id,
                    allocation_id=allocation.id,
                    store_id=allocation.store_id,
                    direction=LedgerDirection.DEBIT,
                    amount_cents=remaining,
                    currency=allocation.currency,
                    reason=LedgerReason.PAYOUT_RELEASE,
                    idempotency_key=f"escrow:release:{allocation.id}",
                    description=f"Released to store, payout {reference}".strip(),
                    recorded_at=now,
                )
            )

        self.get_logger().info(
            "Released allocation",
            extra={
                "allocation_id": str(allocation.id),
                "store_id": str(allocation.store_id),
                "amount_cents": remaining,
                "payout_reference": reference,
            },
        )

    # ==========================================================================
    # Refund
    # ==========================================================================

    def refund(
        self,
        allocation_id: uuid.UUID,
        amount_cents: int,
        reference: str = "",
    ) -> ServiceResult[EscrowAllocation]:
        """
        Return part or all of an allocation to the buyer.

        A refund equal to the remaining amount moves the allocation to
        REFUNDED; a smaller one keeps it HELD with a smaller remainder.
        """
        try:
            with self.atomic():
                allocation = self.lock_allocation(allocation_id)
                if allocation is None:
                    return ServiceResult.failure("Allocation not found", error_code=NOT_FOUND)
                self._apply_refund(allocation, amount_cents, reference)
        except BaseApplicationError as e:
            return self.failure_from_error(e)
        except DatabaseError as e:
            return self._ledger_failure(e, f"Refunding allocation {allocation_id}")
        return ServiceResult.success(allocation)

    def refund_payment(
        self, payment_id: uuid.UUID, reference: str = ""
    ) -> ServiceResult[list[EscrowAllocation]]:
        """
        Refund every held allocation of a payment in full.

        Nothing is refunded if any held allocation is part of an active
        payout. A payment with nothing left to refund succeeds with an empty
        list.
        """
        try:
            with self.atomic():
                payment = self.escrow.get_payment(payment_id, for_update=True)
                if payment is None:
                    return ServiceResult.failure("Escrow payment not found", error_code=NOT_FOUND)

                held = [
                    allocation
                    for allocation in self.escrow.load_allocations(payment, for_update=True)
                    if allocation.status == AllocationStatus.HELD
                ]
                for allocation in held:
                    self._apply_refund(allocation, allocation.remaining_cents, reference)
        except BaseApplicationError as e:
            return self.failure_from_error(e)
        except DatabaseError as e:
            return self._ledger_failure(e, f"Refunding escrow payment {payment_id}")

        self.get_logger().info(
            "Refunded escrow payment",
            extra={"escrow_payment_id": str(payment_id), "allocation_count": len(held)},
        )
        return ServiceResult.success(held)

    def _apply_refund(self, allocation: EscrowAllocation, amount_cents: int, reference: str) -> None:
        if allocation.status != AllocationStatus.HELD:
            raise InvalidStateError(
                f"Cannot refund allocation in status {allocation.status}",
                details={"allocation_id": str(allocation.id), "status": allocation.status},
            )
        if amount_cents <= 0 or amount_cents > allocation.remaining_cents:
            raise InvalidRangeError(
                "Refund amount must be positive and within the remaining amount",
                details={
                    "allocation_id": str(allocation.id),
                    "amount_cents": amount_cents,
                    "remaining_cents": allocation.remaining_cents,
                },
            )
        if self.escrow.has_active_claim(allocation.id):
            raise AllocationClaimedError(
                "Allocation is part of an active payout",
                details={"allocation_id": str(allocation.id)},
            )

        now = self.clock.now()
        is_full = amount_cents == allocation.remaining_cents
        if is_full:
            allocation.refund(refunded_at=now, amount_cents=amount_cents, reference=reference)
            fields = ["status", "refunded_cents", "refunded_at", "refund_reference"]
        else:
            allocation.apply_partial_refund(amount_cents, reference)
            fields = ["refunded_cents", "refund_reference"]
        self.escrow.update_allocation(allocation, fields)

        self.ledger.record_entry(
            RecordEntryParams(
                escrow_payment_id=allocation.escrow_payment_id,
                allocation_id=allocation.id,
                store_id=allocation.store_id,
                direction=LedgerDirection.DEBIT,
                amount_cents=amount_cents,
                currency=allocation.currency,
                reason=LedgerReason.REFUND if is_full else LedgerReason.PARTIAL_REFUND,
                idempotency_key=f"escrow:refund:{allocation.id}:{allocation.refunded_cents}",
                description=f"Refund {reference}".strip(),
                recorded_at=now,
            )
        )

        self.get_logger().info(
            "Refunded allocation",
            extra={
                "allocation_id": str(allocation.id),
                "amount_cents": amount_cents,
                "full": is_full,
            },
        )

    # ==========================================================================
    # Queries
    # ==========================================================================

    def store_balance(self, store_id: uuid.UUID) -> ServiceResult[list[EscrowBalance]]:
        """Held, eligible and pending-payout totals per currency."""
        now = self.clock.now()
        held = self.escrow.held_for_store(store_id)
        claimed = self.escrow.claimed_ids(allocation.id for allocation in held)

        balances: dict[str, EscrowBalance] = {}
        for allocation in held:
            balance = balances.setdefault(
                allocation.currency,
                EscrowBalance(store_id=store_id, currency=allocation.currency),
            )
            balance.held_cents += allocation.remaining_cents
            balance.allocation_count += 1
            if allocation.id in claimed:
                balance.pending_payout_cents += allocation.remaining_cents
            elif allocation.eligible_as_of(now):
                balance.eligible_cents += allocation.remaining_cents

        return ServiceResult.success(sorted(balances.values(), key=lambda b: b.currency))

    def verify_ledger(self, payment_id: uuid.UUID) -> ServiceResult[LedgerCheck]:
        """Compare the ledger balance with the remaining amount of held allocations."""
        payment = self.escrow.get_payment(payment_id)
        if payment is None:
            return ServiceResult.failure("Escrow payment not found", error_code=NOT_FOUND)

        allocations = self.escrow.load_allocations(payment)
        check = LedgerCheck(
            escrow_payment_id=payment.id,
            ledger_cents=self.ledger.get_payment_balance(payment.id, payment.currency).cents,
            held_cents=sum(
                allocation.remaining_cents
                for allocation in allocations
                if allocation.status == AllocationStatus.HELD
            ),
        )
        if not check.is_consistent:
            self.get_logger().error(
                "Escrow ledger does not match held allocations",
                extra={
                    "escrow_payment_id": str(payment.id),
                    "ledger_cents": check.ledger_cents,
                    "held_cents": check.held_cents,
                },
            )
        return ServiceResult.success(check)

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def lock_allocation(self, allocation_id: uuid.UUID) -> EscrowAllocation | None:
        """Lock the owning payment, then the allocation."""
        allocation = self.escrow.get_allocation(allocation_id)
        if allocation is None:
            return None
        self.escrow.get_payment(allocation.escrow_payment_id, for_update=True)
        return self.escrow.get_allocation(allocation_id, for_update=True)

    def _ledger_failure(self, exc: DatabaseError, context: str) -> ServiceResult:
        return self.handle_exception(
            exc,
            context=context,
            public_message=LEDGER_FAILED_MESSAGE,
            error_code=LEDGER_FAILED,
        )

    def _invalid_state(self, allocation: EscrowAllocation, action: str) -> ServiceResult:
        return ServiceResult.failure(
            f"Cannot {action} allocation in status {allocation.status}",
            error_code=INVALID_STATE,
            errors={"status": [allocation.status]},
        )
