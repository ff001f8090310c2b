"""
Payout scheduling and execution.

PayoutScheduler batches a store's eligible allocations into a SellerPayout,
hands the payout to the transfer provider, and records the outcome.

Execution follows a two-phase pattern so no database transaction is held
open across the external call:

    Phase 1 (atomic):  SCHEDULED -> PROCESSING, commit
    Phase 2:           provider.transfer(...) with the payout id as
                       idempotency key, bounded by a timeout
    Phase 3 (atomic):  PAID (allocations released, ledger debited)
                       or FAILED (retry scheduled or items deactivated)

A timeout or connection drop in phase 2 leaves the payout PROCESSING;
reconcile() asks the provider what happened before anything else is done.

Retry:
    delay(n) = FUNDS_PAYOUT_RETRY_BASE_SECONDS
               * FUNDS_PAYOUT_RETRY_FACTOR ** (n - 1),
               capped at FUNDS_PAYOUT_RETRY_MAX_SECONDS
    A failed payout with retries left keeps its items active; a terminal
    failure deactivates them so the allocations can be scheduled again.

Usage:
    from funds.services import PayoutScheduler

    scheduler = PayoutScheduler()
    result = scheduler.schedule_for_store(store_id)
    if result.success:
        scheduler.execute(result.data.id)
"""

from __future__ import annotations

import calendar
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError

from core.clock import SystemClock
from core.exceptions import BaseApplicationError, NotFoundError
from core.services import BaseService, ServiceResult
from funds.exceptions import (
    ALLOCATION_CLAIMED,
    BELOW_THRESHOLD,
    INVALID_STATE,
    NOT_FOUND,
    NOTHING_ELIGIBLE,
    PAYOUT_SETTINGS_MISSING,
    PAYOUT_SETTINGS_UNVERIFIED,
    UNKNOWN_OUTCOME,
    LockAcquisitionError,
    StaleRecordError,
    TransferProviderError,
)
from funds.locks import check_version, payout_execution_lock, store_schedule_lock
from funds.models import SellerPayout, SellerPayoutItem
from funds.protocols import TransferRequest, TransferResult
from funds.repositories import DjangoEscrowRepository, DjangoPayoutRepository
from funds.services.commission_resolver import CommissionRuleResolver, calculate_commission
from funds.services.escrow_service import EscrowAccount
from funds.state_machines import AllocationStatus, PayoutFrequency, PayoutStatus

if TYPE_CHECKING:
    from core.protocols import Clock
    from funds.models import EscrowAllocation, PayoutSettings
    from funds.protocols import EscrowRepository, PayoutRepository, TransferProvider

# Shown to sellers instead of provider error text
RETRYING_MESSAGE = "The transfer could not be completed. It will be retried automatically."
FAILED_MESSAGE = "The transfer could not be completed. Please check your payout details."

# PROCESSING payouts older than this are reconciled by the sweep
STALE_PROCESSING_AFTER = timedelta(minutes=15)


# =============================================================================
# Retry Policy
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff between payout attempts."""

    base_seconds: int
    factor: int
    max_seconds: int
    max_retries: int

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            base_seconds=settings.FUNDS_PAYOUT_RETRY_BASE_SECONDS,
            factor=settings.FUNDS_PAYOUT_RETRY_FACTOR,
            max_seconds=settings.FUNDS_PAYOUT_RETRY_MAX_SECONDS,
            max_retries=settings.FUNDS_PAYOUT_MAX_RETRIES,
        )

    def delay(self, attempt: int) -> timedelta:
        """Wait after the ``attempt``-th failure (1-based)."""
        attempt = max(attempt, 1)
        seconds = self.base_seconds * self.factor ** (attempt - 1)
        return timedelta(seconds=min(seconds, self.max_seconds))


def next_payout_date(payout_settings: PayoutSettings, as_of: datetime) -> datetime:
    """
    Next payout day on or after ``as_of``, at midnight of that day.

    weekly:   next date whose weekday is payout_day (0=Monday)
    biweekly: as weekly, restricted to even ISO weeks
    monthly:  payout_day of this month (clamped to the month length) if not
              yet past, otherwise of next month
    """
    midnight = as_of.replace(hour=0, minute=0, second=0, microsecond=0)

    if payout_settings.frequency == PayoutFrequency.MONTHLY:
        day = max(payout_settings.payout_day, 1)
        year, month = midnight.year, midnight.month
        candidate = midnight.replace(day=min(day, calendar.monthrange(year, month)[1]))
        if candidate < midnight:
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
            candidate = midnight.replace(
                year=year, month=month, day=min(day, calendar.monthrange(year, month)[1])
            )
        return candidate

    weekday = payout_settings.payout_day % 7
    candidate = midnight + timedelta(days=(weekday - midnight.weekday()) % 7)
    if (
        payout_settings.frequency == PayoutFrequency.BIWEEKLY
        and candidate.isocalendar().week % 2 == 1
    ):
        candidate += timedelta(days=7)
    return candidate


# =============================================================================
# Payout Scheduler
# =============================================================================


class PayoutScheduler(BaseService):
    """Schedules, executes and settles seller payouts."""

    def __init__(
        self,
        payouts: PayoutRepository | None = None,
        escrow: EscrowRepository | None = None,
        escrow_account: EscrowAccount | None = None,
        resolver: CommissionRuleResolver | None = None,
        provider: TransferProvider | None = None,
        clock: Clock | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.payouts = payouts or DjangoPayoutRepository()
        self.escrow = escrow or DjangoEscrowRepository()
        self.clock = clock or SystemClock()
        self.escrow_account = escrow_account or EscrowAccount(escrow=self.escrow, clock=self.clock)
        self.resolver = resolver or CommissionRuleResolver()
        self._provider = provider
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    @property
    def provider(self) -> TransferProvider:
        # Built lazily so scheduling never needs Stripe configured
        if self._provider is None:
            from funds.adapters import StripeTransferProvider

            self._provider = StripeTransferProvider()
        return self._provider

    # ==========================================================================
    # Scheduling
    # ==========================================================================

    def schedule_for_store(
        self, store_id: uuid.UUID, as_of: datetime | None = None
    ) -> ServiceResult[SellerPayout]:
        """
        Batch the store's eligible, unclaimed allocations into a payout.

        Allocations join the store's open (never attempted) payout if there
        is one, otherwise a new payout dated on the store's next payout day.

        Returns:
            ServiceResult with the payout (``item_list`` attached), or failure
            PAYOUT_SETTINGS_MISSING, PAYOUT_SETTINGS_UNVERIFIED,
            NOTHING_ELIGIBLE, BELOW_THRESHOLD, ALLOCATION_CLAIMED,
            LOCK_ACQUISITION_FAILED
        """
        payout_settings = self.payouts.get_settings(store_id)
        if payout_settings is None:
            return ServiceResult.failure(
                "Payout settings not configured",
                error_code=PAYOUT_SETTINGS_MISSING,
            )
        if not payout_settings.is_verified:
            return ServiceResult.failure(
                "Payout destination is not verified",
                error_code=PAYOUT_SETTINGS_UNVERIFIED,
            )

        as_of = as_of or self.clock.now()
        try:
            with store_schedule_lock(store_id):
                with self.atomic():
                    return self._schedule_locked(store_id, payout_settings, as_of)
        except LockAcquisitionError as e:
            return self.failure_from_error(e)
        except IntegrityError:
            self.get_logger().warning(
                "Allocation claimed by another payout while scheduling",
                extra={"store_id": str(store_id)},
            )
            return ServiceResult.failure(
                "Allocation is already part of an active payout",
                error_code=ALLOCATION_CLAIMED,
            )

    def _schedule_locked(
        self,
        store_id: uuid.UUID,
        payout_settings: PayoutSettings,
        as_of: datetime,
    ) -> ServiceResult[SellerPayout]:
        candidates = [
            allocation
            for allocation in self.escrow.eligible_for_payout(store_id, as_of, for_update=True)
            if allocation.currency == payout_settings.currency
        ]
        claimed = self.escrow.claimed_ids(allocation.id for allocation in candidates)
        candidates = [allocation for allocation in candidates if allocation.id not in claimed]
        if not candidates:
            return ServiceResult.failure(
                "No eligible allocations to pay out",
                error_code=NOTHING_ELIGIBLE,
            )

        items = [self._build_item(allocation) for allocation in candidates]
        added_cents = sum(item.amount_cents for item in items)

        payout = self.payouts.open_for_store(store_id, for_update=True)
        existing_cents = payout.total_cents if payout else 0
        if existing_cents + added_cents < payout_settings.minimum_payout_cents:
            return ServiceResult.failure(
                f"Payout of {existing_cents + added_cents} is below the minimum of "
                f"{payout_settings.minimum_payout_cents}",
                error_code=BELOW_THRESHOLD,
                errors={"total_cents": [str(existing_cents + added_cents)]},
            )

        now = self.clock.now()
        if payout is None:
            payout_id = uuid.uuid4()
            payout = self.payouts.add(
                SellerPayout(
                    id=payout_id,
                    store_id=store_id,
                    payout_reference=f"PO-{now:%Y%m%d%H%M%S}-{payout_id.hex[:8].upper()}",
                    scheduled_date=next_payout_date(payout_settings, as_of),
                    currency=payout_settings.currency,
                    payout_method=payout_settings.payout_method,
                    destination_reference=payout_settings.destination_reference,
                    max_retries=self.retry_policy.max_retries,
                )
            )

        for item in items:
            item.payout = payout
        self.payouts.add_items(items)

        payout.total_cents = existing_cents + added_cents
        self.payouts.update(payout, ["total_cents"])
        self.payouts.load_items(payout)

        self.get_logger().info(
            "Scheduled payout",
            extra={
                "payout_id": str(payout.id),
                "payout_reference": payout.payout_reference,
                "store_id": str(store_id),
                "added_items": len(items),
                "total_cents": payout.total_cents,
                "scheduled_date": payout.scheduled_date.isoformat(),
            },
        )
        return ServiceResult.success(payout)

    def _build_item(self, allocation: EscrowAllocation) -> SellerPayoutItem:
        resolved = self.resolver.rate_or_default(
            allocation.store_id, allocation.category_ids, allocation.recognized_at
        )
        commission = calculate_commission(allocation.commission_base_cents, resolved.rate)
        gross = allocation.remaining_cents
        return SellerPayoutItem(
            allocation_id=allocation.id,
            escrow_payment_id=allocation.escrow_payment_id,
            gross_cents=gross,
            commission_rate=resolved.rate,
            commission_cents=commission,
            amount_cents=gross - commission,
        )

    def schedule_all(self, as_of: datetime | None = None) -> ServiceResult[dict[str, Any]]:
        """Schedule every verified store that has eligible allocations."""
        as_of = as_of or self.clock.now()
        candidates = set(self.escrow.stores_with_eligible(as_of))
        store_ids = [store_id for store_id in self.payouts.verified_store_ids() if store_id in candidates]

        scheduled: list[str] = []
        skipped: dict[str, str] = {}
        for store_id in store_ids:
            result = self.schedule_for_store(store_id, as_of)
            if result.success:
                scheduled.append(str(result.data.id))
            else:
                skipped[str(store_id)] = result.error_code

        self.get_logger().info(
            "Scheduled payouts",
            extra={"scheduled": len(scheduled), "skipped": len(skipped)},
        )
        return ServiceResult.success({"scheduled": scheduled, "skipped": skipped})

    def process_due(self, before: datetime | None = None) -> list[SellerPayout]:
        """SCHEDULED payouts whose date is before ``before`` (default now)."""
        return self.payouts.due(before or self.clock.now())

    # ==========================================================================
    # Execution
    # ==========================================================================

    def execute(self, payout_id: uuid.UUID) -> ServiceResult[SellerPayout]:
        """
        Send one payout to the transfer provider and record the outcome.

        Returns:
            ServiceResult with the payout; failure UNKNOWN_OUTCOME leaves it
            PROCESSING for reconcile()

        Raises:
            Exception: Unexpected provider errors propagate after logging;
                the payout stays PROCESSING
        """
        logger = self.get_logger()
        try:
            with payout_execution_lock(payout_id):
                # Phase 1: claim the payout
                with self.atomic():
                    payout = self.payouts.get(payout_id, for_update=True)
                    if payout is None:
                        return ServiceResult.failure("Payout not found", error_code=NOT_FOUND)
                    if payout.status == PayoutStatus.PAID:
                        return ServiceResult.success(payout)
                    if payout.status != PayoutStatus.SCHEDULED:
                        return self._invalid_state(payout, "execute")

                    payout.start_processing(started_at=self.clock.now())
                    self.payouts.update(
                        payout, ["status", "processing_started_at", "next_retry_at"]
                    )

                # Phase 2: external call outside any transaction
                request = TransferRequest(
                    payout_id=payout.id,
                    store_id=payout.store_id,
                    amount_cents=payout.total_cents,
                    currency=payout.currency,
                    payout_method=payout.payout_method,
                    destination_reference=payout.destination_reference,
                    idempotency_key=str(payout.id),
                    metadata={
                        "payout_id": str(payout.id),
                        "payout_reference": payout.payout_reference,
                        "store_id": str(payout.store_id),
                    },
                )
                try:
                    outcome = self.provider.transfer(request)
                except TransferProviderError as e:
                    outcome = _result_from_error(e)
                except Exception:
                    logger.exception(
                        "Unexpected error during payout transfer",
                        extra={"payout_id": str(payout.id)},
                    )
                    raise

                # Phase 3: record the outcome
                return self._record_outcome(payout, outcome)
        except LockAcquisitionError as e:
            return self.failure_from_error(e)

    def _record_outcome(self, payout: SellerPayout, outcome: TransferResult) -> ServiceResult[SellerPayout]:
        if outcome.is_success:
            return self.record_success(payout.id, outcome.reference)

        if outcome.is_unknown:
            self.get_logger().warning(
                "Payout transfer outcome unknown, awaiting reconciliation",
                extra={"payout_id": str(payout.id), "detail": outcome.error_message},
            )
            return ServiceResult.failure(
                "Transfer outcome unknown",
                error_code=UNKNOWN_OUTCOME,
                data=payout,
            )

        return self.record_failure(
            payout.id,
            error_message=outcome.error_message,
            error_code=outcome.error_code,
            retryable=outcome.retryable,
        )

    def record_success(
        self, payout_id: uuid.UUID, provider_reference: str = ""
    ) -> ServiceResult[SellerPayout]:
        """
        Mark a payout paid and release its allocations.

        Every allocation release, its ledger debit and the PAID transition
        commit together or not at all. Recording success for a payout that
        is already PAID is a no-op.
        """
        try:
            with self.atomic():
                payout = self.payouts.get(payout_id, for_update=True)
                if payout is None:
                    return ServiceResult.failure("Payout not found", error_code=NOT_FOUND)
                if payout.status == PayoutStatus.PAID:
                    return ServiceResult.success(payout)

                now = self.clock.now()
                if payout.status == PayoutStatus.SCHEDULED:
                    payout.start_processing(started_at=now)
                if payout.status != PayoutStatus.PROCESSING:
                    return self._invalid_state(payout, "mark paid")

                for item in self.payouts.load_items(payout):
                    allocation = self.escrow_account.lock_allocation(item.allocation_id)
                    self.escrow_account.apply_release(allocation, payout.payout_reference)

                payout.mark_paid(paid_at=now, provider_reference=provider_reference)
                self.payouts.update(
                    payout,
                    [
                        "status",
                        "processing_started_at",
                        "next_retry_at",
                        "paid_at",
                        "provider_reference",
                        "failure_reason",
                        "failure_code",
                    ],
                )
        except BaseApplicationError as e:
            self.get_logger().error(
                "Payout could not be marked paid",
                extra={"payout_id": str(payout_id), "error_code": e.error_code},
            )
            return self.failure_from_error(e)

        self.get_logger().info(
            "Payout paid",
            extra={
                "payout_id": str(payout.id),
                "payout_reference": payout.payout_reference,
                "provider_reference": provider_reference,
                "total_cents": payout.total_cents,
            },
        )
        return ServiceResult.success(payout)

    def record_failure(
        self,
        payout_id: uuid.UUID,
        error_message: str,
        error_code: str = "",
        retryable: bool = True,
    ) -> ServiceResult[SellerPayout]:
        """
        Record a failed attempt.

        With retries left and a retryable error the next attempt is set by
        the retry policy. Otherwise the failure is terminal: the items are
        deactivated and an operator alert is logged.
        """
        with self.atomic():
            payout = self.payouts.get(payout_id, for_update=True)
            if payout is None:
                return ServiceResult.failure("Payout not found", error_code=NOT_FOUND)
            if payout.status not in (PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING):
                return self._invalid_state(payout, "mark failed")

            now = self.clock.now()
            attempt = payout.retry_count + 1
            will_retry = retryable and attempt < payout.max_retries
            next_retry_at = now + self.retry_policy.delay(attempt) if will_retry else None

            payout.mark_failed(
                failed_at=now,
                reason=RETRYING_MESSAGE if will_retry else FAILED_MESSAGE,
                code=error_code,
                detail=error_message,
                next_retry_at=next_retry_at,
            )
            self.payouts.update(
                payout,
                [
                    "status",
                    "retry_count",
                    "failed_at",
                    "failure_reason",
                    "failure_code",
                    "last_error",
                    "next_retry_at",
                ],
            )
            if not will_retry:
                self.payouts.deactivate_items(payout)

        extra = {
            "payout_id": str(payout.id),
            "payout_reference": payout.payout_reference,
            "store_id": str(payout.store_id),
            "retry_count": payout.retry_count,
            "error_code": error_code,
        }
        if will_retry:
            self.get_logger().warning(
                "Payout failed, retry scheduled",
                extra={**extra, "next_retry_at": next_retry_at.isoformat()},
            )
        else:
            self.get_logger().error("Payout failed permanently, operator action needed", extra=extra)
        return ServiceResult.success(payout)

    # ==========================================================================
    # Retry
    # ==========================================================================

    def due_for_retry(self, as_of: datetime | None = None) -> list[SellerPayout]:
        return self.payouts.due_for_retry(as_of or self.clock.now())

    def retry(
        self, payout_id: uuid.UUID, expected_version: int | None = None
    ) -> ServiceResult[SellerPayout]:
        """
        FAILED -> SCHEDULED for a payout whose backoff has elapsed.

        Callers holding a copy read earlier pass its ``version``; a payout
        changed since then fails with STALE_RECORD.
        """
        with self.atomic():
            if expected_version is None:
                payout = self.payouts.get(payout_id, for_update=True)
            else:
                try:
                    payout = check_version(SellerPayout, payout_id, expected_version)
                except NotFoundError:
                    payout = None
                except StaleRecordError as e:
                    return ServiceResult.from_exception(e)
            if payout is None:
                return ServiceResult.failure("Payout not found", error_code=NOT_FOUND)

            now = self.clock.now()
            if not payout.can_retry or payout.next_retry_at > now:
                return self._invalid_state(payout, "retry")

            payout.retry(scheduled_date=now)
            self.payouts.update(payout, ["status", "scheduled_date", "next_retry_at"])

        self.get_logger().info(
            "Payout retry scheduled",
            extra={"payout_id": str(payout.id), "retry_count": payout.retry_count},
        )
        return ServiceResult.success(payout)

    def reschedule_failed(
        self, payout_id: uuid.UUID, scheduled_date: datetime | None = None
    ) -> ServiceResult[SellerPayout]:
        """
        Operator action: put a terminally failed payout back on the schedule.

        The payout's allocations must still be HELD and unclaimed by any
        other payout.
        """
        try:
            with self.atomic():
                payout = self.payouts.get(payout_id, for_update=True)
                if payout is None:
                    return ServiceResult.failure("Payout not found", error_code=NOT_FOUND)
                if not payout.is_terminal_failure:
                    return self._invalid_state(payout, "reschedule")

                items = self.payouts.load_items(payout, active_only=False)
                allocation_ids = [item.allocation_id for item in items]
                for allocation_id in allocation_ids:
                    allocation = self.escrow.get_allocation(allocation_id, for_update=True)
                    if allocation is None or allocation.status != AllocationStatus.HELD:
                        return ServiceResult.failure(
                            "Payout allocation is no longer held",
                            error_code=INVALID_STATE,
                            errors={"allocation_id": [str(allocation_id)]},
                        )
                if self.escrow.claimed_ids(allocation_ids):
                    return ServiceResult.failure(
                        "Allocation is already part of another payout",
                        error_code=ALLOCATION_CLAIMED,
                    )

                self.payouts.reactivate_items(payout)
                payout.reschedule(scheduled_date=scheduled_date or self.clock.now())
                self.payouts.update(
                    payout,
                    [
                        "status",
                        "scheduled_date",
                        "retry_count",
                        "next_retry_at",
                        "failure_reason",
                        "failure_code",
                    ],
                )
        except IntegrityError:
            return ServiceResult.failure(
                "Allocation is already part of another payout",
                error_code=ALLOCATION_CLAIMED,
            )

        self.get_logger().info(
            "Rescheduled failed payout",
            extra={"payout_id": str(payout.id), "scheduled_date": payout.scheduled_date.isoformat()},
        )
        return ServiceResult.success(payout)

    # ==========================================================================
    # Reconciliation
    # ==========================================================================

    def reconcile(self, payout_id: uuid.UUID) -> ServiceResult[SellerPayout]:
        """
        Settle a PROCESSING payout from the provider's record.

        Found transfer: PAID. No transfer: failed attempt (the retry reuses
        the payout id as idempotency key). Provider unreachable: unchanged.
        """
        payout = self.payouts.get(payout_id)
        if payout is None:
            return ServiceResult.failure("Payout not found", error_code=NOT_FOUND)
        if payout.status != PayoutStatus.PROCESSING:
            return ServiceResult.success(payout)

        try:
            outcome = self.provider.lookup(payout)
        except TransferProviderError as e:
            outcome = TransferResult.unknown(e.message)

        self.get_logger().info(
            "Reconciled payout with provider",
            extra={"payout_id": str(payout.id), "outcome": str(outcome.outcome)},
        )
        return self._record_outcome(payout, outcome)

    def stale_processing(self, as_of: datetime | None = None) -> list[SellerPayout]:
        """PROCESSING payouts started long enough ago to need reconciliation."""
        as_of = as_of or self.clock.now()
        return self.payouts.processing(started_before=as_of - STALE_PROCESSING_AFTER)

    def _invalid_state(self, payout: SellerPayout, action: str) -> ServiceResult:
        return ServiceResult.failure(
            f"Cannot {action} payout in status {payout.status}",
            error_code=INVALID_STATE,
            errors={"status": [payout.status]},
        )


def _result_from_error(error: TransferProviderError) -> TransferResult:
    if error.outcome_unknown:
        return TransferResult.unknown(error.message)
    return TransferResult.failed(
        error_code=error.provider_code or error.error_code,
        error_message=error.message,
        retryable=error.is_retryable,
    )
