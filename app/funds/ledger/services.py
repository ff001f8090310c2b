"""
Escrow ledger service.

LedgerService appends entries and answers balance questions. It owns no
allocation state: EscrowAccount decides what to write, and writes it in the
same transaction as the allocation change it records.

Usage:
    from funds.ledger import ledger, RecordEntryParams

    ledger.record_entry(RecordEntryParams(
        escrow_payment_id=payment.id,
        allocation_id=allocation.id,
        store_id=allocation.store_id,
        direction=LedgerDirection.CREDIT,
        amount_cents=allocation.amount_cents,
        currency=payment.currency,
        reason=LedgerReason.FUNDS_CAPTURED,
        idempotency_key=f"escrow:capture:{allocation.id}",
    ))

    ledger.get_payment_balance(payment.id)   # Money
"""

from __future__ import annotations

import logging
import uuid

from django.db import IntegrityError, transaction
from django.utils import timezone

from funds.exceptions import CurrencyMismatchError
from funds.ledger.models import EscrowLedgerEntry
from funds.ledger.types import Money, RecordEntryParams

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Service class for escrow ledger operations.

    All methods are static; ``ledger`` below is the shared instance.
    """

    @staticmethod
    def record_entry(params: RecordEntryParams) -> EscrowLedgerEntry:
        """
        Append a single entry.

        Idempotent: an existing entry with the same idempotency_key is
        returned unchanged.
        """
        return LedgerService.record_entries([params])[0]

    @staticmethod
    def record_entries(entries: list[RecordEntryParams]) -> list[EscrowLedgerEntry]:
        """
        Append several entries atomically.

        Raises:
            CurrencyMismatchError: An entry's currency differs from earlier
                entries of the same payment
        """
        if not entries:
            return []

        results: list[EscrowLedgerEntry] = []

        with transaction.atomic():
            for params in entries:
                existing = EscrowLedgerEntry.objects.filter(
                    idempotency_key=params.idempotency_key
                ).first()
                if existing is not None:
                    results.append(existing)
                    continue

                LedgerService._validate_currency(params)

                try:
                    with transaction.atomic():
                        entry = EscrowLedgerEntry.objects.create(
                            escrow_payment_id=params.escrow_payment_id,
                            allocation_id=params.allocation_id,
                            store_id=params.store_id,
                            direction=params.direction,
                            amount_cents=params.amount_cents,
                            currency=params.currency,
                            reason=params.reason,
                            description=params.description or "",
                            recorded_at=params.recorded_at or timezone.now(),
                            idempotency_key=params.idempotency_key,
                        )
                except IntegrityError:
                    # Written by a concurrent caller between our check and insert
                    entry = EscrowLedgerEntry.objects.get(
                        idempotency_key=params.idempotency_key
                    )

                logger.debug(
                    "Recorded escrow ledger entry",
                    extra={
                        "escrow_payment_id": str(params.escrow_payment_id),
                        "allocation_id": str(params.allocation_id),
                        "direction": params.direction,
                        "amount_cents": params.amount_cents,
                        "reason": params.reason,
                    },
                )
                results.append(entry)

        return results

    @staticmethod
    def _validate_currency(params: RecordEntryParams) -> None:
        other = (
            EscrowLedgerEntry.objects.filter(escrow_payment_id=params.escrow_payment_id)
            .exclude(currency=params.currency)
            .values_list("currency", flat=True)
            .first()
        )
        if other is not None:
            raise CurrencyMismatchError(
                "Ledger entries of one escrow payment must share a currency",
                details={
                    "escrow_payment_id": str(params.escrow_payment_id),
                    "currency": params.currency,
                    "existing_currency": other,
                },
            )

    @staticmethod
    def get_payment_balance(escrow_payment_id: uuid.UUID, currency: str = "usd") -> Money:
        """Credits minus debits for one escrow payment."""
        entries = EscrowLedgerEntry.objects.filter(escrow_payment_id=escrow_payment_id)
        first = entries.values_list("currency", flat=True).first()
        return Money(entries.balance_cents(), first or currency)

    @staticmethod
    def get_store_balance(store_id: uuid.UUID, currency: str) -> Money:
        """Escrow still held for a store, in one currency."""
        cents = EscrowLedgerEntry.objects.filter(
            store_id=store_id, currency=currency
        ).balance_cents()
        return Money(cents, currency)

    @staticmethod
    def get_entries_for_payment(escrow_payment_id: uuid.UUID) -> list[EscrowLedgerEntry]:
        return list(
            EscrowLedgerEntry.objects.filter(escrow_payment_id=escrow_payment_id)
        )

    @staticmethod
    def get_entries_for_allocation(allocation_id: uuid.UUID) -> list[EscrowLedgerEntry]:
        return list(EscrowLedgerEntry.objects.filter(allocation_id=allocation_id))


# Shared stateless instance
ledger = LedgerService()
