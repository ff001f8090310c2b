"""
Monthly settlement and invoicing worker.

Tasks:
- run_monthly_settlements: Build settlements for a month (default: the
  previous month), refreshing drafts and catching up missed stores
- build_store_settlement: Build or refresh one store's settlement
- issue_period_invoices: Invoice every frozen settlement of a month

Usage:
    from funds.workers import run_monthly_settlements

    run_monthly_settlements.delay()           # previous month
    run_monthly_settlements.delay(2024, 5)    # explicit period
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.utils import timezone

from funds.periods import previous_month
from funds.state_machines import SettlementStatus

logger = logging.getLogger(__name__)


def _resolve_period(year: int | None, month: int | None) -> tuple[int, int]:
    if year is None or month is None:
        return previous_month(timezone.now())
    return year, month


@shared_task
def run_monthly_settlements(year: int | None = None, month: int | None = None) -> dict:
    """
    Settle a month for every store.

    Existing drafts are rebuilt; stores with escrow activity but no
    settlement get version 1.
    """
    from funds.services import SettlementAggregator

    year, month = _resolve_period(year, month)
    aggregator = SettlementAggregator()
    logger.info("Starting monthly settlement run", extra={"year": year, "month": month})

    refreshed = 0
    for settlement in aggregator.settlements.for_period(
        year, month, statuses=[SettlementStatus.DRAFT]
    ):
        result = aggregator.build_or_update(settlement.store_id, year, month)
        if result.success:
            refreshed += 1

    result = aggregator.generate_all(year, month)
    if not result.success:
        logger.error(
            "Monthly settlement run failed",
            extra={"year": year, "month": month, "error_code": result.error_code},
        )
        return {"status": "failed", "error_code": result.error_code}

    return {
        "status": "completed",
        "year": year,
        "month": month,
        "refreshed_count": refreshed,
        "created_count": len(result.data["created"]),
        "skipped": result.data["skipped"],
    }


@shared_task
def build_store_settlement(store_id: str, year: int, month: int) -> dict:
    from funds.services import SettlementAggregator

    result = SettlementAggregator().build_or_update(UUID(str(store_id)), year, month)
    if not result.success:
        return {"status": "failed", "store_id": store_id, "error_code": result.error_code}
    return {
        "status": "built",
        "settlement_id": str(result.data.id),
        "settlement_number": result.data.settlement_number,
    }


@shared_task
def issue_period_invoices(year: int | None = None, month: int | None = None) -> dict:
    """Issue commission invoices for the month's finalized settlements."""
    from funds.services import InvoiceIssuer

    year, month = _resolve_period(year, month)
    result = InvoiceIssuer().issue_all_for_period(year, month)
    summary = result.data

    logger.info(
        f"Issued {len(summary['issued'])} commission invoices",
        extra={"year": year, "month": month, "skipped": len(summary["skipped"])},
    )
    return {
        "issued_count": len(summary["issued"]),
        "skipped": summary["skipped"],
        "needs_correction": summary["needs_correction"],
    }
