"""
Payout executor worker.

Celery tasks that drive PayoutScheduler on a schedule.

Tasks:
- schedule_payouts: Batch eligible allocations into payouts for every store
- process_due_payouts: Queue execution for SCHEDULED payouts whose date passed
- execute_single_payout: Execute one payout (locking lives in the service)
- retry_failed_payouts: Re-queue FAILED payouts whose backoff has elapsed
- reconcile_processing_payouts: Ask the provider about stuck PROCESSING payouts

Usage:
    # Typically called via celery-beat schedule
    from funds.workers import process_due_payouts

    process_due_payouts.delay()

    # Execute a specific payout
    execute_single_payout.delay(str(payout.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task

from funds.exceptions import UNKNOWN_OUTCOME

logger = logging.getLogger(__name__)

# Maximum payouts queued per sweep
BATCH_SIZE = 100


def _scheduler():
    from funds.services import PayoutScheduler

    return PayoutScheduler()


# =============================================================================
# Scheduling
# =============================================================================


@shared_task
def schedule_payouts() -> dict:
    """
    Create or extend payouts for every verified store with eligible funds.

    Idempotent: allocations already claimed by an active payout are skipped.
    """
    logger.info("Starting payout scheduling run")
    result = _scheduler().schedule_all()
    summary = result.data
    return {
        "scheduled_count": len(summary["scheduled"]),
        "skipped": summary["skipped"],
    }


@shared_task
def process_due_payouts() -> dict:
    """Queue an execution task for each due SCHEDULED payout."""
    due = _scheduler().process_due()[:BATCH_SIZE]

    queued_count = 0
    for payout in due:
        execute_single_payout.delay(str(payout.id))
        queued_count += 1
        logger.info(
            "Queued due payout for execution",
            extra={
                "payout_id": str(payout.id),
                "store_id": str(payout.store_id),
                "total_cents": payout.total_cents,
            },
        )

    logger.info(
        f"Due payout scan complete: queued {queued_count} payouts",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


# =============================================================================
# Execution
# =============================================================================


@shared_task(acks_late=True)
def execute_single_payout(payout_id: str) -> dict:
    """
    Execute a single payout.

    Not retried by Celery: a crash after the provider call leaves the payout
    PROCESSING, and reconcile_processing_payouts settles it.

    Returns:
        Dict with status one of "executed", "failed", "unknown_outcome",
        "not_executed", plus the payout id and error details
    """
    try:
        payout_uuid = UUID(str(payout_id))
    except ValueError:
        logger.error(f"Invalid payout_id format: {payout_id}")
        return {"status": "not_executed", "payout_id": payout_id, "error": "Invalid UUID format"}

    result = _scheduler().execute(payout_uuid)

    if result.success:
        payout = result.data
        status = "executed" if payout.paid_at else "failed"
        return {
            "status": status,
            "payout_id": payout_id,
            "payout_status": payout.status,
            "provider_reference": payout.provider_reference,
        }

    if result.error_code == UNKNOWN_OUTCOME:
        return {"status": "unknown_outcome", "payout_id": payout_id}

    logger.warning(
        "Payout not executed",
        extra={"payout_id": payout_id, "error_code": result.error_code},
    )
    return {
        "status": "not_executed",
        "payout_id": payout_id,
        "error": result.error,
        "error_code": result.error_code,
    }


# =============================================================================
# Retry And Reconciliation
# =============================================================================


@shared_task
def retry_failed_payouts() -> dict:
    """Move FAILED payouts whose backoff elapsed back to SCHEDULED and queue them."""
    scheduler = _scheduler()

    retried_count = 0
    for payout in scheduler.due_for_retry()[:BATCH_SIZE]:
        result = scheduler.retry(payout.id, expected_version=payout.version)
        if not result.success:
            logger.warning(
                "Could not retry payout",
                extra={"payout_id": str(payout.id), "error_code": result.error_code},
            )
            continue
        execute_single_payout.delay(str(payout.id))
        retried_count += 1

    logger.info(
        f"Payout retry scan complete: retried {retried_count} payouts",
        extra={"retried_count": retried_count},
    )
    return {"retried_count": retried_count}


@shared_task
def reconcile_processing_payouts() -> dict:
    """Settle PROCESSING payouts whose transfer outcome was never recorded."""
    scheduler = _scheduler()

    counts = {"paid": 0, "failed": 0, "unresolved": 0}
    for payout in scheduler.stale_processing()[:BATCH_SIZE]:
        result = scheduler.reconcile(payout.id)
        if not result.success:
            counts["unresolved"] += 1
        elif result.data.paid_at:
            counts["paid"] += 1
        else:
            counts["failed"] += 1

    if counts["unresolved"]:
        logger.warning("Payouts still awaiting reconciliation", extra=counts)
    return counts
