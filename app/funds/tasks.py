"""
Celery task discovery entry point.

autodiscover_tasks() imports ``funds.tasks``; the tasks themselves live in
funds.workers.
"""

from funds.workers import (
    build_store_settlement,
    execute_single_payout,
    issue_period_invoices,
    process_due_payouts,
    promote_eligible_allocations,
    reconcile_processing_payouts,
    retry_failed_payouts,
    run_monthly_settlements,
    schedule_payouts,
    verify_escrow_ledger,
)

__all__ = [
    "build_store_settlement",
    "execute_single_payout",
    "issue_period_invoices",
    "process_due_payouts",
    "promote_eligible_allocations",
    "reconcile_processing_payouts",
    "retry_failed_payouts",
    "run_monthly_settlements",
    "schedule_payouts",
    "verify_escrow_ledger",
]
