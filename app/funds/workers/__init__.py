"""
Celery workers for seller funds.

Usage:
    from funds.workers import process_due_payouts, run_monthly_settlements
"""

from funds.workers.escrow_monitor import promote_eligible_allocations, verify_escrow_ledger
from funds.workers.payout_executor import (
    execute_single_payout,
    process_due_payouts,
    reconcile_processing_payouts,
    retry_failed_payouts,
    schedule_payouts,
)
from funds.workers.settlement_runner import (
    build_store_settlement,
    issue_period_invoices,
    run_monthly_settlements,
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
