"""
Escrow monitor worker.

Tasks:
- promote_eligible_allocations: Mark delivered allocations eligible for
  payout once the return window has elapsed
- verify_escrow_ledger: Compare one payment's ledger balance with its held
  allocations
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def promote_eligible_allocations() -> dict:
    from funds.services import EscrowAccount

    result = EscrowAccount().promote_eligible()
    promoted = result.data
    if promoted:
        logger.info(
            f"Promoted {len(promoted)} allocations to payout-eligible",
            extra={"promoted_count": len(promoted)},
        )
    return {"promoted_count": len(promoted)}


@shared_task
def verify_escrow_ledger(escrow_payment_id: str) -> dict:
    from funds.services import EscrowAccount

    result = EscrowAccount().verify_ledger(UUID(str(escrow_payment_id)))
    if not result.success:
        return {"status": "not_found", "escrow_payment_id": escrow_payment_id}

    check = result.data
    return {
        "status": "consistent" if check.is_consistent else "inconsistent",
        "escrow_payment_id": escrow_payment_id,
        "ledger_cents": check.ledger_cents,
        "held_cents": check.held_cents,
    }
