"""
Adapters for external payment services.

Outbound transfer calls go through these adapters for consistent timeouts,
idempotency, error translation and logging.

Usage:
    from funds.adapters import StripeTransferProvider

    scheduler = PayoutScheduler(provider=StripeTransferProvider())
"""

from funds.adapters.stripe_adapter import (
    StripeAdapter,
    StripeTransfer,
    StripeTransferProvider,
    transfer_group_for,
)

__all__ = [
    "StripeAdapter",
    "StripeTransfer",
    "StripeTransferProvider",
    "transfer_group_for",
]
