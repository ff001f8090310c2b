"""
Django ORM implementations of the repository contracts in funds.protocols.

Usage:
    from funds.repositories import DjangoEscrowRepository

    escrow = DjangoEscrowRepository()
    payment = escrow.get_payment(payment_id, for_update=True)
    escrow.load_allocations(payment)   # payment.allocation_list
"""

from funds.repositories.commission import DjangoCommissionRuleRepository
from funds.repositories.escrow import DjangoEscrowRepository
from funds.repositories.invoice import DjangoInvoiceRepository
from funds.repositories.payout import DjangoPayoutRepository
from funds.repositories.settlement import DjangoSettlementRepository

__all__ = [
    "DjangoCommissionRuleRepository",
    "DjangoEscrowRepository",
    "DjangoInvoiceRepository",
    "DjangoPayoutRepository",
    "DjangoSettlementRepository",
]
