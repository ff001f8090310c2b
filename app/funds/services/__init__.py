"""
Seller funds services.

Services:
    EscrowAccount: Escrow payments, allocations, release and refund
    CommissionRuleResolver: Commission rate for (store, category, date)
    CommissionRuleService: Commission rule administration
    SettlementAggregator: Monthly, versioned settlements per store
    PayoutScheduler: Payout batching, execution, retry and reconciliation
    InvoiceIssuer: Commission invoices and credit notes

Every service takes its collaborators in the constructor and defaults to the
Django repositories and the system clock.
"""

from funds.services.commission_resolver import (
    CommissionRuleResolver,
    CommissionRuleService,
    ResolvedRate,
    calculate_commission,
)
from funds.services.document_numbers import format_document_number, parse_document_number
from funds.services.escrow_service import (
    AllocationSpec,
    EscrowAccount,
    EscrowBalance,
    LedgerCheck,
)
from funds.services.invoice_service import CreditLineSpec, InvoiceIssuer
from funds.services.payout_scheduler import PayoutScheduler, RetryPolicy, next_payout_date
from funds.services.settlement_aggregator import PeriodSummary, SettlementAggregator

__all__ = [
    "AllocationSpec",
    "CommissionRuleResolver",
    "CommissionRuleService",
    "CreditLineSpec",
    "EscrowAccount",
    "EscrowBalance",
    "InvoiceIssuer",
    "LedgerCheck",
    "PayoutScheduler",
    "PeriodSummary",
    "ResolvedRate",
    "RetryPolicy",
    "SettlementAggregator",
    "calculate_commission",
    "format_document_number",
    "next_payout_date",
    "parse_document_number",
]
