"""
Seller funds admin configuration.

Imports the ledger admin and registers the funds models. Lifecycle changes
go through the services via admin actions; status fields are read-only.
"""

from django.contrib import admin

from funds.ledger.admin import EscrowLedgerEntryAdmin
from funds.models import (
    CommissionInvoice,
    CommissionRule,
    CreditNote,
    EscrowAllocation,
    EscrowPayment,
    PayoutSettings,
    SellerPayout,
    SellerPayoutItem,
    Settlement,
    SettlementAdjustment,
    SettlementItem,
)

__all__ = [
    "CommissionInvoiceAdmin",
    "CommissionRuleAdmin",
    "CreditNoteAdmin",
    "EscrowLedgerEntryAdmin",
    "EscrowPaymentAdmin",
    "PayoutSettingsAdmin",
    "SellerPayoutAdmin",
    "SettlementAdmin",
]


def _money(cents: int, currency: str) -> str:
    return f"{cents / 100:.2f} {currency.upper()}"


def _report(modeladmin, request, results, verb: str) -> None:
    failed = [result for result in results if not result.success]
    modeladmin.message_user(request, f"{verb} {len(results) - len(failed)} record(s).")
    for result in failed:
        modeladmin.message_user(request, f"{result.error_code}: {result.error}", level="warning")


# =============================================================================
# Escrow
# =============================================================================


class EscrowAllocationInline(admin.TabularInline):
    model = EscrowAllocation
    extra = 0
    can_delete = False
    readonly_fields = [
        "id",
        "store_id",
        "amount_cents",
        "shipping_cents",
        "refunded_cents",
        "status",
        "payout_eligible_at",
        "released_at",
    ]
    fields = readonly_fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(EscrowPayment)
class EscrowPaymentAdmin(admin.ModelAdmin):
    """Read-only view of escrow payments and their allocations."""

    list_display = ["id", "order_id", "amount_display", "opened_at"]
    list_filter = ["currency"]
    search_fields = ["id", "order_id", "payment_reference"]
    date_hierarchy = "opened_at"
    ordering = ["-opened_at"]
    inlines = [EscrowAllocationInline]
    readonly_fields = [field.name for field in EscrowPayment._meta.fields]

    def amount_display(self, obj: EscrowPayment) -> str:
        return _money(obj.total_cents, obj.currency)

    amount_display.short_description = "Total"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


# =============================================================================
# Commission
# =============================================================================


@admin.register(CommissionRule)
class CommissionRuleAdmin(admin.ModelAdmin):
    """
    Commission rules.

    Create and edit through CommissionRuleService so overlap checks run;
    the admin only shows rules and toggles them with actions.
    """

    list_display = [
        "rule_type",
        "category_id",
        "store_id",
        "commission_rate",
        "effective_from",
        "effective_to",
        "is_active",
    ]
    list_filter = ["rule_type", "is_active"]
    search_fields = ["category_id", "store_id", "description"]
    ordering = ["rule_type", "-created_at"]
    readonly_fields = [field.name for field in CommissionRule._meta.fields]
    actions = ["activate_rules", "deactivate_rules"]

    @admin.action(description="Activate selected rules")
    def activate_rules(self, request, queryset):
        from funds.services import CommissionRuleService

        service = CommissionRuleService()
        _report(self, request, [service.activate(rule.id) for rule in queryset], "Activated")

    @admin.action(description="Deactivate selected rules")
    def deactivate_rules(self, request, queryset):
        from funds.services import CommissionRuleService

        service = CommissionRuleService()
        _report(self, request, [service.deactivate(rule.id) for rule in queryset], "Deactivated")

    def has_add_permission(self, request) -> bool:
        return False


# =============================================================================
# Settlements
# =============================================================================


class SettlementItemInline(admin.TabularInline):
    model = SettlementItem
    extra = 0
    can_delete = False
    readonly_fields = [
        "order_id",
        "seller_amount_cents",
        "shipping_cents",
        "commission_rate",
        "commission_cents",
        "refunded_cents",
        "net_cents",
        "recognized_at",
    ]
    fields = readonly_fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


class SettlementAdjustmentInline(admin.TabularInline):
    model = SettlementAdjustment
    extra = 0
    can_delete = False
    readonly_fields = ["original_year", "original_month", "amount_cents", "reason", "created_at"]
    fields = readonly_fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    list_display = [
        "settlement_number",
        "store_id",
        "year",
        "month",
        "version",
        "status",
        "net_display",
    ]
    list_filter = ["status", "year", "month"]
    search_fields = ["settlement_number", "store_id"]
    ordering = ["-year", "-month", "store_id", "-version"]
    inlines = [SettlementItemInline, SettlementAdjustmentInline]
    readonly_fields = [field.name for field in Settlement._meta.fields if field.name != "notes"]
    actions = ["finalize_settlements", "mark_exported"]

    fieldsets = (
        (None, {"fields": ("id", "settlement_number", "store_id", "status", "supersedes")}),
        ("Period", {"fields": ("year", "month", "version", "period_start", "period_end")}),
        (
            "Totals",
            {
                "fields": (
                    "currency",
                    "gross_sales_cents",
                    "total_shipping_cents",
                    "total_commission_cents",
                    "total_refunds_cents",
                    "total_adjustments_cents",
                    "net_payable_cents",
                    "order_count",
                ),
            },
        ),
        (
            "Lifecycle",
            {"fields": ("generated_at", "finalized_at", "approved_at", "approved_by", "exported_at")},
        ),
        ("Notes", {"fields": ("notes",)}),
    )

    def net_display(self, obj: Settlement) -> str:
        return _money(obj.net_payable_cents, obj.currency)

    net_display.short_description = "Net payable"

    @admin.action(description="Finalize selected draft settlements")
    def finalize_settlements(self, request, queryset):
        from funds.services import SettlementAggregator

        aggregator = SettlementAggregator()
        _report(self, request, [aggregator.finalize(s.id) for s in queryset], "Finalized")

    @admin.action(description="Mark selected settlements as exported")
    def mark_exported(self, request, queryset):
        from funds.services import SettlementAggregator

        aggregator = SettlementAggregator()
        _report(self, request, [aggregator.mark_exported(s.id) for s in queryset], "Exported")

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


# =============================================================================
# Payouts
# =============================================================================


@admin.register(PayoutSettings)
class PayoutSettingsAdmin(admin.ModelAdmin):
    list_display = [
        "store_id",
        "payout_method",
        "frequency",
        "payout_day",
        "minimum_payout_cents",
        "is_verified",
    ]
    list_filter = ["payout_method", "frequency", "is_verified"]
    search_fields = ["store_id", "destination_reference"]


class SellerPayoutItemInline(admin.TabularInline):
    model = SellerPayoutItem
    extra = 0
    can_delete = False
    readonly_fields = [
        "allocation",
        "gross_cents",
        "commission_rate",
        "commission_cents",
        "amount_cents",
        "is_active",
    ]
    fields = readonly_fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(SellerPayout)
class SellerPayoutAdmin(admin.ModelAdmin):
    """
    Seller payouts.

    failure_reason is what the seller sees; last_error keeps the provider
    detail for operators.
    """

    list_display = [
        "payout_reference",
        "store_id",
        "amount_display",
        "status",
        "scheduled_date",
        "retry_count",
        "paid_at",
    ]
    list_filter = ["status", "payout_method", "currency"]
    search_fields = ["id", "payout_reference", "store_id", "provider_reference"]
    date_hierarchy = "scheduled_date"
    ordering = ["-scheduled_date"]
    inlines = [SellerPayoutItemInline]
    readonly_fields = [field.name for field in SellerPayout._meta.fields]
    actions = ["reschedule_failed", "reconcile"]

    def amount_display(self, obj: SellerPayout) -> str:
        return _money(obj.total_cents, obj.currency)

    amount_display.short_description = "Amount"

    @admin.action(description="Reschedule selected failed payouts")
    def reschedule_failed(self, request, queryset):
        from funds.services import PayoutScheduler

        scheduler = PayoutScheduler()
        _report(self, request, [scheduler.reschedule_failed(p.id) for p in queryset], "Rescheduled")

    @admin.action(description="Reconcile selected processing payouts with the provider")
    def reconcile(self, request, queryset):
        from funds.services import PayoutScheduler

        scheduler = PayoutScheduler()
        _report(self, request, [scheduler.reconcile(p.id) for p in queryset], "Reconciled")

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payouts (audit trail)."""
        return False


# =============================================================================
# Invoicing
# =============================================================================


@admin.register(CommissionInvoice)
class CommissionInvoiceAdmin(admin.ModelAdmin):
    list_display = ["invoice_number", "store_id", "issue_date", "gross_display", "status"]
    list_filter = ["status", "currency"]
    search_fields = ["invoice_number", "store_id", "seller_name"]
    date_hierarchy = "issue_date"
    ordering = ["-issue_date", "-invoice_number"]
    readonly_fields = [field.name for field in CommissionInvoice._meta.fields if field.name != "notes"]
    actions = ["mark_paid"]

    def gross_display(self, obj: CommissionInvoice) -> str:
        return _money(obj.gross_cents, obj.currency)

    gross_display.short_description = "Gross"

    @admin.action(description="Mark selected invoices as paid")
    def mark_paid(self, request, queryset):
        from funds.services import InvoiceIssuer

        issuer = InvoiceIssuer()
        _report(self, request, [issuer.mark_paid(invoice.id) for invoice in queryset], "Marked paid")

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(CreditNote)
class CreditNoteAdmin(admin.ModelAdmin):
    list_display = ["credit_note_number", "invoice", "note_type", "gross_cents", "issue_date"]
    list_filter = ["note_type"]
    search_fields = ["credit_note_number", "invoice__invoice_number", "reason"]
    ordering = ["-issue_date", "-credit_note_number"]
    readonly_fields = [field.name for field in CreditNote._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
