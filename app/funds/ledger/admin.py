"""
Django admin for the escrow ledger.

Entries are immutable: no add, change or delete permission.
"""

from django.contrib import admin

from .models import EscrowLedgerEntry


@admin.register(EscrowLedgerEntry)
class EscrowLedgerEntryAdmin(admin.ModelAdmin):
    list_display = [
        "recorded_at",
        "escrow_payment",
        "store_id",
        "direction",
        "amount_cents",
        "currency",
        "reason",
    ]
    list_filter = ["direction", "reason", "currency"]
    search_fields = ["escrow_payment__id", "store_id", "idempotency_key"]
    date_hierarchy = "recorded_at"
    ordering = ["-recorded_at"]
    readonly_fields = [field.name for field in EscrowLedgerEntry._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
