import uuid
from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


def _uuid_pk():
    return models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
        primary_key=True,
        serialize=False,
    )


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _document_line_fields():
    return [
        ("id", _uuid_pk()),
        ("position", models.PositiveSmallIntegerField(default=1)),
        ("description", models.CharField(max_length=500)),
        (
            "quantity",
            models.DecimalField(decimal_places=3, default=Decimal("1"), max_digits=12),
        ),
        ("unit_price_cents", models.BigIntegerField()),
        ("tax_rate", models.DecimalField(decimal_places=2, max_digits=5)),
        ("net_cents", models.BigIntegerField()),
        ("tax_cents", models.BigIntegerField()),
        ("gross_cents", models.BigIntegerField()),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        # =====================================================================
        # Escrow
        # =====================================================================
        migrations.CreateModel(
            name="EscrowPayment",
            fields=[
                ("id", _uuid_pk()),
                *_timestamps(),
                ("order_id", models.UUIDField(db_index=True)),
                ("buyer_id", models.UUIDField(db_index=True)),
                ("total_cents", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("opened_at", models.DateTimeField(db_index=True)),
                ("payment_reference", models.CharField(blank=True, default="", max_length=255)),
            ],
            options={
                "verbose_name": "Escrow payment",
                "verbose_name_plural": "Escrow payments",
                "ordering": ["-opened_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total_cents__gt", 0)),
                        name="escrow_payment_total_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowAllocation",
            fields=[
                ("id", _uuid_pk()),
                *_timestamps(),
                ("store_id", models.UUIDField(db_index=True)),
                ("shipment_id", models.UUIDField(blank=True, null=True)),
                ("amount_cents", models.PositiveBigIntegerField()),
                ("shipping_cents", models.PositiveBigIntegerField(default=0)),
                ("refunded_cents", models.PositiveBigIntegerField(default=0)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("category_ids", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("held", "Held"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="held",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("opened_at", models.DateTimeField(db_index=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("payout_eligible_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("payout_reference", models.CharField(blank=True, default="", max_length=255)),
                ("refund_reference", models.CharField(blank=True, default="", max_length=255)),
                (
                    "escrow_payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="allocations",
                        to="funds.escrowpayment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow allocation",
                "verbose_name_plural": "Escrow allocations",
                "ordering": ["opened_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["store_id", "status", "payout_eligible_at"],
                        name="escrow_alloc_store_status_idx",
                    ),
                    models.Index(
                        fields=["store_id", "opened_at"],
                        name="escrow_alloc_store_opened_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="escrow_allocation_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("shipping_cents__lte", models.F("amount_cents"))),
                        name="escrow_allocation_shipping_within_amount",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("refunded_cents__lte", models.F("amount_cents"))),
                        name="escrow_allocation_refund_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="EscrowLedgerEntry",
            fields=[
                ("id", _uuid_pk()),
                ("store_id", models.UUIDField(db_index=True)),
                (
                    "direction",
                    models.CharField(
                        choices=[("credit", "Credit"), ("debit", "Debit")],
                        max_length=10,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Amount in cents (always positive)"),
                ),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("funds_captured", "Funds Captured"),
                            ("payout_release", "Payout Release"),
                            ("refund", "Refund"),
                            ("partial_refund", "Partial Refund"),
                        ],
                        max_length=30,
                    ),
                ),
                ("description", models.TextField(blank=True, default="")),
                ("recorded_at", models.DateTimeField(db_index=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Unique key to prevent duplicate entries",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "allocation",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="funds.escrowallocation",
                    ),
                ),
                (
                    "escrow_payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="funds.escrowpayment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow ledger entry",
                "verbose_name_plural": "Escrow ledger entries",
                "ordering": ["recorded_at", "created_at"],
                "indexes": [
                    models.Index(
                        fields=["escrow_payment", "direction"],
                        name="escrow_ledger_payment_dir_idx",
                    ),
                    models.Index(
                        fields=["store_id", "recorded_at"],
                        name="escrow_ledger_store_rec_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="escrow_ledger_amount_positive",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Commission
        # =====================================================================
        migrations.CreateModel(
            name="CommissionRule",
            fields=[
                ("id", _uuid_pk()),
                *_timestamps(),
                (
                    "rule_type",
                    models.CharField(
                        choices=[
                            ("global", "Global"),
                            ("category", "Category"),
                            ("seller", "Seller"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                (
                    "category_id",
                    models.CharField(blank=True, db_index=True, max_length=100, null=True),
                ),
                ("store_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("commission_rate", models.DecimalField(decimal_places=2, max_digits=5)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("effective_from", models.DateTimeField(blank=True, null=True)),
                ("effective_to", models.DateTimeField(blank=True, null=True)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
            ],
            options={
                "verbose_name": "Commission rule",
                "verbose_name_plural": "Commission rules",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["rule_type", "is_active"],
                        name="comm_rule_type_active_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("commission_rate__gte", Decimal("0")),
                            ("commission_rate__lte", Decimal("100")),
                        ),
                        name="commission_rule_rate_range",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("category_id__isnull", False), ("rule_type", "category")),
                            models.Q(
                                models.Q(("rule_type", "category"), _negated=True),
                                ("category_id__isnull", True),
                            ),
                            _connector="OR",
                        ),
                        name="commission_rule_category_scope",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("rule_type", "seller"), ("store_id__isnull", False)),
                            models.Q(
                                models.Q(("rule_type", "seller"), _negated=True),
                                ("store_id__isnull", True),
                            ),
                            _connector="OR",
                        ),
                        name="commission_rule_store_scope",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("effective_from__isnull", True),
                            ("effective_to__isnull", True),
                            ("effective_from__lte", models.F("effective_to")),
                            _connector="OR",
                        ),
                        name="commission_rule_window_ordered",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Settlements
        # =====================================================================
        migrations.CreateModel(
            name="Settlement",
            fields=[
                ("id", _uuid_pk()),
                *_timestamps(),
                ("store_id", models.UUIDField(db_index=True)),
                ("year", models.PositiveSmallIntegerField()),
                ("month", models.PositiveSmallIntegerField()),
                ("version", models.PositiveIntegerField(default=1)),
                ("settlement_number", models.CharField(db_index=True, max_length=40)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("draft", "Draft"),
                            ("finalized", "Finalized"),
                            ("approved", "Approved"),
                            ("exported", "Exported"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("period_start", models.DateTimeField()),
                ("period_end", models.DateTimeField()),
                ("gross_sales_cents", models.BigIntegerField(default=0)),
                ("total_shipping_cents", models.BigIntegerField(default=0)),
                ("total_commission_cents", models.BigIntegerField(default=0)),
                ("total_refunds_cents", models.BigIntegerField(default=0)),
                ("total_adjustments_cents", models.BigIntegerField(default=0)),
                ("net_payable_cents", models.BigIntegerField(default=0)),
                ("order_count", models.PositiveIntegerField(default=0)),
                ("notes", models.TextField(blank=True, default="")),
                ("generated_at", models.DateTimeField()),
                ("finalized_at", models.DateTimeField(blank=True, null=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("approved_by", models.CharField(blank=True, default="", max_length=255)),
                ("exported_at", models.DateTimeField(blank=True, null=True)),
                (
                    "supersedes",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="superseded_by",
                        to="funds.settlement",
                    ),
                ),
            ],
            options={
                "verbose_name": "Settlement",
                "verbose_name_plural": "Settlements",
                "ordering": ["-year", "-month", "store_id", "-version"],
                "indexes": [
                    models.Index(
                        fields=["year", "month", "status"],
                        name="settlement_period_status_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("store_id", "year", "month", "version"),
                        name="settlement_store_period_version_unique",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("month__gte", 1), ("month__lte", 12)),
                        name="settlement_month_range",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("year__gte", 2020), ("year__lte", 2100)),
                        name="settlement_year_range",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("version__gte", 1)),
                        name="settlement_version_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SettlementItem",
            fields=[
                ("id", _uuid_pk()),
                ("escrow_payment_id", models.UUIDField()),
                ("order_id", models.UUIDField()),
                ("seller_amount_cents", models.BigIntegerField()),
                ("shipping_cents", models.BigIntegerField(default=0)),
                ("commission_rate", models.DecimalField(decimal_places=2, max_digits=5)),
                ("commission_rule_id", models.UUIDField(blank=True, null=True)),
                ("commission_cents", models.BigIntegerField()),
                ("refunded_cents", models.BigIntegerField(default=0)),
                ("net_cents", models.BigIntegerField()),
                (
                    "allocation_status",
                    models.CharField(
                        choices=[
                            ("held", "Held"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        max_length=20,
                    ),
                ),
                ("recognized_at", models.DateTimeField()),
                (
                    "allocation",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlement_items",
                        to="funds.escrowallocation",
                    ),
                ),
                (
                    "settlement",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="funds.settlement",
                    ),
                ),
            ],
            options={
                "ordering": ["recognized_at", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("settlement", "allocation"),
                        name="settlement_item_allocation_unique",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SettlementAdjustment",
            fields=[
                ("id", _uuid_pk()),
                ("original_year", models.PositiveSmallIntegerField()),
                ("original_month", models.PositiveSmallIntegerField()),
                ("amount_cents", models.BigIntegerField()),
                ("reason", models.CharField(max_length=500)),
                ("related_order_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField()),
                (
                    "settlement",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="adjustments",
                        to="funds.settlement",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents", 0), _negated=True),
                        name="settlement_adjustment_nonzero",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Payouts
        # =====================================================================
        migrations.CreateModel(
            name="PayoutSettings",
            fields=[
                ("id", _uuid_pk()),
                *_timestamps(),
                ("store_id", models.UUIDField(unique=True)),
                (
                    "payout_method",
                    models.CharField(
                        choices=[
                            ("stripe_connect", "Stripe Connect"),
                            ("bank_transfer", "Bank Transfer"),
                        ],
                        default="stripe_connect",
                        max_length=30,
                    ),
                ),
                (
                    "destination_reference",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("is_verified", models.BooleanField(default=False)),
                (
                    "frequency",
                    models.CharField(
                        choices=[
                            ("weekly", "Weekly"),
                            ("biweekly", "Bi-weekly"),
                            ("monthly", "Monthly"),
                        ],
                        default="weekly",
                        max_length=20,
                    ),
                ),
                ("payout_day", models.PositiveSmallIntegerField(default=4)),
                ("minimum_payout_cents", models.PositiveBigIntegerField(default=1000)),
                ("currency", models.CharField(default="usd", max_length=3)),
            ],
            options={
                "verbose_name": "Payout settings",
                "verbose_name_plural": "Payout settings",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("payout_day__lte", 31)),
                        name="payout_settings_day_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SellerPayout",
            fields=[
                ("id", _uuid_pk()),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                *_timestamps(),
                ("store_id", models.UUIDField(db_index=True)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("scheduled", "Scheduled"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="scheduled",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("payout_reference", models.CharField(max_length=64, unique=True)),
                ("scheduled_date", models.DateTimeField(db_index=True)),
                ("total_cents", models.BigIntegerField(default=0)),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "payout_method",
                    models.CharField(
                        choices=[
                            ("stripe_connect", "Stripe Connect"),
                            ("bank_transfer", "Bank Transfer"),
                        ],
                        max_length=30,
                    ),
                ),
                (
                    "destination_reference",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("max_retries", models.PositiveIntegerField(default=3)),
                ("next_retry_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("provider_reference", models.CharField(blank=True, default="", max_length=255)),
                ("processing_started_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.CharField(blank=True, default="", max_length=255)),
                ("failure_code", models.CharField(blank=True, default="", max_length=100)),
                ("last_error", models.TextField(blank=True, default="")),
            ],
            options={
                "verbose_name": "Seller payout",
                "verbose_name_plural": "Seller payouts",
                "ordering": ["-scheduled_date"],
                "indexes": [
                    models.Index(fields=["store_id", "status"], name="payout_store_status_idx"),
                    models.Index(
                        fields=["status", "scheduled_date"],
                        name="payout_status_scheduled_idx",
                    ),
                    models.Index(
                        fields=["status", "next_retry_at"],
                        name="payout_status_retry_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total_cents__gte", 0)),
                        name="seller_payout_total_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SellerPayoutItem",
            fields=[
                ("id", _uuid_pk()),
                ("escrow_payment_id", models.UUIDField()),
                ("gross_cents", models.BigIntegerField()),
                (
                    "commission_rate",
                    models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=5),
                ),
                ("commission_cents", models.BigIntegerField(default=0)),
                ("amount_cents", models.BigIntegerField()),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "allocation",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_items",
                        to="funds.escrowallocation",
                    ),
                ),
                (
                    "payout",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="funds.sellerpayout",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("allocation",),
                        name="payout_item_active_allocation_unique",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gte", 0)),
                        name="payout_item_amount_non_negative",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Invoicing
        # =====================================================================
        migrations.CreateModel(
            name="DocumentCounter",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "doc_type",
                    models.CharField(
                        choices=[("INV", "Commission Invoice"), ("CN", "Credit Note")],
                        max_length=5,
                    ),
                ),
                ("year", models.PositiveSmallIntegerField()),
                ("next_number", models.PositiveIntegerField(default=1)),
            ],
            options={
                "verbose_name": "Document counter",
                "verbose_name_plural": "Document counters",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("doc_type", "year"),
                        name="document_counter_type_year_unique",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("next_number__gte", 1)),
                        name="document_counter_next_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionInvoice",
            fields=[
                ("id", _uuid_pk()),
                *_timestamps(),
                ("invoice_number", models.CharField(max_length=20, unique=True)),
                ("store_id", models.UUIDField(db_index=True)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("draft", "Draft"),
                            ("issued", "Issued"),
                            ("paid", "Paid"),
                            ("cancelled", "Cancelled"),
                            ("corrected", "Corrected"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("issue_date", models.DateField()),
                ("due_date", models.DateField()),
                ("period_start", models.DateTimeField()),
                ("period_end", models.DateTimeField()),
                ("net_cents", models.BigIntegerField(default=0)),
                ("tax_cents", models.BigIntegerField(default=0)),
                ("gross_cents", models.BigIntegerField(default=0)),
                ("issuer_name", models.CharField(max_length=255)),
                ("issuer_tax_id", models.CharField(blank=True, default="", max_length=50)),
                ("issuer_address", models.CharField(blank=True, default="", max_length=500)),
                ("seller_name", models.CharField(blank=True, default="", max_length=255)),
                ("seller_tax_id", models.CharField(blank=True, default="", max_length=50)),
                ("notes", models.TextField(blank=True, default="")),
                ("issued_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "settlement",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoice",
                        to="funds.settlement",
                    ),
                ),
            ],
            options={
                "verbose_name": "Commission invoice",
                "verbose_name_plural": "Commission invoices",
                "ordering": ["-issue_date", "-invoice_number"],
                "indexes": [
                    models.Index(fields=["store_id", "status"], name="invoice_store_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("gross_cents__gte", 0)),
                        name="commission_invoice_gross_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=[
                *_document_line_fields(),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="funds.commissioninvoice",
                    ),
                ),
            ],
            options={
                "ordering": ["position"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="CreditNote",
            fields=[
                ("id", _uuid_pk()),
                *_timestamps(),
                ("credit_note_number", models.CharField(max_length=20, unique=True)),
                ("store_id", models.UUIDField(db_index=True)),
                (
                    "note_type",
                    models.CharField(
                        choices=[("full", "Full"), ("partial", "Partial")],
                        max_length=10,
                    ),
                ),
                ("reason", models.CharField(max_length=500)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("issue_date", models.DateField()),
                ("net_cents", models.BigIntegerField(default=0)),
                ("tax_cents", models.BigIntegerField(default=0)),
                ("gross_cents", models.BigIntegerField(default=0)),
                ("issued_at", models.DateTimeField()),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_notes",
                        to="funds.commissioninvoice",
                    ),
                ),
            ],
            options={
                "verbose_name": "Credit note",
                "verbose_name_plural": "Credit notes",
                "ordering": ["-issue_date", "-credit_note_number"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("gross_cents__gt", 0)),
                        name="credit_note_gross_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CreditNoteLine",
            fields=[
                *_document_line_fields(),
                (
                    "credit_note",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="funds.creditnote",
                    ),
                ),
            ],
            options={
                "ordering": ["position"],
                "abstract": False,
            },
        ),
    ]
