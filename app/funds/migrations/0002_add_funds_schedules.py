"""
Add Celery Beat schedules for seller funds.

This migration creates periodic task schedules for:
- Escrow maintenance (promoting allocations past the return window)
- Payout lifecycle (scheduling, execution, retries, reconciliation)
- Month-end settlements and commission invoices
"""

from django.db import migrations

TASK_NAMES = [
    "Promote Payout-Eligible Allocations",
    "Schedule Seller Payouts",
    "Process Due Seller Payouts",
    "Retry Failed Seller Payouts",
    "Reconcile Processing Seller Payouts",
    "Run Monthly Settlements",
    "Issue Monthly Commission Invoices",
]


def create_periodic_tasks(apps, schema_editor):
    """Create periodic tasks for seller funds."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # =========================================================================
    # Interval Schedules
    # =========================================================================

    schedule_15min, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )
    schedule_30min, _ = IntervalSchedule.objects.get_or_create(
        every=30,
        period="minutes",
    )
    schedule_1hour, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="hours",
    )

    # =========================================================================
    # Crontab Schedules
    # =========================================================================

    # Daily at 1 AM UTC
    crontab_daily_1am, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="1",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )

    # First of the month at 3 AM UTC
    crontab_monthly_3am, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="3",
        day_of_week="*",
        day_of_month="1",
        month_of_year="*",
    )

    # First of the month at 6 AM UTC, after settlements are built
    crontab_monthly_6am, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="6",
        day_of_week="*",
        day_of_month="1",
        month_of_year="*",
    )

    # =========================================================================
    # Periodic Tasks - Escrow
    # =========================================================================

    PeriodicTask.objects.get_or_create(
        name="Promote Payout-Eligible Allocations",
        defaults={
            "task": "funds.workers.escrow_monitor.promote_eligible_allocations",
            "interval": schedule_1hour,
            "enabled": True,
            "description": (
                "Marks delivered allocations as payout-eligible once the "
                "return window has elapsed."
            ),
        },
    )

    # =========================================================================
    # Periodic Tasks - Payouts
    # =========================================================================

    PeriodicTask.objects.get_or_create(
        name="Schedule Seller Payouts",
        defaults={
            "task": "funds.workers.payout_executor.schedule_payouts",
            "crontab": crontab_daily_1am,
            "enabled": True,
            "description": (
                "Creates or extends payouts for verified stores whose eligible "
                "balance reaches their minimum payout."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Process Due Seller Payouts",
        defaults={
            "task": "funds.workers.payout_executor.process_due_payouts",
            "interval": schedule_15min,
            "enabled": True,
            "description": "Queues transfers for scheduled payouts that are due.",
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Retry Failed Seller Payouts",
        defaults={
            "task": "funds.workers.payout_executor.retry_failed_payouts",
            "interval": schedule_15min,
            "enabled": True,
            "description": "Requeues failed payouts whose backoff delay has elapsed.",
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Reconcile Processing Seller Payouts",
        defaults={
            "task": "funds.workers.payout_executor.reconcile_processing_payouts",
            "interval": schedule_30min,
            "enabled": True,
            "description": (
                "Looks up transfers for payouts stuck in processing and records "
                "the provider's outcome."
            ),
        },
    )

    # =========================================================================
    # Periodic Tasks - Settlements and Invoicing
    # =========================================================================

    PeriodicTask.objects.get_or_create(
        name="Run Monthly Settlements",
        defaults={
            "task": "funds.workers.settlement_runner.run_monthly_settlements",
            "crontab": crontab_monthly_3am,
            "enabled": True,
            "description": "Builds settlement statements for the previous month.",
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Issue Monthly Commission Invoices",
        defaults={
            "task": "funds.workers.settlement_runner.issue_period_invoices",
            "crontab": crontab_monthly_6am,
            "enabled": False,
            "description": (
                "Issues commission invoices for finalized settlements of the "
                "previous month. Disabled until finance enables it."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=TASK_NAMES).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("funds", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
