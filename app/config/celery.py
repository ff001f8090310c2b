"""
Celery application for the seller-funds background jobs.

The core runs as a handful of periodic jobs (monthly settlement run, payout
scheduling sweep, payout-due sweep, retry sweep, reconciliation sweep).
Their beat entries live in the database (django-celery-beat) and are seeded
by the funds data migrations.

Tasks are discovered from each installed app's ``tasks.py``; the funds app
re-exports its worker tasks there.

Usage:
    from funds.workers import process_due_payouts

    process_due_payouts.delay()
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
