"""
Project-wide pytest configuration.

App-specific fixtures are defined in each app's tests/conftest.py.
"""

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full escrow-to-invoice flows)
    - test_*_service.py, test_tasks.py, etc. → integration
    - test_models.py, test_adapters.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_services.py",
        "test_tasks.py",
        "test_escrow_service.py",
        "test_commission_resolver.py",
        "test_settlement_aggregator.py",
        "test_payout_scheduler.py",
        "test_invoice_service.py",
        "test_ledger_service.py",
        "test_optimistic_locking.py",
        "test_document_numbers.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_types.py",
        "test_periods.py",
        "test_adapters.py",
        "test_factories.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_service_result.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def _funds_test_settings(settings):
    """Pin the funds settings tests compute expected figures from."""
    from decimal import Decimal

    settings.FUNDS_DEFAULT_COMMISSION_RATE = Decimal("10.00")
    settings.FUNDS_RETURN_WINDOW_DAYS = 14
    settings.FUNDS_PAYOUT_MAX_RETRIES = 3
    settings.FUNDS_PAYOUT_RETRY_BASE_SECONDS = 3600
    settings.FUNDS_PAYOUT_RETRY_FACTOR = 4
    settings.FUNDS_PAYOUT_RETRY_MAX_SECONDS = 24 * 3600
    settings.FUNDS_INVOICE_TAX_RATE = Decimal("23.00")
    settings.FUNDS_INVOICE_PAYMENT_DUE_DAYS = 14


def _patch_postgresql_flush_for_cascade():
    """
    Patch PostgreSQL flush to always use CASCADE.

    TransactionTestCase (and ``django_db(transaction=True)``) resets the
    database with TRUNCATE, which fails on tables referenced by foreign keys
    unless CASCADE is used.
    """
    from django.db.backends.postgresql import operations

    original_sql_flush = operations.DatabaseOperations.sql_flush

    def sql_flush_with_cascade(
        self, style, tables, *, reset_sequences=False, allow_cascade=False
    ):
        return original_sql_flush(
            self, style, tables, reset_sequences=reset_sequences, allow_cascade=True
        )

    operations.DatabaseOperations.sql_flush = sql_flush_with_cascade


_patch_postgresql_flush_for_cascade()
