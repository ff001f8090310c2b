"""
Seller funds app configuration.

Covers escrow, the escrow ledger, commission rules, settlements, payouts
and commission invoicing.
"""

from django.apps import AppConfig


class FundsConfig(AppConfig):
    """Configuration for the seller funds application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "funds"
    verbose_name = "Seller Funds"

    def ready(self) -> None:
        # Ledger models live in a subpackage; import so the app registry sees them
        from funds.ledger import models as ledger_models  # noqa: F401
