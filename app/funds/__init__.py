"""
Seller funds accounting.

Escrow of buyer payments per store, an append-only escrow ledger,
commission rule resolution, monthly versioned settlements, scheduled seller
payouts with bounded retry, and commission invoices with credit notes.

Subpackages:
    ledger/          Money value type and the escrow ledger
    models/          Django models for every aggregate
    repositories/    Persistence contract implementations (Django ORM)
    services/        Domain services (escrow, commission, settlement,
                     payout, invoice)
    adapters/        Payment transfer provider (Stripe Connect)
    workers/         Celery tasks driving the periodic jobs
    state_machines/  TextChoices used by the django-fsm fields
"""
