"""
Factory Boy factories for seller funds test data.

Factories build rows directly, bypassing the services. Use them for model
and repository tests, or to set up state a service would refuse to create
(a payout item claiming an allocation, a finalized settlement). Flows that
need ledger entries should go through EscrowAccount instead.

Usage:
    from funds.tests.factories import EscrowAllocationFactory, SellerPayoutFactory

    allocation = EscrowAllocationFactory(amount_cents=6000, shipping_cents=500)
    payout = SellerPayoutFactory(store_id=allocation.store_id)
"""

import uuid
from decimal import Decimal

import factory
from django.utils import timezone

from funds.models import (
    CommissionRule,
    EscrowAllocation,
    EscrowPayment,
    PayoutSettings,
    SellerPayout,
    SellerPayoutItem,
    Settlement,
)
from funds.models.settlement import settlement_number
from funds.periods import month_bounds
from funds.state_machines import (
    CommissionRuleType,
    PayoutFrequency,
    PayoutMethod,
)


class EscrowPaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for EscrowPayment.

    Default is a $100 USD capture opened now.
    """

    class Meta:
        model = EscrowPayment
        skip_postgeneration_save = True

    order_id = factory.LazyFunction(uuid.uuid4)
    buyer_id = factory.LazyFunction(uuid.uuid4)
    total_cents = 10000
    currency = "usd"
    opened_at = factory.LazyFunction(timezone.now)


class EscrowAllocationFactory(factory.django.DjangoModelFactory):
    """
    Factory for EscrowAllocation.

    Default is a HELD allocation covering the whole payment.

    Example:
        # Eligible for payout
        allocation = EscrowAllocationFactory(payout_eligible_at=timezone.now())
    """

    class Meta:
        model = EscrowAllocation
        skip_postgeneration_save = True

    escrow_payment = factory.SubFactory(EscrowPaymentFactory)
    store_id = factory.LazyFunction(uuid.uuid4)
    amount_cents = factory.LazyAttribute(lambda o: o.escrow_payment.total_cents)
    shipping_cents = 0
    currency = factory.LazyAttribute(lambda o: o.escrow_payment.currency)
    category_ids = factory.LazyFunction(list)
    opened_at = factory.LazyAttribute(lambda o: o.escrow_payment.opened_at)


class CommissionRuleFactory(factory.django.DjangoModelFactory):
    """
    Factory for CommissionRule.

    Default is an unbounded, active 10% global rule.

    Example:
        CommissionRuleFactory(
            rule_type=CommissionRuleType.CATEGORY,
            category_id="books",
            commission_rate=Decimal("8.00"),
        )
    """

    class Meta:
        model = CommissionRule
        skip_postgeneration_save = True

    rule_type = CommissionRuleType.GLOBAL
    commission_rate = Decimal("10.00")
    is_active = True


class PayoutSettingsFactory(factory.django.DjangoModelFactory):
    """
    Factory for PayoutSettings.

    Default is a verified Stripe Connect store paid weekly on Fridays.
    """

    class Meta:
        model = PayoutSettings
        skip_postgeneration_save = True

    store_id = factory.LazyFunction(uuid.uuid4)
    payout_method = PayoutMethod.STRIPE_CONNECT
    destination_reference = factory.Sequence(lambda n: f"acct_test_{n}")
    is_verified = True
    frequency = PayoutFrequency.WEEKLY
    payout_day = 4
    minimum_payout_cents = 1000
    currency = "usd"


class SellerPayoutFactory(factory.django.DjangoModelFactory):
    """
    Factory for SellerPayout.

    Default is a SCHEDULED $90 Stripe Connect payout dated now.
    """

    class Meta:
        model = SellerPayout
        skip_postgeneration_save = True

    store_id = factory.LazyFunction(uuid.uuid4)
    payout_reference = factory.Sequence(lambda n: f"PO-TEST-{n:06d}")
    scheduled_date = factory.LazyFunction(timezone.now)
    total_cents = 9000
    currency = "usd"
    payout_method = PayoutMethod.STRIPE_CONNECT
    destination_reference = factory.Sequence(lambda n: f"acct_test_{n}")
    max_retries = 3


class SellerPayoutItemFactory(factory.django.DjangoModelFactory):
    """Active payout item; the allocation defaults to one of the payout's store."""

    class Meta:
        model = SellerPayoutItem
        skip_postgeneration_save = True

    payout = factory.SubFactory(SellerPayoutFactory)
    allocation = factory.SubFactory(
        EscrowAllocationFactory,
        store_id=factory.SelfAttribute("..payout.store_id"),
    )
    escrow_payment_id = factory.LazyAttribute(lambda o: o.allocation.escrow_payment_id)
    gross_cents = 10000
    commission_rate = Decimal("10.00")
    commission_cents = 1000
    amount_cents = 9000
    is_active = True


class SettlementFactory(factory.django.DjangoModelFactory):
    """
    Factory for Settlement.

    Default is a DRAFT version 1 for May 2024 with no items.

    Example:
        settlement = SettlementFactory(
            status=SettlementStatus.FINALIZED,
            total_commission_cents=1000,
        )
    """

    class Meta:
        model = Settlement
        skip_postgeneration_save = True

    store_id = factory.LazyFunction(uuid.uuid4)
    year = 2024
    month = 5
    version = 1
    settlement_number = factory.LazyAttribute(
        lambda o: settlement_number(o.store_id, o.year, o.month, o.version)
    )
    currency = "usd"
    period_start = factory.LazyAttribute(lambda o: month_bounds(o.year, o.month)[0])
    period_end = factory.LazyAttribute(lambda o: month_bounds(o.year, o.month)[1])
    generated_at = factory.LazyFunction(timezone.now)
