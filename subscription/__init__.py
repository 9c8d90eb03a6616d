"""
Subscription and Usage Metering for Revive

Architecture:
- The usage ledger meters photo/video generations per owner and kind
- The billing cycle calculator derives weekly/monthly windows from the
  purchase anchor
- The reconciler applies billing provider webhooks to the ledger using
  subscriber state fetched from the provider (never the event body)
"""

from subscription.models import (
    PlanType,
    DenialReason,
    UsageLimits,
    UsageCounter,
    Reservation,
    SubscriptionEventType,
    SubscriptionEvent,
    SubscriberInfo,
    Entitlement,
    UNLIMITED,
)
from subscription.billing_cycle import BillingCycle, compute_cycle, add_months, plan_from_product_id
from subscription.usage_ledger import UsageLedger
from subscription.billing_client import RevenueCatClient, BillingProviderError
from subscription.reconciler import (
    SubscriptionEventReconciler,
    ReconciliationResult,
    ReconciliationError,
    UnauthorizedError,
)

__all__ = [
    # Models
    'PlanType',
    'DenialReason',
    'UsageLimits',
    'UsageCounter',
    'Reservation',
    'SubscriptionEventType',
    'SubscriptionEvent',
    'SubscriberInfo',
    'Entitlement',
    'UNLIMITED',
    # Billing cycles
    'BillingCycle',
    'compute_cycle',
    'add_months',
    'plan_from_product_id',
    # Ledger
    'UsageLedger',
    # Reconciliation
    'RevenueCatClient',
    'BillingProviderError',
    'SubscriptionEventReconciler',
    'ReconciliationResult',
    'ReconciliationError',
    'UnauthorizedError',
]
