"""
Service dependencies for API routes.

Services are built once in the application lifespan and stored on
app.state; routes reach them through these functions so tests can swap
them with app.dependency_overrides.
"""

from fastapi import Request

from subscription.reconciler import SubscriptionEventReconciler
from subscription.usage_ledger import UsageLedger


def get_ledger(request: Request) -> UsageLedger:
    return request.app.state.ledger


def get_reconciler(request: Request) -> SubscriptionEventReconciler:
    return request.app.state.reconciler
