"""Subscription plans, lifecycle state machine and period history.

The lifecycle service lives in ``creditcore.subscriptions.service``; it is
not re-exported here because the ledger imports these models.
"""

from creditcore.subscriptions.models import (
    BillingCycle,
    Plan,
    PlanPrice,
    Subscription,
    SubscriptionHistory,
    SubscriptionStatus,
)
from creditcore.subscriptions.plans import PlanService, plan_service

__all__ = [
    "BillingCycle",
    "Plan",
    "PlanPrice",
    "PlanService",
    "Subscription",
    "SubscriptionHistory",
    "SubscriptionStatus",
    "plan_service",
]
