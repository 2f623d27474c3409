"""
BriefHub Billing Module

This module handles:
- Plan definitions and limits
- Usage accounting and entitlement decisions
- Subscription state kept in sync with Stripe (webhooks, checkout, portal)
"""

from billing.plans import PLANS, PlanId, Capability, PlanLimits, lookup, get_plan_by_stripe_price
from billing.db import Subscription, SubscriptionStore, get_effective_plan
from billing.usage import UsageAccounting, UsageSnapshot
from billing.enforce import EntitlementsService, Decision, require_capability
from billing.webhooks import WebhookReconciler, ReconcileResult

__all__ = [
    'PLANS', 'PlanId', 'Capability', 'PlanLimits', 'lookup', 'get_plan_by_stripe_price',
    'Subscription', 'SubscriptionStore', 'get_effective_plan',
    'UsageAccounting', 'UsageSnapshot',
    'EntitlementsService', 'Decision', 'require_capability',
    'WebhookReconciler', 'ReconcileResult'
]
