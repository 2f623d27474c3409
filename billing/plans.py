"""
BriefHub Plan Definitions

Plan tiers:
- Starter: 2 active projects, free, no payment required
- Pro: Unlimited projects, client sharing and AI briefings
- Agency: Everything in Pro plus white-label and team seats
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, FrozenSet

# Stripe Price IDs from environment
STRIPE_PRICE_PRO = os.environ.get('STRIPE_PRICE_PRO', 'price_test_pro')
STRIPE_PRICE_AGENCY = os.environ.get('STRIPE_PRICE_AGENCY', 'price_test_agency')

GIB = 1024 * 1024 * 1024


class PlanId(str, Enum):
    STARTER = 'starter'
    PRO = 'pro'
    AGENCY = 'agency'


class Capability(str, Enum):
    CREATE_PROJECT = 'create_project'
    UPLOAD_FILE = 'upload_file'
    SHARE_CLIENT = 'share_client'
    AI_BRIEFING = 'ai_briefing'
    PRIORITY_SUPPORT = 'priority_support'
    WHITE_LABEL = 'white_label'
    TEAM = 'team'


KNOWN_CAPABILITIES = frozenset(c.value for c in Capability)

# Capabilities the free tier gets without a subscription
STARTER_WHITELIST = frozenset({Capability.UPLOAD_FILE.value})


@dataclass(frozen=True)
class PlanLimits:
    id: str
    name: str
    price: int  # cents per month
    max_projects: Optional[int]  # None means unlimited
    max_storage_bytes: int
    features: FrozenSet[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'price': self.price,
            'max_projects': self.max_projects,
            'max_storage_bytes': self.max_storage_bytes,
            'features': sorted(self.features),
        }


_PRO_FEATURES = frozenset({
    Capability.UPLOAD_FILE.value,
    Capability.SHARE_CLIENT.value,
    Capability.AI_BRIEFING.value,
    Capability.PRIORITY_SUPPORT.value,
})

PLANS: Dict[str, PlanLimits] = {
    PlanId.STARTER.value: PlanLimits(
        id='starter',
        name='Starter',
        price=0,
        max_projects=2,
        max_storage_bytes=1 * GIB,
        features=frozenset(),
    ),
    PlanId.PRO.value: PlanLimits(
        id='pro',
        name='Pro',
        price=4900,
        max_projects=None,
        max_storage_bytes=10 * GIB,
        features=_PRO_FEATURES,
    ),
    PlanId.AGENCY.value: PlanLimits(
        id='agency',
        name='Agency',
        price=19900,
        max_projects=None,
        max_storage_bytes=1000 * GIB,
        features=_PRO_FEATURES | {Capability.WHITE_LABEL.value, Capability.TEAM.value},
    ),
}

PAID_PLANS = (PlanId.PRO.value, PlanId.AGENCY.value)


def lookup(plan_id: Optional[str]) -> PlanLimits:
    """
    Get the limits for a plan.

    Args:
        plan_id: The plan identifier ('starter', 'pro', 'agency')

    Returns:
        PlanLimits for the plan, or starter limits if plan not found
    """
    if isinstance(plan_id, PlanId):
        plan_id = plan_id.value
    return PLANS.get(plan_id, PLANS[PlanId.STARTER.value])


def is_paid_plan(plan_id: Optional[str]) -> bool:
    return plan_id in PAID_PLANS


def stripe_price_for(plan_id: str) -> Optional[str]:
    """Checkout price for a paid plan, None for starter or unknown plans."""
    prices = {
        PlanId.PRO.value: STRIPE_PRICE_PRO,
        PlanId.AGENCY.value: STRIPE_PRICE_AGENCY,
    }
    return prices.get(plan_id)


def get_plan_by_stripe_price(stripe_price_id: Optional[str]) -> Optional[PlanLimits]:
    """
    Look up a plan by its Stripe price ID.

    Args:
        stripe_price_id: The Stripe price ID

    Returns:
        PlanLimits or None if not found
    """
    if not stripe_price_id:
        return None
    for plan_id in PAID_PLANS:
        if stripe_price_for(plan_id) == stripe_price_id:
            return PLANS[plan_id]
    return None


def is_limit_exceeded(current: int, limit: Optional[int]) -> bool:
    """True once current usage has reached the limit. None means unlimited."""
    if limit is None:
        return False
    return current >= limit


def get_upgrade_recommendation(plan_id: str) -> Optional[str]:
    """
    Get the recommended upgrade plan when a gate blocks an action.

    Returns:
        Recommended plan ID or None if already on highest tier
    """
    plan = lookup(plan_id)
    if plan.id == PlanId.STARTER.value:
        return PlanId.PRO.value
    elif plan.id == PlanId.PRO.value:
        return PlanId.AGENCY.value
    return None
