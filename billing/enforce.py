"""
BriefHub Entitlement Enforcement

Decides whether an account may use a capability given its effective plan
and current usage, and exposes the decision as a Flask decorator that
returns 402 Payment Required with upgrade info.

Failures reading plan or usage are never treated as "allowed".
"""

import os
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import jsonify, g

from .db import SubscriptionStore, get_effective_plan
from .plans import (
    Capability,
    KNOWN_CAPABILITIES,
    STARTER_WHITELIST,
    PlanId,
    lookup,
    get_upgrade_recommendation,
    is_limit_exceeded,
)
from .usage import UsageAccounting

# Base URL for upgrade links
APP_BASE_URL = os.environ.get('APP_BASE_URL', 'http://localhost:3000')

REASON_LIMIT_REACHED = 'limit_reached'
REASON_NOT_IN_PLAN = 'not_in_plan'
REASON_UNKNOWN_CAPABILITY = 'unknown_capability'
REASON_STORAGE_QUOTA = 'storage_quota_exceeded'


@dataclass(frozen=True)
class Decision:
    capability: str
    allowed: bool
    plan_id: str
    reason: Optional[str] = None
    current: Optional[int] = None
    limit: Optional[int] = None

    def __bool__(self):
        return self.allowed


class EntitlementsService:
    def __init__(self, store, usage):
        self.store = store
        self.usage = usage

    def check(self, account_id: str, capability) -> Decision:
        if isinstance(capability, Capability):
            capability = capability.value

        plan_id = get_effective_plan(self.store, account_id)
        plan = lookup(plan_id)

        if capability == Capability.CREATE_PROJECT.value:
            if plan.max_projects is None:
                return Decision(capability, True, plan.id)
            current = self.usage.current_usage(account_id).active_project_count
            if not is_limit_exceeded(current, plan.max_projects):
                return Decision(capability, True, plan.id, current=current, limit=plan.max_projects)
            return Decision(
                capability, False, plan.id, REASON_LIMIT_REACHED,
                current=current, limit=plan.max_projects
            )

        if capability not in KNOWN_CAPABILITIES:
            return Decision(capability, False, plan.id, REASON_UNKNOWN_CAPABILITY)

        if plan.id == PlanId.STARTER.value:
            allowed = capability in STARTER_WHITELIST
        else:
            allowed = capability in plan.features

        return Decision(capability, allowed, plan.id, None if allowed else REASON_NOT_IN_PLAN)

    def can(self, account_id: str, capability) -> bool:
        return self.check(account_id, capability).allowed

    def check_storage_quota(self, account_id: str, incoming_bytes: int = 0) -> Decision:
        """Deny when stored bytes plus the incoming upload would pass the plan quota."""
        plan = lookup(get_effective_plan(self.store, account_id))
        current = self.usage.storage_bytes(account_id)
        allowed = current + max(incoming_bytes, 0) <= plan.max_storage_bytes
        return Decision(
            Capability.UPLOAD_FILE.value, allowed, plan.id,
            None if allowed else REASON_STORAGE_QUOTA,
            current=current, limit=plan.max_storage_bytes
        )


def limit_exceeded_response(decision: Decision):
    """
    Generate a 402 Payment Required response with upgrade info.

    Args:
        decision: The denied Decision

    Returns:
        Flask response tuple (jsonify, status_code)
    """
    upgrade_plan = get_upgrade_recommendation(decision.plan_id)
    upgrade_url = f"{APP_BASE_URL}/settings/plans?upgrade={upgrade_plan}" if upgrade_plan else None

    messages = {
        REASON_LIMIT_REACHED: f'Project limit reached ({decision.current}/{decision.limit}). Upgrade for unlimited projects.',
        REASON_NOT_IN_PLAN: f"'{decision.capability}' is not included in your plan. Upgrade to unlock it.",
        REASON_UNKNOWN_CAPABILITY: f"Unknown capability '{decision.capability}'",
        REASON_STORAGE_QUOTA: 'Storage limit reached. Upgrade for more storage.',
    }

    return jsonify({
        'error': 'Limit exceeded' if decision.reason in (REASON_LIMIT_REACHED, REASON_STORAGE_QUOTA) else 'Not entitled',
        'message': messages.get(decision.reason, f'{decision.capability} not allowed'),
        'capability': decision.capability,
        'reason': decision.reason,
        'current': decision.current,
        'limit': decision.limit,
        'plan': decision.plan_id,
        'upgrade_to': upgrade_plan,
        'upgrade_url': upgrade_url
    }), 402


def require_capability(capability, get_cursor_func, store_factory=SubscriptionStore,
                       usage_factory=UsageAccounting):
    """
    Decorator factory to gate a view on an entitlement.

    Must be applied under require_jwt so g.current_user is set.

    Args:
        capability: Capability tag the view needs
        get_cursor_func: Function to get database cursor
        store_factory: Builds the subscription store from a cursor
        usage_factory: Builds usage accounting from a cursor

    Returns:
        Decorator function
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            account_id = g.current_user.get('sub')
            cur = get_cursor_func()

            try:
                service = EntitlementsService(store_factory(cur), usage_factory(cur))
                decision = service.check(account_id, capability)
            except Exception as e:
                print(f"[BILLING] Error checking {capability} for account={account_id}: {e}", flush=True)
                return jsonify({'error': 'Entitlement check unavailable'}), 503
            finally:
                cur.close()

            if not decision.allowed:
                print(f"[BILLING] Denied {decision.capability}: account={account_id}, plan={decision.plan_id}, reason={decision.reason}", flush=True)
                return limit_exceeded_response(decision)

            return f(*args, **kwargs)

        return decorated
    return decorator
