"""
BriefHub Stripe Webhook Reconciler

Keeps the subscription store in line with Stripe's subscription lifecycle:
- checkout.session.completed: account bought a paid plan
- customer.subscription.updated: status or price changed
- customer.subscription.deleted: subscription cancelled

Nothing is read from the payload until its signature has been verified.
Once verified, every delivery is acknowledged with 200 unless the store
itself failed, in which case a 500 asks Stripe to redeliver later.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from .db import Subscription, STATUS_ACTIVE, STATUS_PAST_DUE, STATUS_CANCELED
from .plans import get_plan_by_stripe_price, is_paid_plan

# Stripe subscription.status -> our three-state status
STRIPE_STATUS_MAP = {
    'active': STATUS_ACTIVE,
    'trialing': STATUS_ACTIVE,
    'past_due': STATUS_PAST_DUE,
    'unpaid': STATUS_PAST_DUE,
    'incomplete': STATUS_PAST_DUE,
    'canceled': STATUS_CANCELED,
    'incomplete_expired': STATUS_CANCELED,
    'paused': STATUS_CANCELED,
}

OUTCOME_APPLIED = 'applied'
OUTCOME_IGNORED = 'ignored'
OUTCOME_DROPPED = 'dropped'
OUTCOME_ORPHAN = 'orphan'
OUTCOME_STALE = 'stale'
OUTCOME_REJECTED = 'rejected'
OUTCOME_FAILED = 'failed'

HANDLED_EVENTS = (
    'checkout.session.completed',
    'customer.subscription.updated',
    'customer.subscription.deleted',
)

PROCESSING_FAILED = 'Webhook processing failed'


@dataclass
class ReconcileResult:
    status_code: int
    body: Dict[str, Any]
    outcome: str
    event_type: Optional[str] = None
    subscription: Optional[Subscription] = field(default=None, repr=False)


def map_stripe_status(stripe_status: Optional[str]) -> Optional[str]:
    if not isinstance(stripe_status, str):
        return None
    return STRIPE_STATUS_MAP.get(stripe_status)


def _str_or_none(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _event_time(event: Dict[str, Any]) -> Optional[datetime]:
    """Stripe event creation time, or None when `created` is not a timestamp."""
    created = event.get('created')
    if isinstance(created, bool) or not isinstance(created, (int, float, str)):
        return None
    try:
        return datetime.fromtimestamp(int(created), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def _price_id(subscription_obj: Dict[str, Any]) -> Optional[str]:
    try:
        return _str_or_none(subscription_obj['items']['data'][0]['price']['id'])
    except (KeyError, IndexError, TypeError):
        return None


class WebhookReconciler:
    """Verifies and applies one Stripe delivery against a SubscriptionStore."""

    def __init__(self, store, signing_secret: Optional[str],
                 tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.store = store
        self.signing_secret = signing_secret
        self.tolerance = tolerance

    def verify(self, payload, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Check the Stripe-Signature header and decode the event.

        Raises:
            stripe.SignatureVerificationError: bad or missing signature
            ValueError: payload is not a JSON event
        """
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        if not sig_header:
            raise stripe.SignatureVerificationError('Missing Stripe-Signature header', sig_header, payload)

        stripe.WebhookSignature.verify_header(payload, sig_header, self.signing_secret, self.tolerance)

        event = json.loads(payload)
        if not isinstance(event, dict) or not isinstance(event.get('type'), str):
            raise ValueError('Payload is not a Stripe event')
        return event

    def authenticate(self, payload, sig_header: Optional[str]):
        """
        Verify a delivery without touching the store.

        Returns:
            (event, None) when the delivery is authentic, otherwise
            (None, ReconcileResult) with the rejection to send back
        """
        if not self.signing_secret:
            print("[STRIPE] WARNING: STRIPE_WEBHOOK_SECRET not configured", flush=True)
            return None, ReconcileResult(500, {'error': 'Webhook secret not configured'}, OUTCOME_FAILED)

        try:
            event = self.verify(payload, sig_header)
        except stripe.SignatureVerificationError as e:
            print(f"[STRIPE] Invalid signature: {e}", flush=True)
            return None, ReconcileResult(400, {'error': 'Invalid signature'}, OUTCOME_REJECTED)
        except (ValueError, UnicodeDecodeError) as e:
            print(f"[STRIPE] Invalid payload: {e}", flush=True)
            return None, ReconcileResult(400, {'error': 'Invalid payload'}, OUTCOME_REJECTED)

        return event, None

    def apply(self, event: Dict[str, Any]) -> ReconcileResult:
        """
        Apply an authenticated event to the store.

        Malformed events are logged and acknowledged; only store failures
        produce a retryable 500.
        """
        event_type = event['type']

        print(f"[STRIPE] Received event: {event_type} ({event.get('id')})", flush=True)

        if event_type not in HANDLED_EVENTS:
            print(f"[STRIPE] Unhandled event type: {event_type}", flush=True)
            return ReconcileResult(200, {'received': True}, OUTCOME_IGNORED, event_type)

        data = event.get('data')
        event_data = data.get('object') if isinstance(data, dict) else None
        event_at = _event_time(event)
        if not isinstance(event_data, dict) or event_at is None:
            print(f"[STRIPE] Malformed {event_type} event {event.get('id')}, dropped", flush=True)
            return ReconcileResult(200, {'received': True}, OUTCOME_DROPPED, event_type)

        try:
            if event_type == 'checkout.session.completed':
                outcome, subscription = self.handle_checkout_completed(event_data, event_at)
            else:
                outcome, subscription = self.handle_subscription_changed(
                    event_data, event_at, deleted=event_type == 'customer.subscription.deleted'
                )
        except Exception as e:
            print(f"[STRIPE] Error processing {event_type}: {e}", flush=True)
            return ReconcileResult(500, {'error': PROCESSING_FAILED}, OUTCOME_FAILED, event_type)

        return ReconcileResult(200, {'received': True}, outcome, event_type, subscription)

    def handle(self, payload, sig_header: Optional[str]) -> ReconcileResult:
        """
        Handle one webhook delivery.

        Args:
            payload: Raw request body, exactly as received
            sig_header: Value of the Stripe-Signature header

        Returns:
            ReconcileResult with the HTTP status and body to send back
        """
        event, rejected = self.authenticate(payload, sig_header)
        if rejected is not None:
            return rejected
        return self.apply(event)

    def handle_checkout_completed(self, session: Dict[str, Any], event_at: datetime):
        """
        Handle successful checkout session.
        Creates or replaces the account's subscription as active.
        """
        metadata = session.get('metadata') or {}
        if not isinstance(metadata, dict):
            print(f"[STRIPE] checkout.session.completed {session.get('id')} has malformed metadata, dropped", flush=True)
            return OUTCOME_DROPPED, None

        account_id = _str_or_none(metadata.get('account_id'))
        plan_id = _str_or_none(metadata.get('plan_id'))

        if not account_id or not plan_id:
            print(f"[STRIPE] checkout.session.completed {session.get('id')} missing account_id/plan_id metadata, dropped", flush=True)
            return OUTCOME_DROPPED, None

        if not is_paid_plan(plan_id):
            print(f"[STRIPE] checkout.session.completed {session.get('id')} has unknown plan '{plan_id}', dropped", flush=True)
            return OUTCOME_DROPPED, None

        stored = self.store.upsert(Subscription(
            account_id=account_id,
            plan_id=plan_id,
            status=STATUS_ACTIVE,
            stripe_customer_id=_str_or_none(session.get('customer')),
            stripe_subscription_id=_str_or_none(session.get('subscription')),
            last_event_at=event_at,
            updated_at=event_at,
        ))

        if stored is None:
            print(f"[STRIPE] Stale checkout for account {account_id} ignored", flush=True)
            return OUTCOME_STALE, None

        self.store.notify_changed(account_id)
        print(f"[STRIPE] Activated subscription for account {account_id}: {plan_id}", flush=True)
        return OUTCOME_APPLIED, stored

    def handle_subscription_changed(self, subscription_obj: Dict[str, Any], event_at: datetime,
                                    deleted: bool = False):
        """
        Handle subscription updates and cancellations.
        Only rows created by a checkout are touched; unknown subscriptions are ignored.
        """
        subscription_id = _str_or_none(subscription_obj.get('id'))
        if not subscription_id:
            print("[STRIPE] Subscription event without id, dropped", flush=True)
            return OUTCOME_DROPPED, None

        existing = self.store.get_by_stripe_subscription(subscription_id)
        if existing is None:
            print(f"[STRIPE] Subscription {subscription_id} not found in database", flush=True)
            return OUTCOME_ORPHAN, None

        if deleted:
            status = STATUS_CANCELED
        else:
            status = map_stripe_status(subscription_obj.get('status'))
            if status is None:
                print(f"[STRIPE] Subscription {subscription_id} has unknown status '{subscription_obj.get('status')}', dropped", flush=True)
                return OUTCOME_DROPPED, None

        plan_id = None
        if not deleted:
            plan = get_plan_by_stripe_price(_price_id(subscription_obj))
            plan_id = plan.id if plan else None

        updated = self.store.update_status(subscription_id, status, event_at, plan_id=plan_id)
        if updated is None:
            print(f"[STRIPE] Stale event for subscription {subscription_id} ignored", flush=True)
            return OUTCOME_STALE, None

        self.store.notify_changed(updated.account_id)
        print(f"[STRIPE] Updated subscription {subscription_id}: {updated.plan_id} ({status})", flush=True)
        return OUTCOME_APPLIED, updated
