"""
BriefHub Billing Routes

- POST /v2/billing/webhook           Stripe lifecycle events
- POST /v2/billing/checkout-session  Start a Stripe Checkout for a paid plan
- POST /v2/billing/portal-session    Open the Stripe billing portal
- GET  /v2/billing/plan              Effective plan, usage and capabilities
- GET  /v2/billing/entitlements/<c>  Single capability decision
- GET  /v2/billing/plans             Public plan catalog
"""

import os
import stripe
from flask import Blueprint, request, jsonify

from auth import require_jwt, current_account_id, current_email
from database import set_statement_timeout
from .db import SubscriptionStore, get_effective_plan
from .enforce import EntitlementsService, APP_BASE_URL
from .plans import PLANS, KNOWN_CAPABILITIES, PlanId, lookup, stripe_price_for
from .usage import UsageAccounting, get_usage_summary
from .webhooks import PROCESSING_FAILED, WebhookReconciler

# Initialize Stripe with secret key
stripe.api_key = os.environ.get('STRIPE_SECRET_KEY')
WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')
WEBHOOK_TIMEOUT_MS = int(os.environ.get('WEBHOOK_TIMEOUT_MS', 5000))


def init_billing(get_db, get_cursor, store_factory=SubscriptionStore,
                 usage_factory=UsageAccounting):
    """Initialize billing routes with database access."""

    billing_bp = Blueprint('billing', __name__, url_prefix='/v2/billing')

    @billing_bp.route('/webhook', methods=['POST'])
    def stripe_webhook():
        """
        Handle Stripe webhook events.

        The raw body is passed through untouched; signature verification
        depends on the exact bytes Stripe signed.
        The database is only opened once the delivery is authentic.
        """
        payload = request.get_data()
        sig_header = request.headers.get('Stripe-Signature')

        reconciler = WebhookReconciler(None, WEBHOOK_SECRET)
        event, rejected = reconciler.authenticate(payload, sig_header)
        if rejected is not None:
            return jsonify(rejected.body), rejected.status_code

        try:
            db = get_db()
            cur = get_cursor()
        except Exception as e:
            print(f"[STRIPE] Database unavailable: {e}", flush=True)
            return jsonify({'error': 'Database unavailable'}), 500

        try:
            set_statement_timeout(cur, WEBHOOK_TIMEOUT_MS)
            reconciler.store = store_factory(cur)
            result = reconciler.apply(event)

            if result.status_code == 200:
                db.commit()
            else:
                db.rollback()

            return jsonify(result.body), result.status_code

        except Exception as e:
            db.rollback()
            print(f"[STRIPE] Error handling webhook: {e}", flush=True)
            return jsonify({'error': PROCESSING_FAILED}), 500
        finally:
            cur.close()

    @billing_bp.route('/checkout-session', methods=['POST'])
    @require_jwt
    def create_checkout_session():
        """
        Create a Stripe Checkout session for a paid plan.

        Request body:
        {
            "plan_id": "pro"
        }

        Returns:
        {
            "checkout_url": "https://checkout.stripe.com/..."
        }
        """
        data = request.get_json(silent=True) or {}
        plan_id = data.get('plan_id') or data.get('planId')

        if not plan_id:
            return jsonify({'error': 'plan_id is required'}), 400

        price_id = stripe_price_for(plan_id)
        if not price_id:
            return jsonify({'error': f"Plan '{plan_id}' is not available for checkout"}), 400

        if not stripe.api_key:
            return jsonify({'error': 'Stripe is not configured'}), 500

        account_id = current_account_id()
        email = current_email()

        cur = get_cursor()
        try:
            customer_id = store_factory(cur).get_customer_id(account_id)
        except Exception as e:
            print(f"[BILLING] Error loading customer for account {account_id}: {e}", flush=True)
            return jsonify({'error': 'Billing data unavailable'}), 503
        finally:
            cur.close()

        if not customer_id and not email:
            return jsonify({'error': 'An email address is required to start checkout'}), 400

        params = {
            'mode': 'subscription',
            'line_items': [{'price': price_id, 'quantity': 1}],
            'success_url': f"{APP_BASE_URL}/dashboard?success=true",
            'cancel_url': f"{APP_BASE_URL}/dashboard?canceled=true",
            'client_reference_id': account_id,
            'metadata': {'account_id': account_id, 'plan_id': plan_id},
        }
        if customer_id:
            params['customer'] = customer_id
        else:
            params['customer_email'] = email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            print(f"[STRIPE] Checkout failed for account {account_id} plan {plan_id}: {e}", flush=True)
            return jsonify({'error': e.user_message or str(e)}), 400

        print(f"[STRIPE] Checkout session for account {account_id}: {plan_id} ({price_id})", flush=True)
        return jsonify({'checkout_url': session.url})

    @billing_bp.route('/portal-session', methods=['POST'])
    @require_jwt
    def create_portal_session():
        """
        Create a Stripe billing portal session.

        The Stripe customer is the one stored with the account's subscription,
        falling back to a Stripe lookup by the account email.

        Returns:
        {
            "portal_url": "https://billing.stripe.com/..."
        }
        """
        if not stripe.api_key:
            return jsonify({'error': 'Stripe is not configured'}), 500

        account_id = current_account_id()
        email = current_email()

        cur = get_cursor()
        try:
            customer_id = store_factory(cur).get_customer_id(account_id)
        except Exception as e:
            print(f"[BILLING] Error loading customer for account {account_id}: {e}", flush=True)
            return jsonify({'error': 'Billing data unavailable'}), 503
        finally:
            cur.close()

        try:
            if not customer_id and email:
                customers = stripe.Customer.list(email=email, limit=1)
                if customers.data:
                    customer_id = customers.data[0].id

            if not customer_id:
                return jsonify({'error': 'No billing customer found for this account'}), 404

            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{APP_BASE_URL}/dashboard"
            )
        except stripe.StripeError as e:
            print(f"[STRIPE] Portal session failed for account {account_id}: {e}", flush=True)
            return jsonify({'error': e.user_message or str(e)}), 400

        print(f"[STRIPE] Portal session for account {account_id}: {customer_id}", flush=True)
        return jsonify({'portal_url': session.url})

    @billing_bp.route('/plan', methods=['GET'])
    @require_jwt
    def get_plan_status():
        """Effective plan, usage against limits, and every capability decision."""
        account_id = current_account_id()
        cur = get_cursor()

        try:
            store = store_factory(cur)
            usage = usage_factory(cur)
            service = EntitlementsService(store, usage)

            subscription = store.get(account_id)
            plan_id = get_effective_plan(store, account_id)
            summary = get_usage_summary(plan_id, usage.full_usage(account_id))
            capabilities = {
                capability: service.can(account_id, capability)
                for capability in sorted(KNOWN_CAPABILITIES)
            }
        except Exception as e:
            print(f"[BILLING] Error loading plan for account {account_id}: {e}", flush=True)
            return jsonify({'error': 'Billing data unavailable'}), 503
        finally:
            cur.close()

        summary['subscription'] = subscription.to_dict() if subscription else None
        summary['is_pro'] = plan_id in (PlanId.PRO.value, PlanId.AGENCY.value)
        summary['capabilities'] = capabilities
        return jsonify(summary)

    @billing_bp.route('/entitlements/<capability>', methods=['GET'])
    @require_jwt
    def get_entitlement(capability):
        account_id = current_account_id()
        cur = get_cursor()

        try:
            service = EntitlementsService(store_factory(cur), usage_factory(cur))
            decision = service.check(account_id, capability)
        except Exception as e:
            print(f"[BILLING] Error checking {capability} for account {account_id}: {e}", flush=True)
            return jsonify({'error': 'Billing data unavailable'}), 503
        finally:
            cur.close()

        return jsonify({
            'capability': decision.capability,
            'allowed': decision.allowed,
            'reason': decision.reason,
            'plan': decision.plan_id,
            'current': decision.current,
            'limit': decision.limit
        })

    @billing_bp.route('/plans', methods=['GET'])
    def list_plans():
        """Public plan catalog for the pricing page."""
        return jsonify({
            'plans': [lookup(plan_id).to_dict() for plan_id in PLANS]
        })

    @billing_bp.route('/health', methods=['GET'])
    def billing_health():
        """Health check for billing module."""
        return jsonify({
            'status': 'ok',
            'module': 'billing',
            'stripe_configured': bool(stripe.api_key),
            'webhook_secret_configured': bool(WEBHOOK_SECRET)
        })

    return billing_bp
