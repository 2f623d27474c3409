"""Unit tests for the Stripe webhook reconciler"""
import json

import pytest

from billing.enforce import EntitlementsService
from billing import plans
from billing.webhooks import (
    OUTCOME_APPLIED,
    OUTCOME_DROPPED,
    OUTCOME_IGNORED,
    OUTCOME_ORPHAN,
    OUTCOME_REJECTED,
    OUTCOME_STALE,
    WebhookReconciler,
    map_stripe_status,
)
from conftest import (
    WEBHOOK_SECRET,
    checkout_object,
    make_event,
    sign_payload,
    subscription_object,
)


def deliver(reconciler, payload, secret=WEBHOOK_SECRET):
    return reconciler.handle(payload.encode('utf-8'), sign_payload(payload, secret))


class TestVerification:
    """No state changes without a valid signature"""

    @pytest.mark.parametrize('header', [
        None,
        '',
        't=1700000000,v1=deadbeef',
        'garbage',
    ])
    def test_bad_signature_rejected(self, reconciler, store, header):
        payload = make_event('checkout.session.completed', checkout_object())
        result = reconciler.handle(payload, header)

        assert result.status_code == 400
        assert result.outcome == OUTCOME_REJECTED
        assert store.writes == 0

    def test_wrong_secret_rejected(self, reconciler, store):
        payload = make_event('checkout.session.completed', checkout_object())
        result = deliver(reconciler, payload, secret='whsec_other')

        assert result.status_code == 400
        assert store.rows == {}

    def test_tampered_payload_rejected(self, reconciler, store):
        payload = make_event('checkout.session.completed', checkout_object(plan_id='pro'))
        header = sign_payload(payload)
        tampered = payload.replace('"pro"', '"agency"')

        assert reconciler.handle(tampered, header).status_code == 400
        assert store.writes == 0

    def test_expired_signature_rejected(self, reconciler, store):
        payload = make_event('checkout.session.completed', checkout_object())
        header = sign_payload(payload, timestamp=1000)

        assert reconciler.handle(payload, header).status_code == 400
        assert store.writes == 0

    def test_signed_non_json_payload_is_400(self, reconciler, store):
        result = deliver(reconciler, 'not json')
        assert result.status_code == 400
        assert result.body == {'error': 'Invalid payload'}

    def test_signed_event_without_string_type_is_400(self, reconciler, store):
        result = deliver(reconciler, json.dumps({'id': 'evt_1', 'type': ['invoice.paid']}))
        assert result.status_code == 400
        assert result.body == {'error': 'Invalid payload'}

    def test_missing_secret_is_500(self, store):
        payload = make_event('checkout.session.completed', checkout_object())
        result = WebhookReconciler(store, None).handle(payload, sign_payload(payload))

        assert result.status_code == 500
        assert store.writes == 0


class TestCheckoutCompleted:
    def test_activates_subscription(self, reconciler, store):
        result = deliver(reconciler, make_event('checkout.session.completed', checkout_object()))

        assert result.status_code == 200
        assert result.body == {'received': True}
        assert result.outcome == OUTCOME_APPLIED

        active = store.get_active('u1')
        assert active.plan_id == 'pro'
        assert active.status == 'active'
        assert active.stripe_customer_id == 'cus_1'
        assert active.stripe_subscription_id == 'sub_1'
        assert store.notified == ['u1']

    def test_redelivery_is_idempotent(self, reconciler, store):
        payload = make_event('checkout.session.completed', checkout_object())
        deliver(reconciler, payload)
        first = store.get_active('u1')
        deliver(reconciler, payload)

        assert store.get_active('u1') == first
        assert len(store.rows) == 1

    @pytest.mark.parametrize('account_id,plan_id', [(None, 'pro'), ('u1', None), ('u1', 'starter'), ('u1', 'gold')])
    def test_bad_metadata_dropped_but_acknowledged(self, reconciler, store, account_id, plan_id):
        obj = checkout_object(account_id=account_id, plan_id=plan_id)
        result = deliver(reconciler, make_event('checkout.session.completed', obj))

        assert result.status_code == 200
        assert result.outcome == OUTCOME_DROPPED
        assert store.writes == 0

    def test_store_failure_is_retryable(self, reconciler, store):
        store.fail_writes = True
        result = deliver(reconciler, make_event('checkout.session.completed', checkout_object()))

        assert result.status_code == 500
        assert result.body == {'error': 'Webhook processing failed'}
        assert 'store write failed' not in json.dumps(result.body)

    @pytest.mark.parametrize('metadata', ['oops', ['u1', 'pro'], 42])
    def test_non_object_metadata_dropped_but_acknowledged(self, reconciler, store, metadata):
        obj = checkout_object()
        obj['metadata'] = metadata
        result = deliver(reconciler, make_event('checkout.session.completed', obj))

        assert result.status_code == 200
        assert result.body == {'received': True}
        assert result.outcome == OUTCOME_DROPPED
        assert store.writes == 0

    def test_non_string_metadata_values_dropped(self, reconciler, store):
        obj = checkout_object()
        obj['metadata'] = {'account_id': {'id': 'u1'}, 'plan_id': ['pro']}
        result = deliver(reconciler, make_event('checkout.session.completed', obj))

        assert result.status_code == 200
        assert result.outcome == OUTCOME_DROPPED
        assert store.writes == 0

    @pytest.mark.parametrize('data', ['oops', {'object': 'cs_1'}, {'object': [1, 2]}, None])
    def test_non_object_event_data_dropped(self, reconciler, store, data):
        payload = json.dumps({'id': 'evt_1', 'type': 'checkout.session.completed',
                              'created': 1700000000, 'data': data})
        result = deliver(reconciler, payload)

        assert result.status_code == 200
        assert result.outcome == OUTCOME_DROPPED
        assert store.writes == 0

    @pytest.mark.parametrize('created', ['yesterday', None, {'ts': 1}, True])
    def test_bad_created_timestamp_dropped(self, reconciler, store, created):
        payload = json.dumps({'id': 'evt_1', 'type': 'checkout.session.completed',
                              'created': created, 'data': {'object': checkout_object()}})
        result = deliver(reconciler, payload)

        assert result.status_code == 200
        assert result.outcome == OUTCOME_DROPPED
        assert store.writes == 0


class TestSubscriptionChanged:
    def _activate(self, reconciler, created=1700000000):
        deliver(reconciler, make_event('checkout.session.completed', checkout_object(), created=created))

    @pytest.mark.parametrize('stripe_status,expected', [
        ('past_due', 'past_due'),
        ('unpaid', 'past_due'),
        ('canceled', 'canceled'),
        ('trialing', 'active'),
    ])
    def test_updated_mirrors_status(self, reconciler, store, stripe_status, expected):
        self._activate(reconciler)
        event = make_event('customer.subscription.updated', subscription_object(status=stripe_status),
                           created=1700000100, event_id='evt_2')
        result = deliver(reconciler, event)

        assert result.status_code == 200
        assert store.get('u1').status == expected

    def test_deleted_cancels_and_drops_to_starter(self, reconciler, store, usage):
        self._activate(reconciler)
        service = EntitlementsService(store, usage)
        store.rows['u1'].plan_id = 'agency'
        assert service.can('u1', 'white_label')

        event = make_event('customer.subscription.deleted', subscription_object(status='canceled'),
                           created=1700000100, event_id='evt_2')
        assert deliver(reconciler, event).status_code == 200

        assert store.get('u1').status == 'canceled'
        assert store.get_active('u1') is None
        assert not service.can('u1', 'white_label')

    def test_price_change_moves_plan(self, reconciler, store):
        self._activate(reconciler)
        obj = subscription_object(status='active', price_id=plans.STRIPE_PRICE_AGENCY)
        deliver(reconciler, make_event('customer.subscription.updated', obj, created=1700000100))

        assert store.get_active('u1').plan_id == 'agency'

    def test_unknown_price_keeps_plan(self, reconciler, store):
        self._activate(reconciler)
        obj = subscription_object(status='active', price_id='price_legacy')
        deliver(reconciler, make_event('customer.subscription.updated', obj, created=1700000100))

        assert store.get_active('u1').plan_id == 'pro'

    def test_unknown_subscription_creates_no_row(self, reconciler, store):
        event = make_event('customer.subscription.updated', subscription_object(sub_id='sub_ghost'))
        result = deliver(reconciler, event)

        assert result.status_code == 200
        assert result.outcome == OUTCOME_ORPHAN
        assert store.rows == {}

    def test_stale_event_does_not_overwrite_newer(self, reconciler, store):
        self._activate(reconciler, created=1700000000)
        newer = make_event('customer.subscription.deleted', subscription_object(status='canceled'),
                           created=1700000500, event_id='evt_new')
        older = make_event('customer.subscription.updated', subscription_object(status='active'),
                           created=1700000200, event_id='evt_old')

        deliver(reconciler, newer)
        result = deliver(reconciler, older)

        assert result.status_code == 200
        assert result.outcome == OUTCOME_STALE
        assert store.get('u1').status == 'canceled'

    def test_stale_checkout_does_not_reactivate(self, reconciler, store):
        self._activate(reconciler, created=1700000000)
        deliver(reconciler, make_event('customer.subscription.deleted', subscription_object(),
                                       created=1700000500))
        result = deliver(reconciler, make_event('checkout.session.completed', checkout_object(),
                                                created=1700000000))

        assert result.outcome == OUTCOME_STALE
        assert store.get_active('u1') is None

    @pytest.mark.parametrize('status', [['active'], {'value': 'active'}, 1])
    def test_non_string_status_dropped(self, reconciler, store, status):
        self._activate(reconciler)
        obj = subscription_object()
        obj['status'] = status
        result = deliver(reconciler, make_event('customer.subscription.updated', obj, created=1700000100))

        assert result.status_code == 200
        assert result.outcome == OUTCOME_DROPPED
        assert store.get('u1').status == 'active'

    def test_unknown_status_dropped(self, reconciler, store):
        self._activate(reconciler)
        writes = store.writes
        event = make_event('customer.subscription.updated', subscription_object(status='mystery'),
                           created=1700000100)
        result = deliver(reconciler, event)

        assert result.outcome == OUTCOME_DROPPED
        assert store.writes == writes


class TestOtherEvents:
    def test_unhandled_event_is_acknowledged(self, reconciler, store):
        result = deliver(reconciler, make_event('invoice.paid', {'id': 'in_1'}))

        assert result.status_code == 200
        assert result.body == {'received': True}
        assert result.outcome == OUTCOME_IGNORED
        assert store.writes == 0

    def test_event_without_data_is_acknowledged(self, reconciler):
        payload = json.dumps({'id': 'evt_1', 'type': 'checkout.session.completed', 'created': 1700000000})
        result = deliver(reconciler, payload)

        assert result.status_code == 200
        assert result.outcome == OUTCOME_DROPPED


def test_status_map():
    assert map_stripe_status('incomplete_expired') == 'canceled'
    assert map_stripe_status('paused') == 'canceled'
    assert map_stripe_status(None) is None
