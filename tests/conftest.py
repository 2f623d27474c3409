"""Pytest configuration and shared fixtures"""
import hashlib
import hmac
import json
import time
from dataclasses import replace

import pytest

from billing.db import STATUSES, Subscription
from billing.usage import UsageSnapshot

WEBHOOK_SECRET = 'whsec_test_secret'


class FakeSubscriptionStore:
    """In-memory SubscriptionStore with the same stale-event rule as the SQL."""

    def __init__(self):
        self.rows = {}
        self.writes = 0
        self.notified = []
        self.fail_writes = False
        self.fail_reads = False

    def _check_read(self):
        if self.fail_reads:
            raise RuntimeError('store read failed')

    def _check_write(self):
        if self.fail_writes:
            raise RuntimeError('store write failed')

    def get(self, account_id):
        self._check_read()
        row = self.rows.get(account_id)
        return replace(row) if row else None

    def get_active(self, account_id):
        row = self.get(account_id)
        return row if row and row.status == 'active' else None

    def get_by_stripe_subscription(self, stripe_subscription_id):
        self._check_read()
        for row in self.rows.values():
            if row.stripe_subscription_id == stripe_subscription_id:
                return replace(row)
        return None

    def upsert(self, subscription):
        self._check_write()
        existing = self.rows.get(subscription.account_id)
        if (existing is not None and existing.last_event_at is not None
                and existing.last_event_at > subscription.last_event_at):
            return None
        self.rows[subscription.account_id] = replace(
            subscription, updated_at=subscription.updated_at or subscription.last_event_at
        )
        self.writes += 1
        return replace(self.rows[subscription.account_id])

    def update_status(self, stripe_subscription_id, status, event_at, plan_id=None):
        if status not in STATUSES:
            raise ValueError(f'Unknown subscription status: {status}')
        self._check_write()
        for account_id, row in self.rows.items():
            if row.stripe_subscription_id != stripe_subscription_id:
                continue
            if row.last_event_at is not None and row.last_event_at > event_at:
                return None
            self.rows[account_id] = replace(
                row, status=status, plan_id=plan_id or row.plan_id,
                last_event_at=event_at, updated_at=event_at
            )
            self.writes += 1
            return replace(self.rows[account_id])
        return None

    def get_customer_id(self, account_id):
        row = self.get(account_id)
        return row.stripe_customer_id if row else None

    def notify_changed(self, account_id):
        self.notified.append(account_id)


class FakeUsage:
    def __init__(self):
        self.projects = {}
        self.storage = {}
        self.fail = False

    def _count(self, account_id):
        if self.fail:
            raise RuntimeError('projects query failed')
        return self.projects.get(account_id, 0)

    def current_usage(self, account_id):
        return UsageSnapshot(account_id, self._count(account_id))

    def storage_bytes(self, account_id):
        if self.fail:
            raise RuntimeError('storage query failed')
        return self.storage.get(account_id, 0)

    def full_usage(self, account_id):
        return UsageSnapshot(account_id, self._count(account_id), self.storage_bytes(account_id))


class RecordingCursor:
    """Cursor stand-in: records SQL, returns queued rows from fetchone."""

    def __init__(self, rows=None):
        self.executed = []
        self.rows = list(rows or [])
        self.closed = False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None

    def close(self):
        self.closed = True


class FakeDb:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f'{timestamp}.{payload}'.encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={signature}'


def make_event(event_type: str, obj: dict, created: int = 1700000000, event_id: str = 'evt_1') -> str:
    return json.dumps({
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'created': created,
        'data': {'object': obj},
    })


def subscription_object(sub_id='sub_1', status='active', price_id=None):
    obj = {'id': sub_id, 'object': 'subscription', 'customer': 'cus_1', 'status': status}
    if price_id:
        obj['items'] = {'data': [{'price': {'id': price_id}}]}
    return obj


def checkout_object(account_id='u1', plan_id='pro', sub_id='sub_1', customer='cus_1'):
    metadata = {}
    if account_id is not None:
        metadata['account_id'] = account_id
    if plan_id is not None:
        metadata['plan_id'] = plan_id
    return {
        'id': 'cs_test_1',
        'object': 'checkout.session',
        'customer': customer,
        'subscription': sub_id,
        'metadata': metadata,
    }


@pytest.fixture
def store():
    return FakeSubscriptionStore()


@pytest.fixture
def usage():
    return FakeUsage()


@pytest.fixture
def service(store, usage):
    from billing.enforce import EntitlementsService
    return EntitlementsService(store, usage)


@pytest.fixture
def reconciler(store):
    from billing.webhooks import WebhookReconciler
    return WebhookReconciler(store, WEBHOOK_SECRET)


@pytest.fixture
def recording_cursor():
    return RecordingCursor()


@pytest.fixture
def fake_db():
    return FakeDb()


@pytest.fixture
def cursors():
    return []


@pytest.fixture
def app(store, usage, fake_db, cursors, monkeypatch):
    from app import create_app
    import billing.stripe_handler as stripe_handler

    monkeypatch.setattr(stripe_handler, 'WEBHOOK_SECRET', WEBHOOK_SECRET)

    def get_cursor():
        cur = RecordingCursor()
        cursors.append(cur)
        return cur

    flask_app = create_app(
        get_db=lambda: fake_db,
        get_cursor=get_cursor,
        store_factory=lambda cur: store,
        usage_factory=lambda cur: usage,
    )
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    from auth import generate_jwt

    def make(account_id='u1', email='designer@example.com'):
        return {'Authorization': f'Bearer {generate_jwt(account_id, email)}'}

    return make


def active_subscription(account_id='u1', plan_id='pro', sub_id='sub_1', customer='cus_1'):
    from datetime import datetime, timezone
    at = datetime(2023, 11, 14, tzinfo=timezone.utc)
    return Subscription(
        account_id=account_id, plan_id=plan_id, status='active',
        stripe_customer_id=customer, stripe_subscription_id=sub_id,
        last_event_at=at, updated_at=at,
    )
