"""
Billing Database Functions

Subscription state store. One row per account, written only by the
webhook reconciler. Every write carries the provider event time so that
a late re-delivery of an older event cannot overwrite newer state.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, Dict, Any

from .plans import lookup

STATUS_ACTIVE = 'active'
STATUS_PAST_DUE = 'past_due'
STATUS_CANCELED = 'canceled'
STATUSES = (STATUS_ACTIVE, STATUS_PAST_DUE, STATUS_CANCELED)

CHANGE_CHANNEL = 'subscription_changed'

_COLUMNS = '''account_id, plan_id, status, stripe_customer_id,
              stripe_subscription_id, last_event_at, updated_at'''


@dataclass
class Subscription:
    account_id: str
    plan_id: str
    status: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    last_event_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    @classmethod
    def from_row(cls, row) -> 'Subscription':
        return cls(
            account_id=str(row['account_id']),
            plan_id=row['plan_id'],
            status=row['status'],
            stripe_customer_id=row.get('stripe_customer_id'),
            stripe_subscription_id=row.get('stripe_subscription_id'),
            last_event_at=row.get('last_event_at'),
            updated_at=row.get('updated_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('last_event_at', 'updated_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class SubscriptionStore:
    """Subscription rows over a psycopg2 RealDictCursor."""

    def __init__(self, cursor):
        self.cur = cursor

    def get(self, account_id: str) -> Optional[Subscription]:
        """Subscription for an account regardless of status."""
        self.cur.execute(
            f'SELECT {_COLUMNS} FROM subscriptions WHERE account_id = %s',
            (account_id,)
        )
        row = self.cur.fetchone()
        return Subscription.from_row(row) if row else None

    def get_active(self, account_id: str) -> Optional[Subscription]:
        """
        Get the active subscription for an account.

        Returns:
            Subscription, or None when the account has no active row
            (callers treat None as the starter plan)
        """
        self.cur.execute(
            f'''SELECT {_COLUMNS} FROM subscriptions
                WHERE account_id = %s AND status = %s''',
            (account_id, STATUS_ACTIVE)
        )
        row = self.cur.fetchone()
        return Subscription.from_row(row) if row else None

    def get_by_stripe_subscription(self, stripe_subscription_id: str) -> Optional[Subscription]:
        self.cur.execute(
            f'SELECT {_COLUMNS} FROM subscriptions WHERE stripe_subscription_id = %s',
            (stripe_subscription_id,)
        )
        row = self.cur.fetchone()
        return Subscription.from_row(row) if row else None

    def upsert(self, subscription: Subscription) -> Optional[Subscription]:
        """
        Insert or replace the subscription row for an account.

        The existing row is only replaced when the incoming event is not
        older than the last applied one.

        Args:
            subscription: Full subscription state; last_event_at should be
                the provider event time

        Returns:
            The stored subscription, or None if the write was stale
        """
        event_at = subscription.last_event_at
        self.cur.execute(
            f'''INSERT INTO subscriptions ({_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (account_id) DO UPDATE SET
                    plan_id = EXCLUDED.plan_id,
                    status = EXCLUDED.status,
                    stripe_customer_id = EXCLUDED.stripe_customer_id,
                    stripe_subscription_id = EXCLUDED.stripe_subscription_id,
                    last_event_at = EXCLUDED.last_event_at,
                    updated_at = EXCLUDED.updated_at
                WHERE subscriptions.last_event_at IS NULL
                   OR subscriptions.last_event_at <= EXCLUDED.last_event_at
                RETURNING {_COLUMNS}''',
            (
                subscription.account_id,
                subscription.plan_id,
                subscription.status,
                subscription.stripe_customer_id,
                subscription.stripe_subscription_id,
                event_at,
                subscription.updated_at or event_at,
            )
        )
        row = self.cur.fetchone()
        return Subscription.from_row(row) if row else None

    def update_status(
        self,
        stripe_subscription_id: str,
        status: str,
        event_at: datetime,
        plan_id: Optional[str] = None
    ) -> Optional[Subscription]:
        """
        Mirror the provider's status onto an existing row.

        Args:
            stripe_subscription_id: Stripe subscription ID (sub_xxx)
            status: One of STATUSES
            event_at: Provider event time
            plan_id: New plan ID, or None to keep the current one

        Returns:
            Updated subscription, or None if no row matched or the event was stale
        """
        if status not in STATUSES:
            raise ValueError(f'Unknown subscription status: {status}')

        self.cur.execute(
            f'''UPDATE subscriptions SET
                    status = %s,
                    plan_id = COALESCE(%s, plan_id),
                    last_event_at = %s,
                    updated_at = %s
                WHERE stripe_subscription_id = %s
                  AND (last_event_at IS NULL OR last_event_at <= %s)
                RETURNING {_COLUMNS}''',
            (status, plan_id, event_at, event_at, stripe_subscription_id, event_at)
        )
        row = self.cur.fetchone()
        return Subscription.from_row(row) if row else None

    def get_customer_id(self, account_id: str) -> Optional[str]:
        subscription = self.get(account_id)
        return subscription.stripe_customer_id if subscription else None

    def notify_changed(self, account_id: str):
        """Signal listeners (delivered by Postgres on commit) that plan state changed."""
        self.cur.execute('SELECT pg_notify(%s, %s)', (CHANGE_CHANNEL, account_id))


def get_effective_plan(store, account_id: str) -> str:
    """
    Get the effective plan for an account.

    Returns:
        Plan ID; 'starter' unless an active subscription exists
    """
    subscription = store.get_active(account_id)
    if subscription is None:
        return 'starter'
    return lookup(subscription.plan_id).id
