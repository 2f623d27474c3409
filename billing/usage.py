"""
BriefHub Usage Tracking

Usage is always recomputed from the projects table; nothing here is cached
or persisted. Query errors propagate to the caller so that entitlement
checks can fail closed.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional, Tuple

from .plans import lookup


@dataclass(frozen=True)
class UsageSnapshot:
    account_id: str
    active_project_count: int
    storage_bytes: int = 0


class UsageAccounting:
    """Per-account resource consumption over a psycopg2 RealDictCursor."""

    def __init__(self, cursor):
        self.cur = cursor

    def active_project_count(self, account_id: str) -> int:
        self.cur.execute(
            '''SELECT COUNT(*) AS cnt FROM projects
               WHERE owner_id = %s AND status <> 'archived' ''',
            (account_id,)
        )
        row = self.cur.fetchone()
        return int(row['cnt']) if row else 0

    def storage_bytes(self, account_id: str) -> int:
        """Bytes stored across the account's non-archived projects."""
        self.cur.execute(
            '''SELECT COALESCE(SUM(f.size_bytes), 0) AS total
               FROM project_files f
               JOIN projects p ON p.id = f.project_id
               WHERE p.owner_id = %s AND p.status <> 'archived' ''',
            (account_id,)
        )
        row = self.cur.fetchone()
        return int(row['total']) if row else 0

    def current_usage(self, account_id: str) -> UsageSnapshot:
        return UsageSnapshot(
            account_id=account_id,
            active_project_count=self.active_project_count(account_id),
        )

    def full_usage(self, account_id: str) -> UsageSnapshot:
        return UsageSnapshot(
            account_id=account_id,
            active_project_count=self.active_project_count(account_id),
            storage_bytes=self.storage_bytes(account_id),
        )


def check_limit(current: int, limit: Optional[int]) -> Tuple[bool, Optional[int]]:
    """
    Check if a limit has been exceeded.

    Args:
        current: Current usage count
        limit: The limit (None means unlimited)

    Returns:
        Tuple of (is_allowed, remaining)
        - is_allowed: True if under limit
        - remaining: How many left (None if unlimited)
    """
    if limit is None:
        return True, None

    remaining = limit - current
    is_allowed = current < limit
    return is_allowed, max(0, remaining)


def get_usage_summary(plan_id: str, usage: UsageSnapshot) -> Dict[str, Any]:
    """
    Get full usage summary with plan limits and percentages.

    Args:
        plan_id: The account's effective plan
        usage: Snapshot from UsageAccounting.full_usage

    Returns:
        Dictionary with plan, usage, limits, percentages and at-limit flags
    """
    plan = lookup(plan_id)

    def calc_pct(current, limit):
        if limit is None:
            return 0  # unlimited
        return min(100, round((current / max(limit, 1)) * 100, 1))

    projects_allowed, projects_remaining = check_limit(
        usage.active_project_count, plan.max_projects
    )

    return {
        'plan': {
            'id': plan.id,
            'name': plan.name
        },
        'usage': {
            'projects': usage.active_project_count,
            'storage_bytes': usage.storage_bytes
        },
        'limits': {
            'projects': plan.max_projects,
            'storage_bytes': plan.max_storage_bytes
        },
        'remaining': {
            'projects': projects_remaining
        },
        'percentages': {
            'projects': calc_pct(usage.active_project_count, plan.max_projects),
            'storage': calc_pct(usage.storage_bytes, plan.max_storage_bytes)
        },
        'at_limit': {
            'projects': not projects_allowed,
            'storage': usage.storage_bytes >= plan.max_storage_bytes
        }
    }
