"""
Request-scoped Postgres access for BriefHub.

One psycopg2 connection per request, held on flask.g and closed on
app-context teardown. Callers own their transaction: commit or rollback.
"""

import os
import sys
from urllib.parse import urlparse

import psycopg2
import psycopg2.extras
from flask import g

# Database URL from environment
DATABASE_URL = os.environ.get('DATABASE_URL')

print(f"[STARTUP] DATABASE_URL set: {bool(DATABASE_URL)}", file=sys.stderr)
if DATABASE_URL:
    parsed = urlparse(DATABASE_URL)
    print(f"[STARTUP] Database host: {parsed.hostname}:{parsed.port}", file=sys.stderr)


def get_db():
    """Get database connection for current request context."""
    if 'db' not in g:
        if not DATABASE_URL:
            raise RuntimeError("DATABASE_URL environment variable not set")
        g.db = psycopg2.connect(DATABASE_URL, connect_timeout=10)
        g.db.autocommit = False
    return g.db


def get_cursor():
    """Get a cursor with dict-like row access."""
    db = get_db()
    return db.cursor(cursor_factory=psycopg2.extras.RealDictCursor)


def set_statement_timeout(cursor, timeout_ms: int):
    """Bound every statement in the current transaction."""
    cursor.execute('SET LOCAL statement_timeout = %s', (int(timeout_ms),))


def close_db(exception=None):
    """Close database connection at end of request."""
    db = g.pop('db', None)
    if db is not None:
        db.close()
