#!/usr/bin/env python3
"""
Migration: Create billing tables (subscriptions, projects, project_files)
Run with DATABASE_URL env var set
"""
import os
import sys
import psycopg2

STATEMENTS = [
    ('Create subscriptions table', '''
CREATE TABLE IF NOT EXISTS subscriptions (
  account_id TEXT PRIMARY KEY,
  plan_id VARCHAR(32) NOT NULL DEFAULT 'starter',
  status VARCHAR(32) NOT NULL
    CHECK (status IN ('active', 'past_due', 'canceled')),
  stripe_customer_id VARCHAR(255),
  stripe_subscription_id VARCHAR(255) UNIQUE,
  last_event_at TIMESTAMPTZ,
  updated_at TIMESTAMPTZ DEFAULT NOW()
)'''),

    ('Index subscriptions by Stripe customer',
     'CREATE INDEX IF NOT EXISTS idx_subscriptions_customer ON subscriptions(stripe_customer_id)'),

    ('Create projects table', '''
CREATE TABLE IF NOT EXISTS projects (
  id UUID PRIMARY KEY,
  owner_id TEXT NOT NULL,
  name VARCHAR(255) NOT NULL,
  client_name VARCHAR(255),
  status VARCHAR(32) NOT NULL DEFAULT 'active',
  created_at TIMESTAMPTZ DEFAULT NOW(),
  updated_at TIMESTAMPTZ DEFAULT NOW()
)'''),

    ('Index projects by owner and status',
     'CREATE INDEX IF NOT EXISTS idx_projects_owner_status ON projects(owner_id, status)'),

    ('Create project_files table', '''
CREATE TABLE IF NOT EXISTS project_files (
  id UUID PRIMARY KEY,
  project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
  name VARCHAR(255) NOT NULL,
  size_bytes BIGINT NOT NULL DEFAULT 0,
  created_at TIMESTAMPTZ DEFAULT NOW()
)'''),

    ('Index project_files by project',
     'CREATE INDEX IF NOT EXISTS idx_project_files_project ON project_files(project_id)'),
]


def main():
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        print("ERROR: DATABASE_URL not set")
        sys.exit(1)

    conn = psycopg2.connect(database_url, connect_timeout=10)
    cur = conn.cursor()

    try:
        for label, sql in STATEMENTS:
            cur.execute(sql)
            print(f"  ok  {label}")

        conn.commit()
        print("✅ Migration complete: billing tables created")

        cur.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_name = 'subscriptions'"
        )
        columns = [row[0] for row in cur.fetchall()]
        print(f"✅ Subscriptions table columns: {columns}")

    except Exception as e:
        conn.rollback()
        print(f"❌ Migration failed: {e}")
        sys.exit(1)

    finally:
        cur.close()
        conn.close()


if __name__ == '__main__':
    main()
