#!/usr/bin/env python3
"""
BriefHub API - Billing & Entitlements
Postgres-backed plan gating and Stripe subscription sync
"""

import os
from flask import Flask, jsonify
from flask_cors import CORS

import database
from billing.db import SubscriptionStore
from billing.stripe_handler import init_billing
from billing.usage import UsageAccounting
from projects.routes import init_projects


def create_app(get_db=None, get_cursor=None, store_factory=SubscriptionStore,
               usage_factory=UsageAccounting):
    """
    Build the Flask app.

    Database access defaults to the request-scoped helpers in `database`;
    callers may pass their own (e.g. in tests).
    """
    get_db = get_db or database.get_db
    get_cursor = get_cursor or database.get_cursor

    app = Flask(__name__)
    CORS(app)

    app.teardown_appcontext(database.close_db)

    app.register_blueprint(init_billing(get_db, get_cursor, store_factory, usage_factory))
    app.register_blueprint(init_projects(get_db, get_cursor, store_factory, usage_factory))

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'ok',
            'service': 'briefhub-api',
            'database_configured': bool(database.DATABASE_URL)
        })

    return app


app = create_app()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8080))
    app.run(host='0.0.0.0', port=port, debug=False)
