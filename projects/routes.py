"""
Project Routes

Creating a project is the action the starter project limit gates. Archiving
takes the project out of usage accounting.
"""

import uuid
from datetime import datetime, timezone
from flask import Blueprint, request, jsonify

from auth import require_jwt, current_account_id
from billing.db import SubscriptionStore
from billing.enforce import require_capability
from billing.plans import Capability
from billing.usage import UsageAccounting


def init_projects(get_db, get_cursor, store_factory=SubscriptionStore,
                  usage_factory=UsageAccounting):
    """Initialize projects blueprint with database access functions."""

    projects_bp = Blueprint('projects', __name__, url_prefix='/v2/projects')

    @projects_bp.route('', methods=['POST'])
    @require_jwt
    @require_capability(Capability.CREATE_PROJECT, get_cursor, store_factory, usage_factory)
    def create_project():
        """
        Create a project for the calling account.

        Request body:
            {"name": "Rebrand 2025", "client_name": "Acme"}

        Returns 201:
            {"id": "uuid", "name": "...", "client_name": "...", "status": "active"}
        """
        data = request.get_json(silent=True) or {}
        name = (data.get('name') or '').strip()
        client_name = (data.get('client_name') or '').strip() or None

        if not name:
            return jsonify({'error': 'name is required'}), 400

        account_id = current_account_id()
        project_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)

        db = get_db()
        cur = get_cursor()

        try:
            cur.execute(
                '''INSERT INTO projects (id, owner_id, name, client_name, status, created_at, updated_at)
                   VALUES (%s, %s, %s, %s, 'active', %s, %s)''',
                (project_id, account_id, name, client_name, now, now)
            )
            db.commit()
        except Exception as e:
            db.rollback()
            print(f"[PROJECTS] Error creating project for account {account_id}: {e}", flush=True)
            return jsonify({'error': 'Could not create project'}), 500
        finally:
            cur.close()

        print(f"[PROJECTS] Created project {project_id} for account {account_id}", flush=True)
        return jsonify({
            'id': project_id,
            'name': name,
            'client_name': client_name,
            'status': 'active',
            'created_at': now.isoformat()
        }), 201

    @projects_bp.route('/<project_id>/archive', methods=['POST'])
    @require_jwt
    def archive_project(project_id):
        """Archive a project owned by the calling account."""
        try:
            project_id = str(uuid.UUID(project_id))
        except ValueError:
            return jsonify({'error': 'Project not found'}), 404

        account_id = current_account_id()

        db = get_db()
        cur = get_cursor()

        try:
            cur.execute(
                '''UPDATE projects SET status = 'archived', updated_at = NOW()
                   WHERE id = %s AND owner_id = %s
                   RETURNING id''',
                (project_id, account_id)
            )
            row = cur.fetchone()
            db.commit()
        except Exception as e:
            db.rollback()
            print(f"[PROJECTS] Error archiving project {project_id}: {e}", flush=True)
            return jsonify({'error': 'Could not archive project'}), 500
        finally:
            cur.close()

        if not row:
            return jsonify({'error': 'Project not found'}), 404

        print(f"[PROJECTS] Archived project {project_id} for account {account_id}", flush=True)
        return jsonify({'id': project_id, 'status': 'archived'})

    return projects_bp
