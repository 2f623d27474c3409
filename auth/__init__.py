"""
Auth Module for BriefHub
Domain: Account identity from bearer tokens

Tokens are HS256 JWTs issued by the hosted auth service; `sub` is the
account id and `email` is used for Stripe checkout and customer lookup.
"""

import os
import jwt
import secrets
from datetime import datetime, timedelta, timezone
from functools import wraps
from flask import request, jsonify, g

# JWT Configuration
JWT_SECRET = os.environ.get('JWT_SECRET', secrets.token_hex(32))
JWT_ALGORITHM = 'HS256'
JWT_AUDIENCE = os.environ.get('JWT_AUDIENCE', 'authenticated')
JWT_EXPIRY_HOURS = int(os.environ.get('JWT_EXPIRY_HOURS', 168))


def generate_jwt(account_id: str, email: str) -> str:
    """Generate a JWT token for an account."""
    now = datetime.now(timezone.utc)
    payload = {
        'sub': account_id,
        'email': email,
        'aud': JWT_AUDIENCE,
        'iat': now,
        'exp': now + timedelta(hours=JWT_EXPIRY_HOURS)
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_jwt(token: str) -> dict:
    """Verify and decode a JWT token."""
    try:
        payload = jwt.decode(
            token, JWT_SECRET, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE
        )
    except jwt.ExpiredSignatureError:
        raise ValueError('Token has expired')
    except jwt.InvalidTokenError as e:
        raise ValueError(f'Invalid token: {str(e)}')

    if not payload.get('sub'):
        raise ValueError('Invalid token: missing subject')
    return payload


def require_jwt(f):
    """Decorator to require JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization', '')

        if not auth_header.startswith('Bearer '):
            return jsonify({'error': 'Authorization header required'}), 401

        token = auth_header[7:]

        try:
            payload = verify_jwt(token)
        except ValueError as e:
            return jsonify({'error': str(e)}), 401

        g.current_user = payload
        return f(*args, **kwargs)

    return decorated


def current_account_id() -> str:
    return g.current_user['sub']


def current_email() -> str:
    return g.current_user.get('email')
