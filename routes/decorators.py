# routes/decorators.py
"""
Shared decorators and helpers for the signing API routes.
"""

from functools import wraps
from flask import current_app, g, jsonify, request

USER_EMAIL_HEADER = 'X-User-Email'


def get_signing_service():
    """The SigningService created by the app factory."""
    return current_app.extensions['signing_service']


def current_user_email():
    """Acting user's email from the request header, or None."""
    email = (request.headers.get(USER_EMAIL_HEADER) or '').strip()
    return email or None


def user_required(f):
    """Decorator to require an acting user (X-User-Email header)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        email = current_user_email()
        if not email:
            return jsonify({'success': False, 'error': f'{USER_EMAIL_HEADER} header is required'}), 401
        g.user_email = email
        return f(*args, **kwargs)
    return decorated_function
