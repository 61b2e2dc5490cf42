"""
Authentication middleware for protecting Flask routes

This module provides decorators for:
- require_auth: Require a valid session cookie
- require_admin: Require the session user to be the catalog admin
"""

from functools import wraps
from flask import request, jsonify, g

import config
import spotify_auth
from auth_utils import SESSION_COOKIE_NAME, decode_token


def _load_session_user():
    """
    Resolve the user from the session cookie

    Returns:
        User dict, or None when there is no valid session
    """
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None

    try:
        payload = decode_token(token)
    except ValueError:
        return None

    if payload.get('type') != 'session':
        return None

    return spotify_auth.get_user(payload['user_id'])


def require_auth(f):
    """
    Decorator to require a signed-in user

    Usage:
        @library_bp.route('/api/liked-songs')
        @require_auth
        def liked_songs():
            user = g.current_user

    g.current_user holds id, name, email and image.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _load_session_user()
        if not user:
            return jsonify({'error': 'Unauthorized'}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Decorator for the admin surface

    401 without a session, 403 when the user is not the configured admin.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _load_session_user()
        if not user:
            return jsonify({'error': 'Unauthorized'}), 401

        if user.get('name') != config.ADMIN_USERNAME:
            return jsonify({'error': 'Access denied'}), 403

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
