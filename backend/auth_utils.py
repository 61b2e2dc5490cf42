"""
Session token utilities

The browser session is a signed JWT stored in the `session` cookie. It only
carries the user id; Spotify tokens stay server-side in oauth_accounts.
"""

import os
import jwt
import secrets
from datetime import datetime, timedelta, timezone

# JWT Configuration
JWT_SECRET = os.getenv('SESSION_SECRET')
if not JWT_SECRET:
    raise ValueError("SESSION_SECRET environment variable must be set")

JWT_ALGORITHM = 'HS256'
SESSION_COOKIE_NAME = 'session'
SESSION_EXPIRY = timedelta(days=30)


def generate_session_token(user_id: str) -> str:
    """
    Generate the session JWT (30 days expiry)

    Args:
        user_id: UUID of the user

    Returns:
        JWT token as string
    """
    now = datetime.now(timezone.utc)
    payload = {
        'user_id': str(user_id),
        'exp': now + SESSION_EXPIRY,
        'iat': now,
        'type': 'session'
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate JWT token

    Raises:
        ValueError: If token is expired or invalid
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ValueError('Token has expired')
    except jwt.InvalidTokenError:
        raise ValueError('Invalid token')


def generate_oauth_state() -> str:
    """Random value round-tripped through the Spotify authorize redirect"""
    return secrets.token_urlsafe(32)
