"""
Spotify OAuth sign-in and per-user token store

Handles:
- Building the authorize redirect and exchanging the callback code
- Upserting users / oauth_accounts from the Spotify profile
- Handing out access tokens, refreshing them when they are about to expire
"""

import base64
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import requests

import config
from db_utils import get_db_connection

logger = logging.getLogger(__name__)

AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'
TOKEN_URL = 'https://accounts.spotify.com/api/token'
PROVIDER = 'spotify'

SPOTIFY_SCOPES = [
    'user-read-email',
    'user-read-private',
    'user-library-read',
    'user-top-read',
    'playlist-read-private',
    'playlist-read-collaborative',
    'streaming',
    'user-read-playback-state',
    'user-modify-playback-state',
]

# Tokens expiring within this window are refreshed before use
REFRESH_THRESHOLD = timedelta(minutes=5)


class AuthError(Exception):
    """Raised when a user has no usable Spotify credentials"""
    pass


# ============================================================================
# OAUTH FLOW
# ============================================================================

def build_authorize_url(state):
    """Spotify authorize URL for the sign-in redirect"""
    params = {
        'client_id': config.SPOTIFY_CLIENT_ID,
        'response_type': 'code',
        'redirect_uri': config.SPOTIFY_REDIRECT_URI,
        'scope': ' '.join(SPOTIFY_SCOPES),
        'state': state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def _token_request(data):
    if not config.SPOTIFY_CLIENT_ID or not config.SPOTIFY_CLIENT_SECRET:
        raise AuthError('Spotify credentials are not configured')

    credentials = f"{config.SPOTIFY_CLIENT_ID}:{config.SPOTIFY_CLIENT_SECRET}"
    credentials_b64 = base64.b64encode(credentials.encode()).decode()

    response = requests.post(
        TOKEN_URL,
        headers={
            'Authorization': f'Basic {credentials_b64}',
            'Content-Type': 'application/x-www-form-urlencoded'
        },
        data=data,
        timeout=10
    )
    if response.status_code != 200:
        logger.error(f"Spotify token request failed: {response.status_code} {response.text[:200]}")
        raise AuthError('Failed to obtain Spotify access token')

    return response.json()


def exchange_code(code):
    """
    Exchange the authorization code from the callback for tokens

    Returns:
        Token response dict (access_token, refresh_token, expires_in, scope)
    """
    return _token_request({
        'grant_type': 'authorization_code',
        'code': code,
        'redirect_uri': config.SPOTIFY_REDIRECT_URI,
    })


def refresh_access_token(refresh_token):
    """
    Use a refresh token to obtain a new access token

    Spotify may or may not rotate the refresh token; when it doesn't the
    response has no refresh_token key.
    """
    return _token_request({
        'grant_type': 'refresh_token',
        'refresh_token': refresh_token,
    })


def expires_at_from(tokens, now=None):
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=int(tokens.get('expires_in', 3600)))


def needs_refresh(expires_at, now=None):
    """True when the token is missing an expiry or expires within five minutes"""
    if expires_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return expires_at - now < REFRESH_THRESHOLD


# ============================================================================
# USERS & ACCOUNTS
# ============================================================================

def upsert_user_account(profile, tokens):
    """
    Create or update the user and their Spotify account from a sign-in

    Args:
        profile: Spotify /v1/me response
        tokens: Token response from exchange_code

    Returns:
        User dict (id, name, email, image)
    """
    images = profile.get('images') or []
    name = profile.get('display_name') or profile['id']
    email = profile.get('email')
    image = images[0]['url'] if images else None
    expires_at = expires_at_from(tokens)

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT user_id FROM oauth_accounts
                WHERE provider = %s AND provider_account_id = %s
            """, (PROVIDER, profile['id']))
            existing = cur.fetchone()

            if existing:
                cur.execute("""
                    UPDATE users
                    SET name = %s, email = %s, image = %s, updated_at = NOW()
                    WHERE id = %s
                    RETURNING id, name, email, image
                """, (name, email, image, existing['user_id']))
                user = cur.fetchone()

                cur.execute("""
                    UPDATE oauth_accounts
                    SET access_token = %s,
                        refresh_token = COALESCE(%s, refresh_token),
                        expires_at = %s,
                        scope = %s,
                        updated_at = NOW()
                    WHERE provider = %s AND provider_account_id = %s
                """, (tokens['access_token'], tokens.get('refresh_token'), expires_at,
                      tokens.get('scope'), PROVIDER, profile['id']))
            else:
                cur.execute("""
                    INSERT INTO users (name, email, image)
                    VALUES (%s, %s, %s)
                    RETURNING id, name, email, image
                """, (name, email, image))
                user = cur.fetchone()

                cur.execute("""
                    INSERT INTO oauth_accounts
                        (user_id, provider, provider_account_id, access_token,
                         refresh_token, expires_at, scope)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                """, (user['id'], PROVIDER, profile['id'], tokens['access_token'],
                      tokens.get('refresh_token'), expires_at, tokens.get('scope')))

            conn.commit()

    logger.info(f"Signed in Spotify user {profile['id']} as {name}")
    return dict(user)


def get_user(user_id):
    """Load a user row, or None"""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT id, name, email, image
                FROM users
                WHERE id = %s
            """, (user_id,))
            row = cur.fetchone()
    return dict(row) if row else None


def find_user_by_name(name):
    """Used by scripts that act on behalf of a named user"""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT id, name, email, image
                FROM users
                WHERE name = %s
                ORDER BY created_at
                LIMIT 1
            """, (name,))
            row = cur.fetchone()
    return dict(row) if row else None


def load_spotify_account(user_id):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT id, access_token, refresh_token, expires_at
                FROM oauth_accounts
                WHERE user_id = %s AND provider = %s
            """, (user_id, PROVIDER))
            row = cur.fetchone()
    return dict(row) if row else None


def save_refreshed_tokens(account_id, tokens, expires_at):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                UPDATE oauth_accounts
                SET access_token = %s,
                    refresh_token = COALESCE(%s, refresh_token),
                    expires_at = %s,
                    updated_at = NOW()
                WHERE id = %s
            """, (tokens['access_token'], tokens.get('refresh_token'), expires_at, account_id))
            conn.commit()


def get_access_token(user_id, now=None):
    """
    Get a usable Spotify access token for a user

    Refreshes (and persists) the token first when it expires within five
    minutes.

    Raises:
        AuthError: No Spotify account or no token on file
    """
    account = load_spotify_account(user_id)
    if not account or not account.get('access_token'):
        raise AuthError('No Spotify access token')

    if not needs_refresh(account.get('expires_at'), now):
        return account['access_token']

    if not account.get('refresh_token'):
        raise AuthError('No Spotify access token')

    logger.info(f"Refreshing Spotify access token for user {user_id}")
    tokens = refresh_access_token(account['refresh_token'])
    save_refreshed_tokens(account['id'], tokens, expires_at_from(tokens, now))
    return tokens['access_token']
