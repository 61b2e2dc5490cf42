"""
Configuration Module for Prelude API
Handles logging setup, environment settings and Flask app initialization
"""

import os
import logging


# Spotify OAuth application
SPOTIFY_CLIENT_ID = os.environ.get('SPOTIFY_CLIENT_ID')
SPOTIFY_CLIENT_SECRET = os.environ.get('SPOTIFY_CLIENT_SECRET')
SPOTIFY_REDIRECT_URI = os.environ.get('SPOTIFY_REDIRECT_URI', 'http://127.0.0.1:5001/auth/callback')

# Admin surface is gated on a single Spotify display name
ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'benwaffle')

# Metadata inference
METADATA_MODEL = os.environ.get('METADATA_MODEL', 'gpt-5-mini')

# Liked songs are re-fetched from Spotify after this many seconds
LIKED_SONGS_CACHE_TTL = int(os.environ.get('LIKED_SONGS_CACHE_TTL', '3600'))


def configure_logging():
    """
    Configure application logging with standard format

    Returns:
        Logger instance for the config module
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(__name__)


def init_app_config(app):
    """
    Initialize Flask app configuration

    This sets up:
    - Custom JSON provider for date and UUID formatting
    - Secret key used to sign the OAuth state in the Flask session

    Args:
        app: Flask application instance
    """
    from utils.json_provider import CustomJSONProvider
    app.json = CustomJSONProvider(app)
    app.secret_key = os.environ.get('SESSION_SECRET', 'dev-session-secret')
    # The `session` cookie holds the login JWT; Flask's own session only
    # carries the OAuth state between /auth/login and /auth/callback
    app.config['SESSION_COOKIE_NAME'] = 'oauth_flow'
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'


def set_db_pooling_mode():
    """
    Set database pooling mode environment variable

    This MUST be called before importing db_utils to ensure
    the connection pool is configured correctly.
    """
    os.environ['DB_USE_POOLING'] = 'true'
