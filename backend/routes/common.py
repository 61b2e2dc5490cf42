# routes/common.py
"""
Helpers shared by the API blueprints
"""

import logging

from psycopg.errors import UniqueViolation
import requests
from flask import g, jsonify

import spotify_auth
from composer_management import ConflictError, NotFoundError
from metadata_parser import MetadataParseError
from spotify_client import SpotifyAPIError, SpotifyClient, SpotifyRateLimitError

logger = logging.getLogger(__name__)


def spotify_client():
    """SpotifyClient acting as the signed-in user"""
    return SpotifyClient(spotify_auth.get_access_token(g.current_user['id']))


def error_response(e, action):
    """
    Map an exception to a JSON error response

    Args:
        e: The exception raised by the operation
        action: Short description for the log line (e.g. 'saving track')
    """
    if isinstance(e, ValueError):
        return jsonify({'error': str(e)}), 400
    if isinstance(e, spotify_auth.AuthError):
        return jsonify({'error': str(e)}), 401
    if isinstance(e, NotFoundError):
        return jsonify({'error': str(e)}), 404
    if isinstance(e, ConflictError):
        return jsonify({'error': str(e)}), 409
    if isinstance(e, UniqueViolation):
        logger.warning(f"Conflict while {action}: {e}")
        return jsonify({'error': f'Conflict while {action}: a matching row already exists'}), 409
    if isinstance(e, (SpotifyAPIError, SpotifyRateLimitError, MetadataParseError,
                      requests.exceptions.RequestException)):
        logger.error(f"Upstream error while {action}: {e}")
        return jsonify({'error': str(e)}), 502

    logger.error(f"Error {action}: {e}", exc_info=True)
    return jsonify({'error': f'Failed {action}'}), 500
