"""
Authentication routes: Spotify sign-in, callback, logout, current user

The session is a signed JWT in an HttpOnly cookie; Spotify tokens never
leave the server except through /api/spotify/token, which the in-browser
player SDK needs.
"""

import logging

from flask import Blueprint, g, jsonify, redirect, request, session

import spotify_auth
from auth_utils import (
    SESSION_COOKIE_NAME,
    SESSION_EXPIRY,
    generate_oauth_state,
    generate_session_token,
)
from middleware.auth_middleware import require_auth
from spotify_client import SpotifyAPIError, SpotifyClient

logger = logging.getLogger(__name__)
auth_bp = Blueprint('auth', __name__)

OAUTH_STATE_KEY = 'spotify_oauth_state'


@auth_bp.route('/auth/login', methods=['GET'])
def login():
    """Redirect to the Spotify authorize page"""
    state = generate_oauth_state()
    session[OAUTH_STATE_KEY] = state
    return redirect(spotify_auth.build_authorize_url(state))


@auth_bp.route('/auth/callback', methods=['GET'])
def callback():
    """
    Spotify redirects here after sign-in

    Query params:
        code: Authorization code
        state: Must match the value stored at /auth/login
        error: Present when the user declined

    Returns:
        Redirect to / with the session cookie set
    """
    if request.args.get('error'):
        logger.warning(f"Spotify sign-in declined: {request.args.get('error')}")
        return jsonify({'error': request.args.get('error')}), 401

    expected_state = session.pop(OAUTH_STATE_KEY, None)
    if not expected_state or request.args.get('state') != expected_state:
        return jsonify({'error': 'Invalid OAuth state'}), 400

    code = request.args.get('code')
    if not code:
        return jsonify({'error': 'Missing authorization code'}), 400

    try:
        tokens = spotify_auth.exchange_code(code)
        profile = SpotifyClient(tokens['access_token']).get_me()
        user = spotify_auth.upsert_user_account(profile, tokens)
    except spotify_auth.AuthError as e:
        return jsonify({'error': str(e)}), 401
    except SpotifyAPIError as e:
        logger.error(f"Failed to load Spotify profile: {e}")
        return jsonify({'error': 'Failed to load Spotify profile'}), 502

    response = redirect('/')
    response.set_cookie(
        SESSION_COOKIE_NAME,
        generate_session_token(user['id']),
        max_age=int(SESSION_EXPIRY.total_seconds()),
        httponly=True,
        samesite='Lax',
        secure=request.is_secure,
    )
    return response


@auth_bp.route('/auth/logout', methods=['POST'])
def logout():
    response = jsonify({'message': 'Logged out'})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@auth_bp.route('/auth/me', methods=['GET'])
@require_auth
def get_current_user():
    """Get current user information"""
    user = g.current_user
    return jsonify({
        'id': str(user['id']),
        'name': user['name'],
        'email': user['email'],
        'image': user['image'],
    })


@auth_bp.route('/api/spotify/token', methods=['GET'])
@require_auth
def get_spotify_token():
    """Fresh access token for the Web Playback SDK"""
    try:
        token = spotify_auth.get_access_token(g.current_user['id'])
    except spotify_auth.AuthError as e:
        return jsonify({'error': str(e)}), 401
    return jsonify({'access_token': token})
