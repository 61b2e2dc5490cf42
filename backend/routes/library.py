# routes/library.py
"""
Liked songs and player routes for signed-in users
"""

import logging
import threading

from flask import Blueprint, g, jsonify, request

import liked_songs
import match_queue
from middleware.auth_middleware import require_auth
from playback import ProgressTracker, SeekGesture
from routes.common import error_response, spotify_client

logger = logging.getLogger(__name__)
library_bp = Blueprint('library', __name__)

_cache = None
_trackers = {}
_trackers_lock = threading.Lock()


def get_cache():
    global _cache
    if _cache is None:
        _cache = liked_songs.LikedSongsCache()
    return _cache


def get_tracker(user_id):
    """Per-user progress tracker (kept for the life of the worker)"""
    with _trackers_lock:
        tracker = _trackers.get(user_id)
        if tracker is None:
            tracker = _trackers[user_id] = ProgressTracker()
        return tracker


# ============================================================================
# LIKED SONGS
# ============================================================================

@library_bp.route('/api/liked-songs', methods=['GET'])
@require_auth
def get_liked_songs():
    """
    The user's liked songs

    Query params:
        refresh: '1' bypasses the one-hour cache

    Tracks with no movement link are queued for matching as a side effect.
    """
    user_id = str(g.current_user['id'])
    refresh = request.args.get('refresh') in ('1', 'true')

    try:
        items, from_cache = liked_songs.load_liked_songs(
            spotify_client(), user_id, get_cache(), refresh=refresh)
        track_ids = [i['track']['id'] for i in items if (i.get('track') or {}).get('id')]
        queued = match_queue.enqueue_tracks(track_ids, submitted_by=g.current_user['id'])
    except Exception as e:
        return error_response(e, 'fetching liked songs')

    return jsonify({
        'items': items,
        'total': len(items),
        'from_cache': from_cache,
        'queued': queued,
    })


@library_bp.route('/api/liked-songs/matches', methods=['POST'])
@require_auth
def get_liked_song_matches():
    """
    Catalog matches for a set of tracks

    Request body:
        {"track_ids": ["..."]}
    """
    data = request.get_json(silent=True) or {}
    track_ids = data.get('track_ids') or []
    if not isinstance(track_ids, list):
        return jsonify({'error': 'track_ids must be a list'}), 400

    try:
        matches = match_queue.get_matched_tracks(track_ids)
    except Exception as e:
        return error_response(e, 'loading matched tracks')

    return jsonify({'matches': matches})


# ============================================================================
# PLAYER
# ============================================================================

@library_bp.route('/api/player/state', methods=['GET'])
@require_auth
def get_player_state():
    """Current playback state plus the extrapolated progress snapshot"""
    try:
        state = spotify_client().get_playback_state()
    except Exception as e:
        return error_response(e, 'loading player state')

    tracker = get_tracker(str(g.current_user['id']))
    tracker.update_from_state(state)
    return jsonify({
        'state': state,
        'track_id': tracker.track_id,
        'progress': tracker.snapshot().to_dict(),
    })


@library_bp.route('/api/player/play', methods=['POST'])
@require_auth
def play():
    """
    Request body:
        {"uris": [...]} or {"context_uri": "...", "offset": 0},
        optional position_ms and device_id
    """
    data = request.get_json(silent=True) or {}
    try:
        spotify_client().start_playback(
            uris=data.get('uris'),
            context_uri=data.get('context_uri'),
            offset=data.get('offset'),
            position_ms=data.get('position_ms'),
            device_id=data.get('device_id'),
        )
    except Exception as e:
        return error_response(e, 'starting playback')
    return jsonify({'success': True})


def _transport(action, description):
    data = request.get_json(silent=True) or {}
    try:
        getattr(spotify_client(), action)(device_id=data.get('device_id'))
    except Exception as e:
        return error_response(e, description)
    return jsonify({'success': True})


@library_bp.route('/api/player/pause', methods=['POST'])
@require_auth
def pause():
    return _transport('pause', 'pausing playback')


@library_bp.route('/api/player/resume', methods=['POST'])
@require_auth
def resume():
    return _transport('resume', 'resuming playback')


@library_bp.route('/api/player/next', methods=['POST'])
@require_auth
def next_track():
    return _transport('next_track', 'skipping to next track')


@library_bp.route('/api/player/previous', methods=['POST'])
@require_auth
def previous_track():
    return _transport('previous_track', 'skipping to previous track')


@library_bp.route('/api/player/seek', methods=['POST'])
@require_auth
def seek():
    """
    Commit a seek gesture

    Request body:
        {"fraction": 0.42} or {"position_ms": 61000}, optional device_id
    """
    data = request.get_json(silent=True) or {}
    tracker = get_tracker(str(g.current_user['id']))
    gesture = SeekGesture(tracker)

    try:
        client = spotify_client()
        gesture.begin()
        gesture.preview(fraction=data.get('fraction'), position_ms=data.get('position_ms'))
        position = gesture.commit(lambda ms: client.seek(ms, device_id=data.get('device_id')))
    except Exception as e:
        gesture.cancel()
        return error_response(e, 'seeking')

    return jsonify({'success': True, 'position_ms': position, 'progress': tracker.snapshot().to_dict()})


@library_bp.route('/api/player/volume', methods=['POST'])
@require_auth
def volume():
    """
    Request body:
        {"volume_percent": 0-100}, optional device_id
    """
    data = request.get_json(silent=True) or {}
    if data.get('volume_percent') is None:
        return jsonify({'error': 'volume_percent is required'}), 400

    try:
        spotify_client().set_volume(data['volume_percent'], device_id=data.get('device_id'))
    except Exception as e:
        return error_response(e, 'setting volume')
    return jsonify({'success': True})
