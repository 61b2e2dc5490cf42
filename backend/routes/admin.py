"""
Admin Routes - Catalog Curation

Everything under /admin/api is restricted to the admin user. The endpoints
back the admin dashboard:
- Tracks tab: stats, URI lookup, LLM parsing, saving, unlinking, match queue
- Composers tab: search, import from Spotify, edits
- Works tab: search, edits, movements
"""

import logging

from flask import Blueprint, jsonify, request

import catalog_db
import catalog_ingest
import composer_management
import match_queue
import metadata_parser
import spotify_search
import track_lookup
import work_management
from db_utils import get_db_connection
from middleware.auth_middleware import require_admin
from routes.common import error_response, spotify_client
from utils.helpers import optional_int

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/admin/api')


@admin_bp.before_request
@require_admin
def check_admin():
    """Gate every admin endpoint; returning None lets the request through"""
    return None


def _json_body():
    return request.get_json(silent=True) or {}


def _respond(description, fn, *args, **kwargs):
    """Run an operation and render its result or the mapped error"""
    try:
        return jsonify(fn(*args, **kwargs))
    except Exception as e:
        return error_response(e, description)


def _int_arg(name, default=None):
    value = optional_int(request.args.get(name))
    return default if value is None else value


# ============================================================================
# STATS
# ============================================================================

def _admin_stats():
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            return catalog_db.get_admin_stats(cur)


@admin_bp.route('/stats', methods=['GET'])
def stats():
    """pending_tracks, unlinked_artists, total_works"""
    return _respond('loading admin stats', _admin_stats)


# ============================================================================
# TRACK LOOKUP
# ============================================================================

@admin_bp.route('/tracks/lookup', methods=['GET'])
def lookup_track():
    """
    Query params:
        uri: spotify:track:... URI, open.spotify.com URL or id
    """
    uri = request.args.get('uri', '')

    def lookup():
        result = track_lookup.get_track_metadata(spotify_client(), uri)
        if result is None:
            raise composer_management.NotFoundError('Track not found')
        return result

    return _respond('looking up track', lookup)


@admin_bp.route('/tracks/batch', methods=['POST'])
def lookup_tracks():
    """
    Request body:
        {"uris": ["spotify:track:...", ...]}
    """
    uris = _json_body().get('uris') or []
    return _respond('looking up tracks',
                    lambda: {'tracks': track_lookup.get_batch_track_metadata(spotify_client(), uris)})


@admin_bp.route('/albums/<album_id>/track-ids', methods=['GET'])
def album_track_ids(album_id):
    return _respond('loading album tracks',
                    lambda: {'track_ids': track_lookup.get_album_track_ids(spotify_client(), album_id)})


# ============================================================================
# METADATA PARSING
# ============================================================================

@admin_bp.route('/parse', methods=['POST'])
def parse_track():
    """
    Request body:
        {"track_name": "...", "artist_names": ["..."]}
    """
    data = _json_body()
    if not data.get('track_name'):
        return jsonify({'error': 'track_name is required'}), 400
    return _respond('parsing track',
                    lambda: metadata_parser.parse_track_metadata(
                        data['track_name'], data.get('artist_names')).to_dict())


@admin_bp.route('/parse/batch', methods=['POST'])
def parse_tracks():
    """
    Request body:
        {"tracks": [{"track_name": "...", "artist_names": [...]}, ...]}
    """
    tracks = _json_body().get('tracks') or []
    return _respond('parsing tracks',
                    lambda: {'results': [m.to_dict() for m in
                                         metadata_parser.parse_batch_track_metadata(tracks)]})


@admin_bp.route('/parse/album', methods=['POST'])
def parse_album():
    """
    Request body:
        {"album_name": "...", "tracks": [{"track_name", "artist_names"}, ...]}
        Tracks must already be in disc/track order.
    """
    data = _json_body()
    return _respond('parsing album',
                    lambda: {'results': [m.to_dict() for m in metadata_parser.parse_album_tracks(
                        data.get('album_name') or '', data.get('tracks') or [])]})


# ============================================================================
# SAVING / UNLINKING
# ============================================================================

@admin_bp.route('/tracks/save', methods=['POST'])
def save_track():
    return _respond('saving track', catalog_ingest.save_track_with_metadata, _json_body())


@admin_bp.route('/albums/save', methods=['POST'])
def save_album():
    """
    Request body:
        {"items": [save payloads]}; missing movement numbers are inferred
    """
    return _respond('saving album tracks', catalog_ingest.save_album_tracks, _json_body())


@admin_bp.route('/tracks/<track_id>/metadata', methods=['DELETE'])
def unlink_track(track_id):
    return _respond('unlinking track', catalog_ingest.delete_track_metadata, track_id)


@admin_bp.route('/works/exist', methods=['POST'])
def works_exist():
    """
    Request body:
        {"queries": [{"catalog_system": "BWV", "catalog_number": "1052"}, ...]}
    """
    return _respond('checking works', catalog_ingest.check_works_exist, _json_body().get('queries') or [])


@admin_bp.route('/works/check', methods=['POST'])
def work_and_movement():
    """
    Request body:
        {"composer_id", "catalog_system", "catalog_number", "movement_number"}
    """
    data = _json_body()
    return _respond('checking work and movement', lambda: catalog_ingest.check_work_and_movement(
        optional_int(data.get('composer_id')),
        data.get('catalog_system'),
        data.get('catalog_number'),
        optional_int(data.get('movement_number')),
    ))


@admin_bp.route('/works/link-track', methods=['POST'])
def link_track_to_work():
    return _respond('linking track to work', catalog_ingest.add_work_movement_and_track, _json_body())


@admin_bp.route('/mirror/album', methods=['POST'])
def mirror_album():
    return _respond('adding album', catalog_ingest.add_album_to_database, _json_body())


@admin_bp.route('/mirror/artists', methods=['POST'])
def mirror_artists():
    """
    Request body:
        {"artists": [{"id", "name"}, ...]}
    """
    return _respond('adding artists', catalog_ingest.add_artists_to_database, _json_body().get('artists') or [])


@admin_bp.route('/mirror/track', methods=['POST'])
def mirror_track():
    return _respond('adding track', catalog_ingest.add_track_to_database, _json_body())


# ============================================================================
# COMPOSERS
# ============================================================================

@admin_bp.route('/composers', methods=['GET'])
def search_composers():
    return _respond('searching composers',
                    lambda: {'composers': composer_management.search_composers(request.args.get('q', ''))})


@admin_bp.route('/composers/stats', methods=['GET'])
def composers_with_stats():
    return _respond('loading composers',
                    lambda: {'composers': composer_management.get_composers_with_stats()})


@admin_bp.route('/composers', methods=['POST'])
def add_composer():
    """
    Request body:
        {"spotify_artist_id": "...", "name": "..."}
    """
    data = _json_body()
    return _respond('adding composer', catalog_ingest.add_composer,
                    data.get('spotify_artist_id'), data.get('name'))


@admin_bp.route('/composers/import', methods=['POST'])
def import_composer():
    """
    Request body:
        {"name", "spotify_artist_id", "birth_year"?, "death_year"?, "popularity"?, "images"?}
    """
    return _respond('importing composer', composer_management.create_composer_with_spotify, _json_body())


@admin_bp.route('/composers/<int:composer_id>', methods=['PATCH'])
def update_composer(composer_id):
    return _respond('updating composer', composer_management.update_composer_details,
                    composer_id, _json_body())


# ============================================================================
# WORKS & MOVEMENTS
# ============================================================================

@admin_bp.route('/works', methods=['GET'])
def search_works():
    """
    Query params:
        q, composer_id, catalog_system, limit (default 50), offset (default 0)
    """
    def search():
        return work_management.search_works(
            query=request.args.get('q'),
            composer_id=_int_arg('composer_id'),
            catalog_system=request.args.get('catalog_system'),
            limit=_int_arg('limit', 50),
            offset=_int_arg('offset', 0),
        )
    return _respond('searching works', search)


@admin_bp.route('/works/<int:work_id>', methods=['GET'])
def get_work(work_id):
    def load():
        details = work_management.get_work_with_details(work_id)
        if details is None:
            raise composer_management.NotFoundError('Work not found')
        return details
    return _respond('loading work', load)


@admin_bp.route('/works', methods=['POST'])
def create_work():
    return _respond('creating work', work_management.create_work, _json_body())


@admin_bp.route('/works/<int:work_id>', methods=['PATCH'])
def update_work(work_id):
    return _respond('updating work', work_management.update_work_details, work_id, _json_body())


@admin_bp.route('/works/<int:work_id>/movements', methods=['POST'])
def add_movement(work_id):
    """
    Request body:
        {"number": 2, "title": "Adagio"}
    """
    data = _json_body()
    return _respond('adding movement', work_management.add_movement_to_work,
                    work_id, data.get('number'), data.get('title'))


@admin_bp.route('/movements/<int:movement_id>', methods=['PATCH'])
def update_movement(movement_id):
    return _respond('updating movement', work_management.update_movement_details,
                    movement_id, _json_body())


@admin_bp.route('/movements/<int:movement_id>', methods=['DELETE'])
def delete_movement(movement_id):
    def delete():
        work_management.delete_movement(movement_id)
        return {'success': True}
    return _respond('deleting movement', delete)


# ============================================================================
# SPOTIFY SEARCH
# ============================================================================

@admin_bp.route('/spotify/artists', methods=['GET'])
def search_artists():
    """
    Query params:
        q: search text
        limit: 1-50 (default 5)
    """
    query = request.args.get('q', '')
    if not query.strip():
        return jsonify({'error': 'q is required'}), 400
    return _respond('searching Spotify artists',
                    lambda: {'artists': spotify_search.search_spotify_artists(
                        spotify_client(), query, limit=_int_arg('limit', 5))})


@admin_bp.route('/spotify/artists/import-search', methods=['POST'])
def search_artist_for_import():
    """
    Request body:
        {"name": "...", "birth_year"?: 1685, "death_year"?: 1750}
    """
    return _respond('searching Spotify artist',
                    lambda: spotify_search.search_spotify_artist_for_import(spotify_client(), _json_body()))


@admin_bp.route('/spotify/artists/batch-search', methods=['POST'])
def batch_search_artists():
    """
    Request body:
        {"entries": [{"name", "birth_year"?, "death_year"?}, ...]}
    """
    entries = _json_body().get('entries') or []
    return _respond('searching Spotify artists',
                    lambda: {'results': spotify_search.batch_search_spotify_artists(spotify_client(), entries)})


@admin_bp.route('/spotify/artists/refresh', methods=['POST'])
def refresh_artists():
    return _respond('refreshing Spotify artists',
                    lambda: spotify_search.refresh_spotify_artist_metadata_missing(spotify_client()))


@admin_bp.route('/spotify/playlists', methods=['GET'])
def search_playlists():
    query = request.args.get('q', '')
    if not query.strip():
        return jsonify({'error': 'q is required'}), 400
    return _respond('searching Spotify playlists',
                    lambda: {'playlists': spotify_search.search_spotify_playlists(
                        spotify_client(), query, limit=_int_arg('limit', 20))})


@admin_bp.route('/spotify/playlists/<playlist_id>/artists', methods=['GET'])
def playlist_artists(playlist_id):
    return _respond('loading playlist artists',
                    lambda: {'artists': spotify_search.get_playlist_artists(spotify_client(), playlist_id)})


# ============================================================================
# MATCH QUEUE
# ============================================================================

@admin_bp.route('/match-queue', methods=['GET'])
def get_match_queue():
    """
    Query params:
        limit: page size (default 100, 0 returns only the total)
        offset: default 0
    """
    return _respond('loading match queue', lambda: match_queue.get_match_queue(
        _int_arg('limit', match_queue.QUEUE_PAGE_SIZE), _int_arg('offset', 0)))


@admin_bp.route('/match-queue/status', methods=['POST'])
def update_match_queue_status():
    """
    Request body:
        {"track_ids": [...], "status": "matched" | "failed" | "pending"}
    """
    data = _json_body()
    return _respond('updating match queue', lambda: {
        'updated': match_queue.update_match_queue_status(data.get('track_ids') or [], data.get('status'))
    })
