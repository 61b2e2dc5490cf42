"""
Spotify search helpers for composer curation

Artist and playlist search used to find the Spotify artist behind a
composer, plus a refresh pass for mirrored artists missing metadata.
"""

import logging
import time

import catalog_db
from db_utils import get_db_connection
from spotify_client import SpotifyAPIError, SpotifyRateLimitError
from utils.helpers import chunked

logger = logging.getLogger(__name__)

# Pause between consecutive Spotify calls in batch operations
BATCH_DELAY_SECONDS = 0.05
REFRESH_BATCH_SIZE = 50


def _artist_result(artist):
    return {
        'id': artist['id'],
        'name': artist['name'],
        'popularity': artist.get('popularity'),
        'images': artist.get('images') or [],
        'genres': artist.get('genres') or [],
    }


def search_spotify_artists(client, query, limit=5):
    results = client.search(query, types=('artist',), limit=limit)
    return [_artist_result(a) for a in (results.get('artists') or {}).get('items', []) if a]


def _existing_composer_id(name):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            existing = catalog_db.find_composer_by_name(cur, name)
    return existing['id'] if existing else None


def search_spotify_artist_for_import(client, entry):
    """
    Candidate Spotify artists for one composer to import

    Args:
        entry: {'name', 'birth_year'?, 'death_year'?}

    Returns:
        {'input', 'results', 'existing_composer_id'}; a known composer short
        circuits the search, and a failed search yields no results
    """
    name = (entry.get('name') or '').strip()
    if not name:
        raise ValueError("Composer name is required")

    existing_id = _existing_composer_id(name)
    if existing_id:
        return {'input': entry, 'results': [], 'existing_composer_id': existing_id}

    try:
        results = search_spotify_artists(client, name, limit=3)
    except (SpotifyAPIError, SpotifyRateLimitError) as e:
        logger.error(f"Failed to search for {name}: {e}")
        results = []

    return {'input': entry, 'results': results, 'existing_composer_id': None}


def batch_search_spotify_artists(client, entries):
    """
    Run search_spotify_artist_for_import for each entry with a short pause
    between searches
    """
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            known = catalog_db.composers_by_lower_names(
                cur, [e['name'].strip() for e in entries if (e.get('name') or '').strip()])

    results = []
    for i, entry in enumerate(entries):
        name = (entry.get('name') or '').strip()
        existing = known.get(name.lower()) if name else None
        if existing:
            results.append({'input': entry, 'results': [], 'existing_composer_id': existing['id']})
            continue

        if i > 0:
            time.sleep(BATCH_DELAY_SECONDS)
        try:
            found = search_spotify_artists(client, name, limit=3) if name else []
        except (SpotifyAPIError, SpotifyRateLimitError) as e:
            logger.error(f"Failed to search for {name}: {e}")
            found = []
        results.append({'input': entry, 'results': found, 'existing_composer_id': None})

    return results


def refresh_spotify_artist_metadata_missing(client):
    """
    Re-fetch mirrored artists that have no popularity or images

    Failed batches are logged and skipped.

    Returns:
        {'updated': int, 'total': int}
    """
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            ids = [row['spotify_id'] for row in catalog_db.list_artists_missing_metadata(cur)]

    updated = 0
    for batch in chunked(ids, REFRESH_BATCH_SIZE):
        try:
            artists = client.get_artists(batch)
            with get_db_connection() as conn:
                with conn.cursor() as cur:
                    for artist in artists:
                        catalog_db.update_artist_metadata(
                            cur, artist['id'], artist['name'],
                            artist.get('popularity'), artist.get('images'))
                conn.commit()
            updated += len(artists)
        except (SpotifyAPIError, SpotifyRateLimitError) as e:
            logger.error(f"Failed to refresh Spotify artist metadata batch: {e}")

        time.sleep(BATCH_DELAY_SECONDS)

    logger.info(f"Refreshed {updated} of {len(ids)} Spotify artists")
    return {'updated': updated, 'total': len(ids)}


def search_spotify_playlists(client, query, limit=20):
    results = client.search(query, types=('playlist',), limit=limit)
    playlists = []
    for playlist in (results.get('playlists') or {}).get('items', []):
        if not playlist:
            continue
        owner = playlist.get('owner') or {}
        playlists.append({
            'id': playlist['id'],
            'name': playlist['name'],
            'description': playlist.get('description'),
            'owner': owner.get('display_name') or owner.get('id'),
            'images': playlist.get('images') or [],
            'track_count': (playlist.get('tracks') or {}).get('total') or 0,
        })
    return playlists


def get_playlist_artists(client, playlist_id):
    """
    Artists appearing on a playlist, most frequent first

    Returns:
        [{'id', 'name', 'track_count', 'sample_track', 'existing_composer_id'}]
    """
    counts = {}
    for item in client.get_playlist_items(playlist_id):
        track = item.get('track') if item else None
        if not track or track.get('type') != 'track':
            continue
        for artist in track.get('artists') or []:
            if not artist.get('id'):
                continue
            entry = counts.get(artist['id'])
            if entry:
                entry['track_count'] += 1
            else:
                counts[artist['id']] = {
                    'id': artist['id'],
                    'name': artist['name'],
                    'track_count': 1,
                    'sample_track': track['name'],
                }

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            composers = catalog_db.composers_by_artist_ids(cur, list(counts.keys()))

    artists = []
    for artist_id, entry in counts.items():
        composer = composers.get(artist_id)
        artists.append({**entry, 'existing_composer_id': composer['id'] if composer else None})

    return sorted(artists, key=lambda a: a['track_count'], reverse=True)
