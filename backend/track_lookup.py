"""
Admin track lookup

Resolves Spotify track URIs into the Spotify track objects the admin works
with, annotated with what the catalog already knows about each one.
"""

import logging

import catalog_db
from db_utils import get_db_connection
from spotify_client import parse_track_id
from utils.helpers import chunked

logger = logging.getLogger(__name__)

TRACKS_PER_REQUEST = 50


def _parse_ids(uris):
    ids = []
    for uri in uris:
        track_id = parse_track_id(uri)
        if not track_id:
            raise ValueError(f"Invalid Spotify track URI: {uri}")
        ids.append(track_id)
    return ids


def _db_data(rows):
    """Group joined catalog rows of one track into movements/works/composers"""
    movements = []
    works = {}
    composers = {}
    recording_ids = []
    for row in rows:
        movements.append({
            'id': row['movement_id'],
            'work_id': row['work_id'],
            'number': row['movement_number'],
            'title': row['movement_title'],
        })
        works.setdefault(row['work_id'], {
            'id': row['work_id'],
            'composer_id': row['composer_id'],
            'title': row['work_title'],
            'nickname': row['work_nickname'],
            'catalog_system': row['catalog_system'],
            'catalog_number': row['catalog_number'],
            'year_composed': row['year_composed'],
            'form': row['form'],
        })
        composers.setdefault(row['composer_id'], {
            'id': row['composer_id'],
            'name': row['composer_name'],
        })
        if row['recording_id'] and row['recording_id'] not in recording_ids:
            recording_ids.append(row['recording_id'])

    return {
        'movements': movements,
        'works': list(works.values()),
        'composers': list(composers.values()),
        'recording_ids': recording_ids,
    }


def annotate_tracks(tracks):
    """
    Attach catalog status to Spotify track objects

    Each track gains in_spotify_tracks_table and db_data; its album gains
    in_spotify_albums_table; each artist gains in_spotify_artists_table,
    in_composers_table and composer_id.
    """
    track_ids = [t['id'] for t in tracks]
    album_ids = {t['album']['id'] for t in tracks if t.get('album')}
    artist_ids = {a['id'] for t in tracks for a in t.get('artists', [])}

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            known_tracks = catalog_db.existing_track_ids(cur, track_ids)
            known_albums = catalog_db.existing_album_ids(cur, album_ids)
            artist_composers = catalog_db.artist_composer_map(cur, artist_ids)
            catalog_rows = catalog_db.load_track_catalog_rows(cur, track_ids)

    rows_by_track = {}
    for row in catalog_rows:
        rows_by_track.setdefault(row['spotify_track_id'], []).append(row)

    results = []
    for track in tracks:
        album = dict(track.get('album') or {})
        if album:
            album['in_spotify_albums_table'] = album.get('id') in known_albums

        artists = []
        for artist in track.get('artists', []):
            composer_id = artist_composers.get(artist['id'])
            artists.append({
                **artist,
                'in_spotify_artists_table': artist['id'] in artist_composers,
                'in_composers_table': composer_id is not None,
                'composer_id': composer_id,
            })

        results.append({
            **track,
            'album': album,
            'artists': artists,
            'in_spotify_tracks_table': track['id'] in known_tracks,
            'db_data': _db_data(rows_by_track.get(track['id'], [])),
        })
    return results


def get_batch_track_metadata(client, uris):
    """
    Look up many tracks by URI

    Raises:
        ValueError: A URI could not be parsed
    """
    track_ids = _parse_ids(uris)
    tracks = []
    for batch in chunked(track_ids, TRACKS_PER_REQUEST):
        tracks.extend(client.get_tracks(batch))
    logger.info(f"Fetched {len(tracks)} of {len(track_ids)} requested tracks")
    return annotate_tracks(tracks)


def get_track_metadata(client, uri):
    """Look up one track by URI, or None if Spotify does not know it"""
    results = get_batch_track_metadata(client, [uri])
    return results[0] if results else None


def get_album_track_ids(client, album_id):
    """Ids of every track on an album, in album order"""
    return [t['id'] for t in client.get_album_tracks(album_id) if t.get('id')]
