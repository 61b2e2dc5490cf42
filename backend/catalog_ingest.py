"""
Catalog Reconciliation

Takes a Spotify track plus its (inferred or curated) classical metadata and
folds it into the catalog: composer -> work -> movement -> recording, then
links the track to its movement.

Each step runs on its own connection and commits on its own. A failure in a
later step leaves the earlier steps in place; re-running the save is safe
because every step is find-or-create.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

import catalog_db
from db_utils import get_db_connection
from utils.helpers import optional_int, release_year, safe_strip

logger = logging.getLogger(__name__)


# ============================================================================
# VALIDATION
# ============================================================================

def _require(mapping, key, label):
    value = safe_strip(mapping.get(key)) if mapping else None
    if value is None:
        raise ValueError(f"{label} is required")
    return value


def _metadata_fields(metadata):
    """Normalise the editable work fields of a metadata payload"""
    return {
        'title': _require(metadata, 'formal_name', 'Work title'),
        'nickname': safe_strip(metadata.get('nickname')),
        'catalog_system': safe_strip(metadata.get('catalog_system')),
        'catalog_number': safe_strip(_as_text(metadata.get('catalog_number'))),
        'year_composed': optional_int(metadata.get('year_composed')),
        'form': safe_strip(metadata.get('form')),
    }


def _as_text(value):
    return None if value is None else str(value)


def resolve_composer_artist(artists, composer_name):
    """
    Find the track artist that is the composer

    Raises:
        ValueError: No artist carries the composer's name
    """
    for artist in artists:
        if artist.get('name') == composer_name:
            return artist
    raise ValueError(f"Could not find composer artist: {composer_name}")


# ============================================================================
# STEP HELPERS (cursor level)
# ============================================================================

def upsert_work(cur, composer_id, fields):
    """
    Find the work by its identity key and refresh it, or create it

    The key is (composer, catalog system, catalog number) when the work has
    a catalog entry, otherwise (composer, title).

    Returns:
        Work id
    """
    if fields.get('catalog_system') and fields.get('catalog_number'):
        existing = catalog_db.find_work_by_catalog(
            cur, composer_id, fields['catalog_system'], fields['catalog_number'])
    else:
        existing = catalog_db.find_work_by_title(cur, composer_id, fields['title'])
        if existing:
            # A title match keeps whatever catalog entry the work already has
            fields = {k: v for k, v in fields.items()
                      if k not in ('catalog_system', 'catalog_number') or v is not None}

    if existing:
        catalog_db.update_work(cur, existing['id'], fields)
        return existing['id']

    work = catalog_db.insert_work(cur, composer_id, **fields)
    logger.info(f"Created work {work['id']}: {fields['title']}")
    return work['id']


def upsert_movement(cur, work_id, number, title=None):
    """Find the movement by (work, number) and retitle it, or create it"""
    existing = catalog_db.find_movement(cur, work_id, number)
    if existing:
        catalog_db.update_movement(cur, existing['id'], {'title': title})
        return existing['id']

    movement = catalog_db.insert_movement(cur, work_id, number, title)
    return movement['id']


def upsert_recording(cur, album_id, work_id):
    """First write wins: an existing (album, work) recording is left untouched"""
    existing = catalog_db.find_recording(cur, album_id, work_id)
    if existing:
        return existing['id']
    return catalog_db.insert_recording(cur, album_id, work_id)['id']


def link_track_movement(cur, track_id, movement_id):
    return catalog_db.link_track_movement(cur, track_id, movement_id)


# ============================================================================
# MIRROR ROWS
# ============================================================================

def _save_album_row(album):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            catalog_db.upsert_album(
                cur,
                album['id'],
                album.get('name') or '',
                year=release_year(album.get('release_date')),
                popularity=album.get('popularity') or None,
                images=album.get('images') or [],
            )
        conn.commit()


def _save_artist_row(artist):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            catalog_db.insert_artist_if_absent(cur, artist['id'], artist.get('name') or '')
        conn.commit()


def _ensure_album_and_artists(album, artists):
    """Album and artist rows are independent, so write them concurrently"""
    with ThreadPoolExecutor(max_workers=max(1, len(artists) + 1)) as executor:
        futures = [executor.submit(_save_album_row, album)]
        futures.extend(executor.submit(_save_artist_row, a) for a in artists)
        for future in as_completed(futures):
            # Re-raises the first database error
            future.result()


# ============================================================================
# SAVE TRACK WITH METADATA
# ============================================================================

def save_track_with_metadata(payload):
    """
    Reconcile one track into the catalog

    Args:
        payload: {
            'album': {'id', 'name', 'release_date', 'popularity', 'images'},
            'track': {'id', 'name', 'duration_ms', 'track_number', 'popularity'},
            'artists': [{'id', 'name', 'composer_id'?}],
            'metadata': {'composer_artist_id', 'composer_name', 'formal_name',
                         'nickname', 'catalog_system', 'catalog_number', 'form',
                         'movement_number', 'movement_name', 'year_composed'}
        }

    Returns:
        {'success': True, 'work_id', 'movement_id', 'recording_id', 'composer_id'}

    Raises:
        ValueError: Required identifiers missing
    """
    album = payload.get('album') or {}
    track = payload.get('track') or {}
    artists = payload.get('artists') or []
    metadata = payload.get('metadata') or {}

    album_id = _require(album, 'id', 'Album id')
    track_id = _require(track, 'id', 'Track id')
    composer_artist_id = _require(metadata, 'composer_artist_id', 'Composer artist id')
    composer_name = _require(metadata, 'composer_name', 'Composer name')
    work_fields = _metadata_fields(metadata)
    movement_number = optional_int(metadata.get('movement_number')) or 1
    movement_name = safe_strip(metadata.get('movement_name'))

    # Step 1: album + artists
    _ensure_album_and_artists(album, artists)

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            # Step 2: composer
            composer_artist = next((a for a in artists if a.get('id') == composer_artist_id), None)
            composer_id = composer_artist.get('composer_id') if composer_artist else None

            if not composer_id:
                existing = catalog_db.find_composer_by_artist_id(cur, composer_artist_id)
                if existing:
                    composer_id = existing['id']
                else:
                    composer_id = catalog_db.insert_composer(
                        cur, composer_name, spotify_artist_id=composer_artist_id)['id']
                    logger.info(f"Created composer {composer_id}: {composer_name}")
            conn.commit()

            # Step 3: track + track artists
            if not catalog_db.track_exists(cur, track_id):
                catalog_db.insert_track(
                    cur,
                    track_id,
                    track.get('name') or '',
                    track_number=track.get('track_number'),
                    duration_ms=track.get('duration_ms'),
                    popularity=track.get('popularity'),
                    album_id=album_id,
                )
                catalog_db.insert_track_artists(cur, track_id, [a['id'] for a in artists])
                conn.commit()

            # Step 4: work
            work_id = upsert_work(cur, composer_id, work_fields)
            conn.commit()

            # Step 5: movement
            movement_id = upsert_movement(cur, work_id, movement_number, movement_name)
            conn.commit()

            # Step 6: recording
            recording_id = upsert_recording(cur, album_id, work_id)
            conn.commit()

            # Step 7: track -> movement
            link_track_movement(cur, track_id, movement_id)
            conn.commit()

    logger.info(f"Saved track {track_id} -> work {work_id}, movement {movement_number}")

    return {
        'success': True,
        'work_id': work_id,
        'movement_id': movement_id,
        'recording_id': recording_id,
        'composer_id': composer_id,
    }


def add_work_movement_and_track(data):
    """
    Attach a track to a work/movement of an already-known composer

    Args:
        data: composer_id, formal_name, nickname, catalog_system, catalog_number,
              form, movement_number, movement_name, year_composed,
              spotify_track_id, spotify_album_id
    """
    composer_id = optional_int(data.get('composer_id'))
    if composer_id is None:
        raise ValueError("Composer id is required")
    track_id = _require(data, 'spotify_track_id', 'Track id')
    album_id = _require(data, 'spotify_album_id', 'Album id')
    work_fields = _metadata_fields(data)
    movement_number = optional_int(data.get('movement_number')) or 1

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            work_id = upsert_work(cur, composer_id, work_fields)
            movement_id = upsert_movement(cur, work_id, movement_number,
                                          safe_strip(data.get('movement_name')))
            recording_id = upsert_recording(cur, album_id, work_id)
            link_track_movement(cur, track_id, movement_id)
            conn.commit()

    return {
        'success': True,
        'work_id': work_id,
        'movement_id': movement_id,
        'recording_id': recording_id,
    }


# ============================================================================
# ALBUM-LEVEL SAVE
# ============================================================================

def _group_key(item):
    metadata = item.get('metadata') or {}
    return (
        (item.get('album') or {}).get('id'),
        metadata.get('catalog_system'),
        _as_text(metadata.get('catalog_number')),
        metadata.get('composer_name'),
    )


def infer_movement_numbers(items):
    """
    Fill in movement numbers the metadata did not provide

    A track without a movement number takes its 1-based position among the
    tracks sharing its album, catalog entry and composer, ordered by track
    number. A track alone in its group is movement 1.

    Args:
        items: Save payloads (album, track, metadata)

    Returns:
        Movement numbers aligned with items
    """
    groups = {}
    for index, item in enumerate(items):
        groups.setdefault(_group_key(item), []).append(index)

    for indexes in groups.values():
        indexes.sort(key=lambda i: (items[i].get('track') or {}).get('track_number') or 0)

    numbers = []
    for index, item in enumerate(items):
        given = optional_int((item.get('metadata') or {}).get('movement_number'))
        if given:
            numbers.append(given)
            continue
        group = groups[_group_key(item)]
        numbers.append(group.index(index) + 1 if len(group) > 1 else 1)
    return numbers


def save_album_tracks(payload):
    """
    Save several tracks of one album, inferring missing movement numbers

    Args:
        payload: {'items': [save payloads]}; a metadata entry without
                 composer_artist_id is resolved from the artist names

    Returns:
        {'saved': [{track_id, ...result}], 'errors': [{track_id, error}]}
    """
    items = payload.get('items') or []
    numbers = infer_movement_numbers(items)

    saved = []
    errors = []
    for item, number in zip(items, numbers):
        track_id = (item.get('track') or {}).get('id')
        metadata = dict(item.get('metadata') or {})
        try:
            if not metadata.get('composer_artist_id'):
                composer_name = _require(metadata, 'composer_name', 'Composer name')
                artist = resolve_composer_artist(item.get('artists') or [], composer_name)
                metadata['composer_artist_id'] = artist['id']
            metadata['movement_number'] = number
            result = save_track_with_metadata({**item, 'metadata': metadata})
            saved.append({'track_id': track_id, **result})
        except Exception as e:
            logger.error(f"Failed to save track {track_id}: {e}")
            errors.append({'track_id': track_id, 'error': str(e)})

    return {'saved': saved, 'errors': errors}


# ============================================================================
# EXISTENCE PROBES
# ============================================================================

def check_works_exist(queries):
    """
    Which catalog entries already exist as works

    The probe matches on catalog system/number only; works of different
    composers sharing an entry resolve to the lowest work id.

    Args:
        queries: [{'catalog_system', 'catalog_number'}]

    Returns:
        {'SYSTEM:NUMBER': {'work_id', 'movements': [{'number', 'title'}]}}
    """
    pairs = []
    for q in queries or []:
        system = safe_strip(q.get('catalog_system'))
        number = safe_strip(_as_text(q.get('catalog_number')))
        if system and number:
            pairs.append((system, number))
    if not pairs:
        return {}

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            works = catalog_db.find_works_by_catalog_pairs(cur, pairs)
            movements = catalog_db.movements_for_works(cur, [w['id'] for w in works])

    by_work = {}
    for m in movements:
        by_work.setdefault(m['work_id'], []).append({'number': m['number'], 'title': m['title']})

    result = {}
    for work in works:
        key = f"{work['catalog_system']}:{work['catalog_number']}"
        if key in result:
            continue
        result[key] = {
            'work_id': work['id'],
            'movements': sorted(by_work.get(work['id'], []), key=lambda m: m['number']),
        }
    return result


def check_work_and_movement(composer_id, catalog_system, catalog_number, movement_number):
    """
    Does this composer's catalog entry exist, and does it have this movement

    Without a catalog system and number both answers are no.
    """
    absent = {'work_exists': False, 'movement_exists': False, 'work': None, 'movement': None}
    if not catalog_system or not catalog_number:
        return absent

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            work = catalog_db.find_work_by_catalog(cur, composer_id, catalog_system, str(catalog_number))
            if not work:
                return absent
            movement = None
            if movement_number is not None:
                movement = catalog_db.find_movement(cur, work['id'], movement_number)

    return {
        'work_exists': True,
        'movement_exists': movement is not None,
        'work': work,
        'movement': movement,
    }


# ============================================================================
# UNLINK / DIRECT MIRROR WRITES
# ============================================================================

def delete_track_metadata(track_id):
    """
    Remove a track's movement links so it can be classified again

    A queued track goes back to pending so the match queue picks it up.
    Work, movement and recording rows are left in place.
    """
    if not track_id:
        raise ValueError("Track id is required")

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            removed = catalog_db.unlink_track(cur, track_id)
            requeued = catalog_db.set_queue_status(cur, [track_id], 'pending')
        conn.commit()

    logger.info(f"Unlinked track {track_id} ({removed} movement link(s), requeued: {bool(requeued)})")
    return {
        'success': True,
        'removed': removed,
        'message': 'Track-movement link removed, ready for re-analysis',
    }


def add_album_to_database(album):
    album_id = _require(album, 'id', 'Album id')
    name = album.get('name') or ''

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            catalog_db.upsert_album(
                cur, album_id, name,
                year=release_year(album.get('release_date')),
                popularity=album.get('popularity') or None,
                images=album.get('images') or [],
                refresh_all=True,
            )
        conn.commit()

    return {'success': True, 'message': f'Added album "{name}" to database'}


def add_artists_to_database(artists):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            for artist in artists or []:
                catalog_db.upsert_artist_name(cur, _require(artist, 'id', 'Artist id'), artist.get('name') or '')
        conn.commit()

    return {'success': True, 'message': f'Added {len(artists or [])} artist(s) to database'}


def add_track_to_database(track):
    track_id = _require(track, 'id', 'Track id')
    name = track.get('name') or ''

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            catalog_db.upsert_track(
                cur, track_id, name,
                track_number=track.get('track_number'),
                duration_ms=track.get('duration_ms'),
                popularity=track.get('popularity'),
                album_id=track.get('album_id'),
            )
            catalog_db.insert_track_artists(cur, track_id, [a['id'] for a in track.get('artists') or []])
        conn.commit()

    return {'success': True, 'message': f'Added track "{name}" to database'}


def add_composer(spotify_artist_id, name):
    """Create a composer for a Spotify artist (returns the existing one if linked)"""
    spotify_artist_id = safe_strip(spotify_artist_id)
    name = safe_strip(name)
    if not spotify_artist_id or not name:
        raise ValueError("Spotify artist id and name are required")

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            existing = catalog_db.find_composer_by_artist_id(cur, spotify_artist_id)
            if existing:
                return {'success': True, 'composer': existing}

            catalog_db.insert_artist_if_absent(cur, spotify_artist_id, name)
            composer = catalog_db.insert_composer(cur, name, spotify_artist_id=spotify_artist_id)
        conn.commit()

    logger.info(f"Added composer {composer['id']}: {name}")
    return {'success': True, 'composer': composer}
