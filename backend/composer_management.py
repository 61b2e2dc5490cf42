"""
Composer management for the admin dashboard
"""

import logging

import catalog_db
from db_utils import get_db_connection
from utils.helpers import optional_int, safe_strip

logger = logging.getLogger(__name__)


class NotFoundError(Exception):
    """Raised when an admin edit targets a row that does not exist"""
    pass


class ConflictError(Exception):
    """Raised when an admin edit would break a catalog invariant"""
    pass


def create_composer_with_spotify(data):
    """
    Create (or link) a composer for a Spotify artist

    Resolution order:
    1. A composer already linked to the artist is returned unchanged
    2. The artist mirror row is written/refreshed
    3. A composer with the same name gets the artist id (and any missing years)
    4. Otherwise a new composer is created

    Args:
        data: name, spotify_artist_id, birth_year, death_year, popularity, images
    """
    name = safe_strip(data.get('name'))
    artist_id = safe_strip(data.get('spotify_artist_id'))
    if not name or not artist_id:
        raise ValueError("Composer name and Spotify artist id are required")
    birth_year = optional_int(data.get('birth_year'))
    death_year = optional_int(data.get('death_year'))

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            existing = catalog_db.find_composer_by_artist_id(cur, artist_id)
            if existing:
                return existing

            catalog_db.upsert_artist(cur, artist_id, name,
                                     popularity=data.get('popularity'),
                                     images=data.get('images'))

            by_name = catalog_db.find_composer_by_name(cur, name)
            if by_name:
                composer = catalog_db.update_composer(cur, by_name['id'], {
                    'spotify_artist_id': artist_id,
                    'birth_year': birth_year if birth_year is not None else by_name['birth_year'],
                    'death_year': death_year if death_year is not None else by_name['death_year'],
                })
                logger.info(f"Linked composer {composer['id']} ({name}) to artist {artist_id}")
            else:
                composer = catalog_db.insert_composer(
                    cur, name, spotify_artist_id=artist_id,
                    birth_year=birth_year, death_year=death_year)
                logger.info(f"Created composer {composer['id']}: {name}")
        conn.commit()

    return composer


def search_composers(query):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            return catalog_db.search_composers(cur, (query or '').strip(), limit=50)


def get_composers_with_stats():
    """All composers with work counts and their Spotify artist imagery"""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            return catalog_db.list_composers_with_stats(cur)


def update_composer_details(composer_id, data):
    """
    Partial update; only keys present in data are written

    Raises:
        NotFoundError: No such composer
    """
    fields = {}
    if 'name' in data:
        fields['name'] = safe_strip(data['name'])
        if not fields['name']:
            raise ValueError("Composer name cannot be empty")
    for key in ('birth_year', 'death_year'):
        if key in data:
            fields[key] = optional_int(data[key])
    if 'biography' in data:
        fields['biography'] = safe_strip(data['biography'])

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            composer = catalog_db.update_composer(cur, composer_id, fields)
            if not composer:
                raise NotFoundError('Composer not found')
        conn.commit()

    return composer
