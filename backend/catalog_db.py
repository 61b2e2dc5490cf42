"""
Catalog Database Operations

Single-statement SQL helpers for the classical catalog and the Spotify
mirror tables. Every function takes an open cursor; callers own the
connection and commit after each logical step.
"""

import logging

from psycopg.types.json import Jsonb

logger = logging.getLogger(__name__)

COMPOSER_COLUMNS = "id, name, birth_year, death_year, biography, spotify_artist_id"
WORK_COLUMNS = "id, composer_id, title, nickname, catalog_system, catalog_number, year_composed, form"
MOVEMENT_COLUMNS = "id, work_id, number, title"

COMPOSER_UPDATABLE = ('name', 'birth_year', 'death_year', 'biography', 'spotify_artist_id')
WORK_UPDATABLE = ('title', 'nickname', 'catalog_system', 'catalog_number', 'year_composed', 'form')
MOVEMENT_UPDATABLE = ('number', 'title')


def _set_clause(fields, allowed):
    """Build 'col = %s, ...' for whitelisted columns only"""
    columns = [c for c in allowed if c in fields]
    return ', '.join(f"{c} = %s" for c in columns), [fields[c] for c in columns]


def _dicts(rows):
    return [dict(row) for row in rows]


def _one(row):
    return dict(row) if row else None


# ============================================================================
# SPOTIFY MIRROR
# ============================================================================

def upsert_album(cur, album_id, title, year=None, popularity=None, images=None, refresh_all=False):
    """
    Insert the album, or refresh it if it is already mirrored

    Only title and popularity are refreshed unless refresh_all is set, in
    which case year and images are overwritten too.
    """
    refreshed = "title = EXCLUDED.title, popularity = EXCLUDED.popularity"
    if refresh_all:
        refreshed += ", year = EXCLUDED.year, images = EXCLUDED.images"
    cur.execute(f"""
        INSERT INTO spotify_album (spotify_id, title, year, popularity, images)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (spotify_id) DO UPDATE
        SET {refreshed}
    """, (album_id, title, year, popularity, Jsonb(images) if images is not None else None))


def insert_artist_if_absent(cur, artist_id, name, popularity=None, images=None):
    cur.execute("""
        INSERT INTO spotify_artist (spotify_id, name, popularity, images)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (spotify_id) DO NOTHING
    """, (artist_id, name, popularity, Jsonb(images) if images is not None else None))


def upsert_artist(cur, artist_id, name, popularity=None, images=None):
    cur.execute("""
        INSERT INTO spotify_artist (spotify_id, name, popularity, images)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (spotify_id) DO UPDATE
        SET name = EXCLUDED.name,
            popularity = EXCLUDED.popularity,
            images = EXCLUDED.images
    """, (artist_id, name, popularity, Jsonb(images) if images is not None else None))


def upsert_artist_name(cur, artist_id, name):
    cur.execute("""
        INSERT INTO spotify_artist (spotify_id, name)
        VALUES (%s, %s)
        ON CONFLICT (spotify_id) DO UPDATE SET name = EXCLUDED.name
    """, (artist_id, name))


def update_artist_metadata(cur, artist_id, name, popularity, images):
    cur.execute("""
        UPDATE spotify_artist
        SET name = %s, popularity = %s, images = %s
        WHERE spotify_id = %s
    """, (name, popularity, Jsonb(images or []), artist_id))


def list_artists_missing_metadata(cur):
    cur.execute("""
        SELECT spotify_id, name
        FROM spotify_artist
        WHERE popularity IS NULL OR images IS NULL
        ORDER BY name
    """)
    return _dicts(cur.fetchall())


def track_exists(cur, track_id):
    cur.execute("SELECT 1 FROM spotify_track WHERE spotify_id = %s", (track_id,))
    return cur.fetchone() is not None


def insert_track(cur, track_id, title, track_number=None, duration_ms=None,
                 popularity=None, album_id=None):
    cur.execute("""
        INSERT INTO spotify_track
            (spotify_id, title, track_number, duration_ms, popularity, spotify_album_id)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (spotify_id) DO NOTHING
    """, (track_id, title, track_number, duration_ms, popularity, album_id))


def upsert_track(cur, track_id, title, track_number=None, duration_ms=None,
                 popularity=None, album_id=None):
    cur.execute("""
        INSERT INTO spotify_track
            (spotify_id, title, track_number, duration_ms, popularity, spotify_album_id)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (spotify_id) DO UPDATE
        SET title = EXCLUDED.title,
            track_number = EXCLUDED.track_number,
            duration_ms = EXCLUDED.duration_ms,
            popularity = EXCLUDED.popularity,
            spotify_album_id = EXCLUDED.spotify_album_id
    """, (track_id, title, track_number, duration_ms, popularity, album_id))


def insert_track_artists(cur, track_id, artist_ids):
    for artist_id in artist_ids:
        cur.execute("""
            INSERT INTO track_artists (spotify_track_id, spotify_artist_id)
            VALUES (%s, %s)
            ON CONFLICT DO NOTHING
        """, (track_id, artist_id))


def existing_track_ids(cur, track_ids):
    if not track_ids:
        return set()
    cur.execute("SELECT spotify_id FROM spotify_track WHERE spotify_id = ANY(%s)", (list(track_ids),))
    return {row['spotify_id'] for row in cur.fetchall()}


def existing_album_ids(cur, album_ids):
    if not album_ids:
        return set()
    cur.execute("SELECT spotify_id FROM spotify_album WHERE spotify_id = ANY(%s)", (list(album_ids),))
    return {row['spotify_id'] for row in cur.fetchall()}


def artist_composer_map(cur, artist_ids):
    """
    Mirror status of artists

    Returns:
        {artist_id: composer_id or None} for artists present in spotify_artist
    """
    if not artist_ids:
        return {}
    cur.execute("""
        SELECT a.spotify_id, c.id AS composer_id
        FROM spotify_artist a
        LEFT JOIN composer c ON c.spotify_artist_id = a.spotify_id
        WHERE a.spotify_id = ANY(%s)
    """, (list(artist_ids),))
    return {row['spotify_id']: row['composer_id'] for row in cur.fetchall()}


# ============================================================================
# COMPOSERS
# ============================================================================

def find_composer_by_id(cur, composer_id):
    cur.execute(f"SELECT {COMPOSER_COLUMNS} FROM composer WHERE id = %s", (composer_id,))
    return _one(cur.fetchone())


def find_composer_by_artist_id(cur, artist_id):
    cur.execute(f"SELECT {COMPOSER_COLUMNS} FROM composer WHERE spotify_artist_id = %s", (artist_id,))
    return _one(cur.fetchone())


def find_composer_by_name(cur, name):
    cur.execute(f"""
        SELECT {COMPOSER_COLUMNS} FROM composer
        WHERE LOWER(name) = LOWER(%s)
        ORDER BY id
        LIMIT 1
    """, (name,))
    return _one(cur.fetchone())


def composers_by_lower_names(cur, names):
    """{lower-cased name: composer row} for the given names"""
    if not names:
        return {}
    cur.execute(f"""
        SELECT {COMPOSER_COLUMNS} FROM composer
        WHERE LOWER(name) = ANY(%s)
    """, ([n.lower() for n in names],))
    return {row['name'].lower(): dict(row) for row in cur.fetchall()}


def composers_by_artist_ids(cur, artist_ids):
    if not artist_ids:
        return {}
    cur.execute(f"""
        SELECT {COMPOSER_COLUMNS} FROM composer
        WHERE spotify_artist_id = ANY(%s)
    """, (list(artist_ids),))
    return {row['spotify_artist_id']: dict(row) for row in cur.fetchall()}


def insert_composer(cur, name, spotify_artist_id=None, birth_year=None,
                    death_year=None, biography=None):
    cur.execute(f"""
        INSERT INTO composer (name, spotify_artist_id, birth_year, death_year, biography)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING {COMPOSER_COLUMNS}
    """, (name, spotify_artist_id, birth_year, death_year, biography))
    return dict(cur.fetchone())


def update_composer(cur, composer_id, fields):
    """Partial update; returns the updated row or None if it does not exist"""
    set_clause, params = _set_clause(fields, COMPOSER_UPDATABLE)
    if not set_clause:
        return find_composer_by_id(cur, composer_id)
    cur.execute(f"""
        UPDATE composer
        SET {set_clause}
        WHERE id = %s
        RETURNING {COMPOSER_COLUMNS}
    """, params + [composer_id])
    return _one(cur.fetchone())


def search_composers(cur, query, limit=50):
    cur.execute(f"""
        SELECT {COMPOSER_COLUMNS} FROM composer
        WHERE name ILIKE %s
        ORDER BY name
        LIMIT %s
    """, (f"%{query}%", limit))
    return _dicts(cur.fetchall())


def list_composers_with_stats(cur):
    cur.execute("""
        SELECT
            c.id, c.name, c.birth_year, c.death_year, c.biography, c.spotify_artist_id,
            a.popularity AS spotify_popularity,
            a.images AS spotify_images,
            COUNT(w.id) AS work_count
        FROM composer c
        LEFT JOIN spotify_artist a ON a.spotify_id = c.spotify_artist_id
        LEFT JOIN work w ON w.composer_id = c.id
        GROUP BY c.id, a.popularity, a.images
        ORDER BY c.name
    """)
    return _dicts(cur.fetchall())


# ============================================================================
# WORKS
# ============================================================================

def find_work_by_id(cur, work_id):
    cur.execute(f"SELECT {WORK_COLUMNS} FROM work WHERE id = %s", (work_id,))
    return _one(cur.fetchone())


def find_work_by_catalog(cur, composer_id, catalog_system, catalog_number):
    cur.execute(f"""
        SELECT {WORK_COLUMNS} FROM work
        WHERE composer_id = %s
          AND catalog_system IS NOT DISTINCT FROM %s
          AND catalog_number = %s
        ORDER BY id
        LIMIT 1
    """, (composer_id, catalog_system, catalog_number))
    return _one(cur.fetchone())


def find_work_by_title(cur, composer_id, title):
    cur.execute(f"""
        SELECT {WORK_COLUMNS} FROM work
        WHERE composer_id = %s AND title = %s
        ORDER BY id
        LIMIT 1
    """, (composer_id, title))
    return _one(cur.fetchone())


def find_works_by_catalog_pairs(cur, pairs):
    """
    Works matching any (catalog_system, catalog_number) pair, for any composer

    Returns:
        List of work rows
    """
    if not pairs:
        return []
    systems = [p[0] for p in pairs]
    numbers = [p[1] for p in pairs]
    cur.execute(f"""
        SELECT {WORK_COLUMNS} FROM work
        WHERE (catalog_system, catalog_number) IN (
            SELECT * FROM UNNEST(%s::text[], %s::text[])
        )
        ORDER BY id
    """, (systems, numbers))
    return _dicts(cur.fetchall())


def insert_work(cur, composer_id, title, nickname=None, catalog_system=None,
                catalog_number=None, year_composed=None, form=None):
    cur.execute(f"""
        INSERT INTO work
            (composer_id, title, nickname, catalog_system, catalog_number, year_composed, form)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING {WORK_COLUMNS}
    """, (composer_id, title, nickname, catalog_system, catalog_number, year_composed, form))
    return dict(cur.fetchone())


def update_work(cur, work_id, fields):
    set_clause, params = _set_clause(fields, WORK_UPDATABLE)
    if not set_clause:
        return find_work_by_id(cur, work_id)
    cur.execute(f"""
        UPDATE work
        SET {set_clause}
        WHERE id = %s
        RETURNING {WORK_COLUMNS}
    """, params + [work_id])
    return _one(cur.fetchone())


def search_works(cur, query=None, composer_id=None, catalog_system=None, limit=50, offset=0):
    """
    Filtered, paged work listing with composer name and counts

    Returns:
        (rows, total)
    """
    conditions = []
    params = []
    if query:
        conditions.append("(w.title ILIKE %s OR w.nickname ILIKE %s OR w.catalog_number ILIKE %s)")
        params.extend([f"%{query}%"] * 3)
    if composer_id is not None:
        conditions.append("w.composer_id = %s")
        params.append(composer_id)
    if catalog_system:
        conditions.append("w.catalog_system = %s")
        params.append(catalog_system)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    cur.execute(f"SELECT COUNT(*) AS total FROM work w {where}", params)
    total = cur.fetchone()['total']

    cur.execute(f"""
        SELECT
            w.id, w.composer_id, w.title, w.nickname, w.catalog_system,
            w.catalog_number, w.year_composed, w.form,
            c.name AS composer_name,
            (SELECT COUNT(*) FROM movement m WHERE m.work_id = w.id) AS movement_count,
            (SELECT COUNT(*) FROM recording r WHERE r.work_id = w.id) AS recording_count
        FROM work w
        JOIN composer c ON c.id = w.composer_id
        {where}
        ORDER BY c.name, w.catalog_system NULLS LAST, w.catalog_number NULLS LAST, w.title
        LIMIT %s OFFSET %s
    """, params + [limit, offset])
    return _dicts(cur.fetchall()), total


def list_work_recordings(cur, work_id):
    cur.execute("""
        SELECT r.id, r.spotify_album_id, r.popularity,
               a.title AS album_title, a.year AS album_year, a.images AS album_images
        FROM recording r
        LEFT JOIN spotify_album a ON a.spotify_id = r.spotify_album_id
        WHERE r.work_id = %s
        ORDER BY a.year NULLS LAST, a.title
    """, (work_id,))
    return _dicts(cur.fetchall())


# ============================================================================
# MOVEMENTS
# ============================================================================

def find_movement(cur, work_id, number):
    cur.execute(f"SELECT {MOVEMENT_COLUMNS} FROM movement WHERE work_id = %s AND number = %s",
                (work_id, number))
    return _one(cur.fetchone())


def find_movement_by_id(cur, movement_id):
    cur.execute(f"SELECT {MOVEMENT_COLUMNS} FROM movement WHERE id = %s", (movement_id,))
    return _one(cur.fetchone())


def list_movements(cur, work_id):
    cur.execute(f"""
        SELECT {MOVEMENT_COLUMNS} FROM movement
        WHERE work_id = %s
        ORDER BY number
    """, (work_id,))
    return _dicts(cur.fetchall())


def movements_for_works(cur, work_ids):
    if not work_ids:
        return []
    cur.execute(f"""
        SELECT {MOVEMENT_COLUMNS} FROM movement
        WHERE work_id = ANY(%s)
        ORDER BY work_id, number
    """, (list(work_ids),))
    return _dicts(cur.fetchall())


def insert_movement(cur, work_id, number, title=None):
    cur.execute(f"""
        INSERT INTO movement (work_id, number, title)
        VALUES (%s, %s, %s)
        RETURNING {MOVEMENT_COLUMNS}
    """, (work_id, number, title))
    return dict(cur.fetchone())


def update_movement(cur, movement_id, fields):
    set_clause, params = _set_clause(fields, MOVEMENT_UPDATABLE)
    if not set_clause:
        return find_movement_by_id(cur, movement_id)
    cur.execute(f"""
        UPDATE movement
        SET {set_clause}
        WHERE id = %s
        RETURNING {MOVEMENT_COLUMNS}
    """, params + [movement_id])
    return _one(cur.fetchone())


def count_movement_tracks(cur, movement_id):
    cur.execute("SELECT COUNT(*) AS count FROM track_movement WHERE movement_id = %s", (movement_id,))
    return cur.fetchone()['count']


def delete_movement(cur, movement_id):
    cur.execute("DELETE FROM movement WHERE id = %s", (movement_id,))
    return cur.rowcount


# ============================================================================
# RECORDINGS & TRACK LINKS
# ============================================================================

def find_recording(cur, album_id, work_id):
    cur.execute("""
        SELECT id, spotify_album_id, work_id, popularity
        FROM recording
        WHERE spotify_album_id = %s AND work_id = %s
    """, (album_id, work_id))
    return _one(cur.fetchone())


def insert_recording(cur, album_id, work_id):
    cur.execute("""
        INSERT INTO recording (spotify_album_id, work_id)
        VALUES (%s, %s)
        RETURNING id, spotify_album_id, work_id, popularity
    """, (album_id, work_id))
    return dict(cur.fetchone())


def link_track_movement(cur, track_id, movement_id, start_ms=None, end_ms=None):
    """Returns True when a new link row was written"""
    cur.execute("""
        INSERT INTO track_movement (spotify_track_id, movement_id, start_ms, end_ms)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT DO NOTHING
    """, (track_id, movement_id, start_ms, end_ms))
    return cur.rowcount > 0


def unlink_track(cur, track_id):
    cur.execute("DELETE FROM track_movement WHERE spotify_track_id = %s", (track_id,))
    return cur.rowcount


def classified_track_ids(cur, track_ids):
    """Subset of track_ids that already have a movement link"""
    if not track_ids:
        return set()
    cur.execute("""
        SELECT DISTINCT spotify_track_id FROM track_movement
        WHERE spotify_track_id = ANY(%s)
    """, (list(track_ids),))
    return {row['spotify_track_id'] for row in cur.fetchall()}


def load_track_catalog_rows(cur, track_ids):
    """
    Catalog rows reachable from each track's movement links

    Returns:
        One row per (track, movement) link with movement, work, composer and
        the recording of the track's album
    """
    if not track_ids:
        return []
    cur.execute("""
        SELECT
            tm.spotify_track_id, tm.start_ms, tm.end_ms,
            m.id AS movement_id, m.number AS movement_number, m.title AS movement_title,
            w.id AS work_id, w.title AS work_title, w.nickname AS work_nickname,
            w.catalog_system, w.catalog_number, w.year_composed, w.form,
            c.id AS composer_id, c.name AS composer_name,
            c.birth_year AS composer_birth_year, c.death_year AS composer_death_year,
            r.id AS recording_id
        FROM track_movement tm
        JOIN movement m ON m.id = tm.movement_id
        JOIN work w ON w.id = m.work_id
        JOIN composer c ON c.id = w.composer_id
        LEFT JOIN spotify_track t ON t.spotify_id = tm.spotify_track_id
        LEFT JOIN recording r ON r.work_id = w.id AND r.spotify_album_id = t.spotify_album_id
        WHERE tm.spotify_track_id = ANY(%s)
        ORDER BY tm.spotify_track_id, m.number
    """, (list(track_ids),))
    return _dicts(cur.fetchall())


# ============================================================================
# MATCH QUEUE
# ============================================================================

def queued_track_ids(cur, track_ids):
    if not track_ids:
        return set()
    cur.execute("SELECT spotify_id FROM match_queue WHERE spotify_id = ANY(%s)", (list(track_ids),))
    return {row['spotify_id'] for row in cur.fetchall()}


def insert_queue_items(cur, track_ids, submitted_by):
    """Returns the number of rows actually inserted"""
    added = 0
    for track_id in track_ids:
        cur.execute("""
            INSERT INTO match_queue (spotify_id, submitted_by)
            VALUES (%s, %s)
            ON CONFLICT (spotify_id) DO NOTHING
        """, (track_id, submitted_by))
        added += cur.rowcount
    return added


def count_pending_queue(cur):
    cur.execute("SELECT COUNT(*) AS total FROM match_queue WHERE status = 'pending'")
    return cur.fetchone()['total']


def list_pending_queue(cur, limit, offset):
    cur.execute("""
        SELECT spotify_id, submitted_at, submitted_by, status
        FROM match_queue
        WHERE status = 'pending'
        ORDER BY submitted_at, spotify_id
        LIMIT %s OFFSET %s
    """, (limit, offset))
    return _dicts(cur.fetchall())


def set_queue_status(cur, track_ids, status):
    cur.execute("""
        UPDATE match_queue SET status = %s
        WHERE spotify_id = ANY(%s)
    """, (status, list(track_ids)))
    return cur.rowcount


# ============================================================================
# ADMIN STATS
# ============================================================================

def get_admin_stats(cur):
    cur.execute("""
        SELECT
            (SELECT COUNT(*) FROM spotify_track t
             WHERE NOT EXISTS (
                 SELECT 1 FROM track_movement tm WHERE tm.spotify_track_id = t.spotify_id
             )) AS pending_tracks,
            (SELECT COUNT(*) FROM spotify_artist a
             WHERE NOT EXISTS (
                 SELECT 1 FROM composer c WHERE c.spotify_artist_id = a.spotify_id
             )) AS unlinked_artists,
            (SELECT COUNT(*) FROM work) AS total_works
    """)
    return dict(cur.fetchone())
