"""
Shared fixtures

The environment is set before any backend module is imported: auth_utils
refuses to load without a session secret.
"""

import os
import tempfile
from contextlib import contextmanager

os.environ.setdefault('SESSION_SECRET', 'test-session-secret')
os.environ.setdefault('SPOTIFY_CLIENT_ID', 'test-client-id')
os.environ.setdefault('SPOTIFY_CLIENT_SECRET', 'test-client-secret')
os.environ.setdefault('CACHE_DIR', tempfile.mkdtemp(prefix='prelude-cache-'))

import pytest

import catalog_db


# ============================================================================
# FAKE DATABASE
# ============================================================================

class FakeCursor:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeConnection:
    def __init__(self):
        self.commits = 0

    def cursor(self):
        return FakeCursor()

    def commit(self):
        self.commits += 1

    def rollback(self):
        pass


@contextmanager
def fake_db_connection():
    yield FakeConnection()


class FakeCatalog:
    """
    In-memory stand-in for the catalog_db cursor functions.

    Rows are plain dicts shaped like the real RETURNING columns.
    """

    def __init__(self):
        self.albums = {}
        self.artists = {}
        self.tracks = {}
        self.track_artists = set()
        self.composers = {}
        self.works = {}
        self.movements = {}
        self.recordings = {}
        self.links = set()
        self.queue = {}
        self._ids = {}

    def _next_id(self, table):
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    # Spotify mirror

    def upsert_album(self, cur, album_id, title, year=None, popularity=None, images=None, refresh_all=False):
        self.albums[album_id] = {'spotify_id': album_id, 'title': title, 'year': year,
                                 'popularity': popularity, 'images': images or []}

    def insert_artist_if_absent(self, cur, artist_id, name, popularity=None, images=None):
        self.artists.setdefault(artist_id, {'spotify_id': artist_id, 'name': name,
                                            'popularity': popularity, 'images': images or []})

    def upsert_artist(self, cur, artist_id, name, popularity=None, images=None):
        self.artists[artist_id] = {'spotify_id': artist_id, 'name': name,
                                   'popularity': popularity, 'images': images or []}

    def upsert_artist_name(self, cur, artist_id, name):
        self.artists.setdefault(artist_id, {'spotify_id': artist_id, 'popularity': None, 'images': []})
        self.artists[artist_id]['name'] = name

    def track_exists(self, cur, track_id):
        return track_id in self.tracks

    def insert_track(self, cur, track_id, title, track_number=None, duration_ms=None,
                     popularity=None, album_id=None):
        self.tracks.setdefault(track_id, {'spotify_id': track_id, 'title': title,
                                          'track_number': track_number, 'spotify_album_id': album_id})

    def insert_track_artists(self, cur, track_id, artist_ids):
        for artist_id in artist_ids:
            self.track_artists.add((track_id, artist_id))

    # Composers

    def find_composer_by_id(self, cur, composer_id):
        return self.composers.get(composer_id)

    def find_composer_by_artist_id(self, cur, artist_id):
        return next((c for c in self.composers.values() if c['spotify_artist_id'] == artist_id), None)

    def find_composer_by_name(self, cur, name):
        return next((c for c in self.composers.values() if c['name'].lower() == name.lower()), None)

    def insert_composer(self, cur, name, spotify_artist_id=None, birth_year=None,
                        death_year=None, biography=None):
        composer_id = self._next_id('composer')
        self.composers[composer_id] = {'id': composer_id, 'name': name, 'birth_year': birth_year,
                                       'death_year': death_year, 'biography': biography,
                                       'spotify_artist_id': spotify_artist_id}
        return dict(self.composers[composer_id])

    def update_composer(self, cur, composer_id, fields):
        if composer_id not in self.composers:
            return None
        self.composers[composer_id].update(
            {k: v for k, v in fields.items() if k in catalog_db.COMPOSER_UPDATABLE})
        return dict(self.composers[composer_id])

    # Works

    def find_work_by_id(self, cur, work_id):
        return self.works.get(work_id)

    def find_work_by_catalog(self, cur, composer_id, catalog_system, catalog_number):
        return next((w for w in sorted(self.works.values(), key=lambda w: w['id'])
                     if w['composer_id'] == composer_id and w['catalog_system'] == catalog_system
                     and w['catalog_number'] == catalog_number), None)

    def find_work_by_title(self, cur, composer_id, title):
        return next((w for w in sorted(self.works.values(), key=lambda w: w['id'])
                     if w['composer_id'] == composer_id and w['title'] == title), None)

    def find_works_by_catalog_pairs(self, cur, pairs):
        wanted = set(pairs)
        return [dict(w) for w in sorted(self.works.values(), key=lambda w: w['id'])
                if (w['catalog_system'], w['catalog_number']) in wanted]

    def insert_work(self, cur, composer_id, title, nickname=None, catalog_system=None,
                    catalog_number=None, year_composed=None, form=None):
        work_id = self._next_id('work')
        self.works[work_id] = {'id': work_id, 'composer_id': composer_id, 'title': title,
                               'nickname': nickname, 'catalog_system': catalog_system,
                               'catalog_number': catalog_number, 'year_composed': year_composed,
                               'form': form}
        return dict(self.works[work_id])

    def update_work(self, cur, work_id, fields):
        if work_id not in self.works:
            return None
        self.works[work_id].update({k: v for k, v in fields.items() if k in catalog_db.WORK_UPDATABLE})
        return dict(self.works[work_id])

    # Movements

    def find_movement(self, cur, work_id, number):
        return next((m for m in self.movements.values()
                     if m['work_id'] == work_id and m['number'] == number), None)

    def find_movement_by_id(self, cur, movement_id):
        return self.movements.get(movement_id)

    def list_movements(self, cur, work_id):
        return sorted((dict(m) for m in self.movements.values() if m['work_id'] == work_id),
                      key=lambda m: m['number'])

    def movements_for_works(self, cur, work_ids):
        return [dict(m) for m in self.movements.values() if m['work_id'] in work_ids]

    def insert_movement(self, cur, work_id, number, title=None):
        movement_id = self._next_id('movement')
        self.movements[movement_id] = {'id': movement_id, 'work_id': work_id,
                                       'number': number, 'title': title}
        return dict(self.movements[movement_id])

    def update_movement(self, cur, movement_id, fields):
        if movement_id not in self.movements:
            return None
        self.movements[movement_id].update(
            {k: v for k, v in fields.items() if k in catalog_db.MOVEMENT_UPDATABLE})
        return dict(self.movements[movement_id])

    def count_movement_tracks(self, cur, movement_id):
        return sum(1 for _, m in self.links if m == movement_id)

    def delete_movement(self, cur, movement_id):
        return 1 if self.movements.pop(movement_id, None) else 0

    # Recordings & links

    def find_recording(self, cur, album_id, work_id):
        return self.recordings.get((album_id, work_id))

    def insert_recording(self, cur, album_id, work_id):
        recording = {'id': f"rec-{self._next_id('recording')}", 'spotify_album_id': album_id,
                     'work_id': work_id, 'popularity': None}
        self.recordings[(album_id, work_id)] = recording
        return dict(recording)

    def link_track_movement(self, cur, track_id, movement_id, start_ms=None, end_ms=None):
        if (track_id, movement_id) in self.links:
            return False
        self.links.add((track_id, movement_id))
        return True

    def unlink_track(self, cur, track_id):
        removed = {link for link in self.links if link[0] == track_id}
        self.links -= removed
        return len(removed)

    def classified_track_ids(self, cur, track_ids):
        return {t for t, _ in self.links if t in track_ids}

    # Match queue

    def queued_track_ids(self, cur, track_ids):
        return {t for t in track_ids if t in self.queue}

    def insert_queue_items(self, cur, track_ids, submitted_by):
        added = 0
        for track_id in track_ids:
            if track_id not in self.queue:
                self.queue[track_id] = {'spotify_id': track_id, 'submitted_by': submitted_by,
                                        'status': 'pending', 'submitted_at': len(self.queue)}
                added += 1
        return added

    def count_pending_queue(self, cur):
        return sum(1 for q in self.queue.values() if q['status'] == 'pending')

    def list_pending_queue(self, cur, limit, offset):
        pending = sorted((q for q in self.queue.values() if q['status'] == 'pending'),
                         key=lambda q: (q['submitted_at'], q['spotify_id']))
        return [dict(q) for q in pending[offset:offset + limit]]

    def set_queue_status(self, cur, track_ids, status):
        updated = 0
        for track_id in track_ids:
            if track_id in self.queue:
                self.queue[track_id]['status'] = status
                updated += 1
        return updated


FAKED_FUNCTIONS = [
    name for name in dir(FakeCatalog)
    if not name.startswith('_') and callable(getattr(FakeCatalog, name))
]

DB_USING_MODULES = [
    'catalog_ingest',
    'match_queue',
    'work_management',
    'composer_management',
    'track_lookup',
    'spotify_search',
    'routes.admin',
]


@pytest.fixture
def catalog(monkeypatch):
    """Swap catalog_db and every get_db_connection for the in-memory fake"""
    import importlib

    fake = FakeCatalog()
    for name in FAKED_FUNCTIONS:
        monkeypatch.setattr(catalog_db, name, getattr(fake, name))
    for module_name in DB_USING_MODULES:
        module = importlib.import_module(module_name)
        monkeypatch.setattr(module, 'get_db_connection', fake_db_connection)
    return fake


# ============================================================================
# SAVE PAYLOADS
# ============================================================================

BACH = {'id': 'artist-bach', 'name': 'Johann Sebastian Bach'}
PIANIST = {'id': 'artist-pianist', 'name': 'Glenn Gould'}


def make_payload(track_id='track-1', track_number=1, formal_name='Keyboard Concerto No. 1 in D minor',
                 catalog_system='BWV', catalog_number='1052', movement_number=None,
                 movement_name='Allegro', album_id='album-1', composer_artist_id=BACH['id']):
    return {
        'album': {'id': album_id, 'name': 'Bach: Keyboard Concertos', 'release_date': '1999-04-01',
                  'popularity': 40, 'images': []},
        'track': {'id': track_id, 'name': f'Track {track_number}', 'duration_ms': 300000,
                  'track_number': track_number, 'popularity': 30},
        'artists': [dict(BACH), dict(PIANIST)],
        'metadata': {
            'composer_artist_id': composer_artist_id,
            'composer_name': BACH['name'],
            'formal_name': formal_name,
            'nickname': None,
            'catalog_system': catalog_system,
            'catalog_number': catalog_number,
            'form': 'concerto',
            'movement_number': movement_number,
            'movement_name': movement_name,
            'year_composed': None,
        },
    }


@pytest.fixture
def payload_factory():
    return make_payload
