import pytest

import catalog_db
import catalog_ingest
import composer_management
import track_lookup
from composer_management import NotFoundError
from conftest import make_payload


# ============================================================================
# COMPOSERS
# ============================================================================

def test_import_links_existing_composer_by_name(catalog):
    existing = catalog.insert_composer(None, 'Johann Sebastian Bach', death_year=1750)

    composer = composer_management.create_composer_with_spotify({
        'name': 'Johann Sebastian Bach',
        'spotify_artist_id': 'artist-bach',
        'birth_year': 1685,
        'popularity': 70,
    })

    assert composer['id'] == existing['id']
    assert composer['spotify_artist_id'] == 'artist-bach'
    assert composer['birth_year'] == 1685
    assert composer['death_year'] == 1750
    assert catalog.artists['artist-bach']['popularity'] == 70


def test_import_returns_composer_already_on_artist(catalog):
    linked = catalog.insert_composer(None, 'Bach', spotify_artist_id='artist-bach')

    composer = composer_management.create_composer_with_spotify(
        {'name': 'Johann Sebastian Bach', 'spotify_artist_id': 'artist-bach'})

    assert composer['id'] == linked['id']
    assert composer['name'] == 'Bach'


def test_import_creates_new_composer(catalog):
    composer = composer_management.create_composer_with_spotify(
        {'name': 'Arvo Pärt', 'spotify_artist_id': 'artist-part', 'birth_year': '1935'})

    assert composer['birth_year'] == 1935
    assert len(catalog.composers) == 1


def test_import_requires_name_and_artist(catalog):
    with pytest.raises(ValueError):
        composer_management.create_composer_with_spotify({'name': 'Bach'})


def test_update_composer_partial(catalog):
    composer = catalog.insert_composer(None, 'Bach', birth_year=1685)

    updated = composer_management.update_composer_details(composer['id'], {'death_year': 1750})

    assert updated['birth_year'] == 1685
    assert updated['death_year'] == 1750


def test_update_missing_composer(catalog):
    with pytest.raises(NotFoundError, match='Composer not found'):
        composer_management.update_composer_details(12, {'name': 'Nobody'})


# ============================================================================
# TRACK LOOKUP
# ============================================================================

TRACK_ID = '4uLU6hMCjMI75M1A2tKUQC'


class FakeClient:
    def __init__(self, tracks):
        self.tracks = tracks

    def get_tracks(self, track_ids):
        return [t for t in self.tracks if t['id'] in track_ids]


def test_lookup_annotates_catalog_state(catalog, monkeypatch):
    saved = catalog_ingest.save_track_with_metadata(make_payload(track_id=TRACK_ID))
    monkeypatch.setattr(catalog_db, 'existing_track_ids', lambda cur, ids: {TRACK_ID})
    monkeypatch.setattr(catalog_db, 'existing_album_ids', lambda cur, ids: set())
    monkeypatch.setattr(catalog_db, 'artist_composer_map',
                        lambda cur, ids: {'artist-bach': saved['composer_id'], 'artist-pianist': None})
    monkeypatch.setattr(catalog_db, 'load_track_catalog_rows', lambda cur, ids: [{
        'spotify_track_id': TRACK_ID, 'movement_id': saved['movement_id'], 'movement_number': 1,
        'movement_title': 'Allegro', 'work_id': saved['work_id'], 'work_title': 'Keyboard Concerto No. 1',
        'work_nickname': None, 'catalog_system': 'BWV', 'catalog_number': '1052', 'year_composed': None,
        'form': 'concerto', 'composer_id': saved['composer_id'], 'composer_name': 'Johann Sebastian Bach',
        'recording_id': saved['recording_id'],
    }])

    spotify_track = {
        'id': TRACK_ID,
        'name': 'Keyboard Concerto No. 1 in D Minor, BWV 1052: I. Allegro',
        'album': {'id': 'album-x', 'name': 'Concertos'},
        'artists': [{'id': 'artist-bach', 'name': 'Johann Sebastian Bach'},
                    {'id': 'artist-pianist', 'name': 'Glenn Gould'},
                    {'id': 'artist-new', 'name': 'Orchestra'}],
    }

    result = track_lookup.get_track_metadata(FakeClient([spotify_track]), f'spotify:track:{TRACK_ID}')

    assert result['in_spotify_tracks_table'] is True
    assert result['album']['in_spotify_albums_table'] is False
    bach, pianist, orchestra = result['artists']
    assert bach['in_composers_table'] and bach['composer_id'] == saved['composer_id']
    assert pianist['in_spotify_artists_table'] and not pianist['in_composers_table']
    assert not orchestra['in_spotify_artists_table']
    assert result['db_data']['works'][0]['catalog_number'] == '1052'
    assert result['db_data']['recording_ids'] == [saved['recording_id']]


def test_lookup_unknown_track_is_none(catalog, monkeypatch):
    for name in ('existing_track_ids', 'existing_album_ids'):
        monkeypatch.setattr(catalog_db, name, lambda cur, ids: set())
    monkeypatch.setattr(catalog_db, 'artist_composer_map', lambda cur, ids: {})
    monkeypatch.setattr(catalog_db, 'load_track_catalog_rows', lambda cur, ids: [])

    assert track_lookup.get_track_metadata(FakeClient([]), TRACK_ID) is None


def test_lookup_rejects_bad_uri():
    with pytest.raises(ValueError, match='Invalid Spotify track URI'):
        track_lookup.get_batch_track_metadata(FakeClient([]), ['spotify:album:123'])
