"""
Catalog reconciliation against the in-memory catalog
"""

import psycopg
import pytest

import catalog_db
import catalog_ingest
from conftest import BACH, make_payload


def test_saving_same_track_twice_creates_each_row_once(catalog):
    first = catalog_ingest.save_track_with_metadata(make_payload())
    second = catalog_ingest.save_track_with_metadata(make_payload())

    assert first == second
    assert len(catalog.composers) == 1
    assert len(catalog.works) == 1
    assert len(catalog.movements) == 1
    assert len(catalog.recordings) == 1
    assert catalog.links == {('track-1', first['movement_id'])}


def test_save_creates_composer_from_composer_artist(catalog):
    result = catalog_ingest.save_track_with_metadata(make_payload())

    composer = catalog.composers[result['composer_id']]
    assert composer['name'] == BACH['name']
    assert composer['spotify_artist_id'] == BACH['id']
    assert set(catalog.artists) == {'artist-bach', 'artist-pianist'}
    assert catalog.albums['album-1']['year'] == 1999


def test_catalog_entry_identifies_work_regardless_of_title(catalog):
    first = catalog_ingest.save_track_with_metadata(make_payload(formal_name='Keyboard Concerto in D minor'))
    second = catalog_ingest.save_track_with_metadata(
        make_payload(track_id='track-2', track_number=2, movement_number=2,
                     formal_name='Harpsichord Concerto No. 1'))

    assert first['work_id'] == second['work_id']
    assert len(catalog.works) == 1
    # Latest save refreshes the descriptive fields
    assert catalog.works[first['work_id']]['title'] == 'Harpsichord Concerto No. 1'


def test_work_without_catalog_number_is_keyed_by_title(catalog):
    first = catalog_ingest.save_track_with_metadata(
        make_payload(catalog_system=None, catalog_number=None, formal_name='Air'))
    second = catalog_ingest.save_track_with_metadata(
        make_payload(track_id='track-2', catalog_system=None, catalog_number=None, formal_name='Air'))
    third = catalog_ingest.save_track_with_metadata(
        make_payload(track_id='track-3', catalog_system=None, catalog_number=None, formal_name='Gavotte'))

    assert first['work_id'] == second['work_id']
    assert third['work_id'] != first['work_id']


def test_existing_composer_on_artist_is_reused(catalog):
    composer = catalog.insert_composer(None, 'J.S. Bach', spotify_artist_id=BACH['id'])

    result = catalog_ingest.save_track_with_metadata(make_payload())

    assert result['composer_id'] == composer['id']
    assert len(catalog.composers) == 1


def test_recording_is_first_write_wins(catalog):
    first = catalog_ingest.save_track_with_metadata(make_payload(movement_number=1))
    second = catalog_ingest.save_track_with_metadata(
        make_payload(track_id='track-2', track_number=2, movement_number=2, movement_name='Adagio'))

    assert first['recording_id'] == second['recording_id']
    assert first['movement_id'] != second['movement_id']


def test_save_requires_work_title(catalog):
    payload = make_payload(formal_name='  ')
    with pytest.raises(ValueError, match='Work title is required'):
        catalog_ingest.save_track_with_metadata(payload)


def test_movement_number_defaults_to_one(catalog):
    result = catalog_ingest.save_track_with_metadata(make_payload(movement_number=None))
    assert catalog.movements[result['movement_id']]['number'] == 1


# ============================================================================
# MOVEMENT INFERENCE
# ============================================================================

def test_infer_movement_numbers_by_track_order():
    items = [
        make_payload(track_id='b', track_number=5),
        make_payload(track_id='a', track_number=4),
    ]
    assert catalog_ingest.infer_movement_numbers(items) == [2, 1]


def test_infer_movement_numbers_single_track_is_first_movement():
    items = [
        make_payload(track_id='a', track_number=7),
        make_payload(track_id='b', track_number=8, catalog_number='1053'),
    ]
    assert catalog_ingest.infer_movement_numbers(items) == [1, 1]


def test_infer_movement_numbers_keeps_given_number():
    items = [
        make_payload(track_id='a', track_number=1, movement_number=3),
        make_payload(track_id='b', track_number=2),
    ]
    assert catalog_ingest.infer_movement_numbers(items) == [3, 2]


def test_save_album_tracks_numbers_movements_and_collects_errors(catalog):
    unknown_composer = make_payload(track_id='c', track_number=3, catalog_number='999',
                                    composer_artist_id=None)
    unknown_composer['metadata']['composer_name'] = 'Antonio Vivaldi'
    first = make_payload(track_id='a', track_number=1, composer_artist_id=None)
    second = make_payload(track_id='b', track_number=2, composer_artist_id=None)

    result = catalog_ingest.save_album_tracks({'items': [second, first, unknown_composer]})

    assert [s['track_id'] for s in result['saved']] == ['b', 'a']
    assert result['errors'] == [{'track_id': 'c', 'error': 'Could not find composer artist: Antonio Vivaldi'}]
    numbers = sorted(m['number'] for m in catalog.movements.values())
    assert numbers == [1, 2]


# ============================================================================
# PROBES / UNLINK
# ============================================================================

def test_check_works_exist_reports_sorted_movements(catalog):
    catalog_ingest.save_track_with_metadata(make_payload(track_id='a', movement_number=3, movement_name='Allegro'))
    catalog_ingest.save_track_with_metadata(make_payload(track_id='b', movement_number=1, movement_name='Allegro'))

    result = catalog_ingest.check_works_exist([
        {'catalog_system': 'BWV', 'catalog_number': 1052},
        {'catalog_system': 'BWV', 'catalog_number': '1056'},
        {'catalog_system': 'BWV'},
    ])

    assert list(result) == ['BWV:1052']
    assert [m['number'] for m in result['BWV:1052']['movements']] == [1, 3]


def test_check_works_exist_first_work_wins_across_composers(catalog):
    bach = catalog.insert_composer(None, 'Bach')
    other = catalog.insert_composer(None, 'Other')
    first = catalog.insert_work(None, bach['id'], 'Concerto', catalog_system='BWV', catalog_number='1052')
    catalog.insert_work(None, other['id'], 'Arrangement', catalog_system='BWV', catalog_number='1052')

    result = catalog_ingest.check_works_exist([{'catalog_system': 'BWV', 'catalog_number': '1052'}])

    assert result['BWV:1052']['work_id'] == first['id']


def test_check_work_and_movement(catalog):
    saved = catalog_ingest.save_track_with_metadata(make_payload(movement_number=2))

    found = catalog_ingest.check_work_and_movement(saved['composer_id'], 'BWV', '1052', 2)
    assert found['work_exists'] and found['movement_exists']

    missing_movement = catalog_ingest.check_work_and_movement(saved['composer_id'], 'BWV', '1052', 3)
    assert missing_movement['work_exists'] and not missing_movement['movement_exists']

    no_catalog = catalog_ingest.check_work_and_movement(saved['composer_id'], None, None, 1)
    assert no_catalog == {'work_exists': False, 'movement_exists': False, 'work': None, 'movement': None}


def test_delete_track_metadata_removes_only_that_track(catalog):
    first = catalog_ingest.save_track_with_metadata(make_payload(track_id='a'))
    catalog_ingest.save_track_with_metadata(make_payload(track_id='b'))

    result = catalog_ingest.delete_track_metadata('a')

    assert result['removed'] == 1
    assert result['message'] == 'Track-movement link removed, ready for re-analysis'
    assert catalog.links == {('b', first['movement_id'])}
    # Catalog rows survive the unlink
    assert len(catalog.works) == 1 and len(catalog.movements) == 1


def test_add_composer_returns_existing(catalog):
    first = catalog_ingest.add_composer('artist-bach', 'Johann Sebastian Bach')
    second = catalog_ingest.add_composer('artist-bach', 'Bach')

    assert first['composer']['id'] == second['composer']['id']
    assert len(catalog.composers) == 1


def test_add_work_movement_and_track_requires_composer(catalog):
    with pytest.raises(ValueError, match='Composer id is required'):
        catalog_ingest.add_work_movement_and_track({'formal_name': 'Suite'})


def test_failed_step_keeps_earlier_rows_and_rerun_converges(catalog, monkeypatch):
    insert_movement = catalog.insert_movement
    calls = []

    def flaky_insert_movement(cur, work_id, number, title=None):
        calls.append(work_id)
        if len(calls) == 1:
            raise psycopg.OperationalError('server closed the connection unexpectedly')
        return insert_movement(cur, work_id, number, title)

    monkeypatch.setattr(catalog_db, 'insert_movement', flaky_insert_movement)

    with pytest.raises(psycopg.OperationalError):
        catalog_ingest.save_track_with_metadata(make_payload())

    # Steps before the movement stay committed
    assert len(catalog.composers) == 1
    assert len(catalog.works) == 1
    assert not catalog.movements
    assert not catalog.recordings
    assert not catalog.links

    result = catalog_ingest.save_track_with_metadata(make_payload())

    assert len(catalog.composers) == 1
    assert len(catalog.works) == 1
    assert len(catalog.movements) == 1
    assert len(catalog.recordings) == 1
    assert catalog.links == {('track-1', result['movement_id'])}


def test_title_match_keeps_existing_catalog_entry(catalog):
    catalogued = catalog_ingest.save_track_with_metadata(
        make_payload(formal_name='Air', catalog_system='BWV', catalog_number='1068'))
    composer_id = catalogued['composer_id']
    # Same title without a catalog entry, as an admin might create it
    catalog.insert_work(None, composer_id, 'Air')

    result = catalog_ingest.save_track_with_metadata(
        make_payload(track_id='track-2', formal_name='Air', catalog_system=None, catalog_number=None))

    assert result['work_id'] == catalogued['work_id']
    work = catalog.works[catalogued['work_id']]
    assert (work['catalog_system'], work['catalog_number']) == ('BWV', '1068')
    assert len(catalog.works) == 2
