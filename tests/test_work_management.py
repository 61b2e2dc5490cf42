import pytest

import catalog_ingest
import work_management
from composer_management import ConflictError, NotFoundError
from conftest import make_payload


def _work_with_movement(catalog):
    composer = catalog.insert_composer(None, 'Johann Sebastian Bach', spotify_artist_id='artist-bach')
    work = catalog.insert_work(None, composer['id'], 'Cello Suite No. 1',
                               catalog_system='BWV', catalog_number='1007')
    movement = catalog.insert_movement(None, work['id'], 1, 'Prelude')
    return work, movement


def test_delete_movement_with_linked_tracks_is_refused(catalog):
    saved = catalog_ingest.save_track_with_metadata(make_payload())

    with pytest.raises(work_management.MovementInUseError) as exc_info:
        work_management.delete_movement(saved['movement_id'])

    assert str(exc_info.value) == 'Cannot delete movement: tracks are linked to it'
    assert saved['movement_id'] in catalog.movements


def test_delete_unlinked_movement(catalog):
    _, movement = _work_with_movement(catalog)

    work_management.delete_movement(movement['id'])

    assert movement['id'] not in catalog.movements


def test_delete_missing_movement(catalog):
    with pytest.raises(NotFoundError):
        work_management.delete_movement(404)


def test_add_movement_rejects_duplicate_number(catalog):
    work, _ = _work_with_movement(catalog)

    with pytest.raises(ConflictError):
        work_management.add_movement_to_work(work['id'], 1, 'Allemande')

    added = work_management.add_movement_to_work(work['id'], '2', ' Allemande ')
    assert added['number'] == 2
    assert added['title'] == 'Allemande'


def test_add_movement_requires_positive_number(catalog):
    work, _ = _work_with_movement(catalog)
    with pytest.raises(ValueError):
        work_management.add_movement_to_work(work['id'], 0)


def test_update_movement_number_collision(catalog):
    work, first = _work_with_movement(catalog)
    second = catalog.insert_movement(None, work['id'], 2, 'Allemande')

    with pytest.raises(ConflictError):
        work_management.update_movement_details(second['id'], {'number': 1})

    updated = work_management.update_movement_details(second['id'], {'title': 'Courante'})
    assert updated['title'] == 'Courante'
    assert updated['number'] == 2


def test_create_work_requires_existing_composer(catalog):
    with pytest.raises(NotFoundError, match='Composer not found'):
        work_management.create_work({'composer_id': 99, 'title': 'Mass in B minor'})


def test_update_work_details_partial(catalog):
    work, _ = _work_with_movement(catalog)

    updated = work_management.update_work_details(work['id'], {'nickname': 'Suite', 'year_composed': '1720'})

    assert updated['nickname'] == 'Suite'
    assert updated['year_composed'] == 1720
    assert updated['title'] == 'Cello Suite No. 1'


def test_update_work_rejects_empty_title(catalog):
    work, _ = _work_with_movement(catalog)
    with pytest.raises(ValueError):
        work_management.update_work_details(work['id'], {'title': '  '})
