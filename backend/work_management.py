"""
Work and movement management for the admin dashboard
"""

import logging

import catalog_db
from composer_management import ConflictError, NotFoundError
from db_utils import get_db_connection
from utils.helpers import optional_int, safe_strip

logger = logging.getLogger(__name__)


class MovementInUseError(ConflictError):
    """Raised when deleting a movement that tracks are still linked to"""
    def __init__(self):
        super().__init__('Cannot delete movement: tracks are linked to it')


def _work_fields(data):
    fields = {}
    for key in ('title', 'nickname', 'catalog_system', 'catalog_number', 'form'):
        if key in data:
            value = data[key]
            fields[key] = safe_strip(None if value is None else str(value))
    if 'year_composed' in data:
        fields['year_composed'] = optional_int(data['year_composed'])
    if 'title' in fields and not fields['title']:
        raise ValueError("Work title cannot be empty")
    return fields


def search_works(query=None, composer_id=None, catalog_system=None, limit=50, offset=0):
    """
    Returns:
        {'items': [work + composer_name, movement_count, recording_count], 'total': int}
    """
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            items, total = catalog_db.search_works(
                cur,
                query=(query or '').strip() or None,
                composer_id=composer_id,
                catalog_system=(catalog_system or '').strip() or None,
                limit=limit,
                offset=offset,
            )
    return {'items': items, 'total': total}


def get_work_with_details(work_id):
    """Work with its composer, ordered movements and album recordings, or None"""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            work = catalog_db.find_work_by_id(cur, work_id)
            if not work:
                return None
            return {
                'work': work,
                'composer': catalog_db.find_composer_by_id(cur, work['composer_id']),
                'movements': catalog_db.list_movements(cur, work_id),
                'recordings': catalog_db.list_work_recordings(cur, work_id),
            }


def create_work(data):
    composer_id = optional_int(data.get('composer_id'))
    if composer_id is None:
        raise ValueError("Composer id is required")
    fields = _work_fields(data)
    if not fields.get('title'):
        raise ValueError("Work title is required")

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            if not catalog_db.find_composer_by_id(cur, composer_id):
                raise NotFoundError('Composer not found')
            work = catalog_db.insert_work(cur, composer_id, **fields)
        conn.commit()

    logger.info(f"Created work {work['id']}: {work['title']}")
    return work


def update_work_details(work_id, data):
    fields = _work_fields(data)
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            work = catalog_db.update_work(cur, work_id, fields)
            if not work:
                raise NotFoundError('Work not found')
        conn.commit()
    return work


def add_movement_to_work(work_id, number, title=None):
    number = optional_int(number)
    if number is None or number < 1:
        raise ValueError("Movement number must be a positive integer")

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            if not catalog_db.find_work_by_id(cur, work_id):
                raise NotFoundError('Work not found')
            if catalog_db.find_movement(cur, work_id, number):
                raise ConflictError(f'Movement {number} already exists for this work')
            movement = catalog_db.insert_movement(cur, work_id, number, safe_strip(title))
        conn.commit()
    return movement


def update_movement_details(movement_id, data):
    fields = {}
    if 'number' in data:
        fields['number'] = optional_int(data['number'])
        if fields['number'] is None or fields['number'] < 1:
            raise ValueError("Movement number must be a positive integer")
    if 'title' in data:
        fields['title'] = safe_strip(data['title'])

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            current = catalog_db.find_movement_by_id(cur, movement_id)
            if not current:
                raise NotFoundError('Movement not found')
            if 'number' in fields and fields['number'] != current['number']:
                if catalog_db.find_movement(cur, current['work_id'], fields['number']):
                    raise ConflictError(f"Movement {fields['number']} already exists for this work")
            movement = catalog_db.update_movement(cur, movement_id, fields)
        conn.commit()
    return movement


def delete_movement(movement_id):
    """
    Delete a movement that no track is linked to

    Raises:
        MovementInUseError: At least one track is linked to the movement
        NotFoundError: No such movement
    """
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            if catalog_db.count_movement_tracks(cur, movement_id) > 0:
                raise MovementInUseError()
            if not catalog_db.delete_movement(cur, movement_id):
                raise NotFoundError('Movement not found')
        conn.commit()

    logger.info(f"Deleted movement {movement_id}")
