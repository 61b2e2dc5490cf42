"""
Match queue

Liked tracks that have no movement link yet are queued once for
classification. The admin (or scripts/process_match_queue.py) pages through
pending items oldest first and marks them matched or failed.
"""

import logging

import catalog_db
from db_utils import get_db_connection

logger = logging.getLogger(__name__)

QUEUE_PAGE_SIZE = 100
QUEUE_STATUSES = ('pending', 'matched', 'failed')


def enqueue_tracks(track_ids, submitted_by=None):
    """
    Queue tracks for classification

    Tracks that are already queued (in any status) or already linked to a
    movement are skipped.

    Returns:
        Number of tracks added
    """
    unique_ids = list(dict.fromkeys(t for t in track_ids if t))
    if not unique_ids:
        return 0

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            skip = catalog_db.queued_track_ids(cur, unique_ids)
            skip |= catalog_db.classified_track_ids(cur, unique_ids)
            to_add = [t for t in unique_ids if t not in skip]
            added = catalog_db.insert_queue_items(cur, to_add, submitted_by) if to_add else 0
        conn.commit()

    if added:
        logger.info(f"Queued {added} track(s) for matching")
    return added


def get_match_queue(limit=QUEUE_PAGE_SIZE, offset=0):
    """
    One page of pending items, oldest submission first

    A limit of 0 only counts.

    Returns:
        {'items': [...], 'total': int}
    """
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            total = catalog_db.count_pending_queue(cur)
            items = catalog_db.list_pending_queue(cur, limit, offset) if limit > 0 else []
    return {'items': items, 'total': total}


def update_match_queue_status(track_ids, status):
    if status not in QUEUE_STATUSES:
        raise ValueError(f"Invalid status: {status}")
    if not track_ids:
        return 0

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            updated = catalog_db.set_queue_status(cur, track_ids, status)
        conn.commit()

    logger.info(f"Marked {updated} queue item(s) {status}")
    return updated


def get_matched_tracks(track_ids):
    """
    Movement, work and composer for each linked track

    Returns:
        [{'track_id', 'movement_number', 'movement_name', 'work': {...}}]
    """
    if not track_ids:
        return []

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            rows = catalog_db.load_track_catalog_rows(cur, list(track_ids))

    return [{
        'track_id': row['spotify_track_id'],
        'movement_number': row['movement_number'],
        'movement_name': row['movement_title'],
        'work': {
            'id': row['work_id'],
            'title': row['work_title'],
            'catalog_system': row['catalog_system'],
            'catalog_number': row['catalog_number'],
            'nickname': row['work_nickname'],
            'composer_name': row['composer_name'],
        },
    } for row in rows]
