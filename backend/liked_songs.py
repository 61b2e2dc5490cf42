"""
Liked Songs Cache

A user's full saved-track list is expensive to page through, so it is kept
in a per-user JSON file and reused for an hour.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

import config
from cache_utils import get_cache_dir

logger = logging.getLogger(__name__)

PAGE_SIZE = 50


class LikedSongsCache:
    """
    File-backed cache of saved tracks, keyed by track id.
    """

    def __init__(self, cache_dir: Optional[Path] = None, ttl: int = config.LIKED_SONGS_CACHE_TTL,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            cache_dir: Directory for cache files (default: <cache root>/liked_songs)
            ttl: Seconds a cached list stays fresh
            clock: Returns the current time in seconds
        """
        self.cache_dir = Path(cache_dir) if cache_dir else get_cache_dir('liked_songs')
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.ttl = ttl
        self.clock = clock

    def _path(self, user_id) -> Path:
        return self.cache_dir / f"liked_{user_id}.json"

    def get(self, user_id) -> Optional[List[Any]]:
        """
        Cached saved tracks in saved order

        Returns:
            List of saved-track items, or None when missing, empty, stale or corrupt
        """
        path = self._path(user_id)
        if not path.exists():
            return None

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load liked songs cache {path}: {e}")
            self.clear(user_id)
            return None

        if not isinstance(data, dict) or 'timestamp' not in data:
            return None
        if self.clock() - data['timestamp'] >= self.ttl:
            logger.debug(f"Liked songs cache for {user_id} is stale")
            return None

        tracks = list((data.get('tracks') or {}).values())
        return tracks or None

    def set(self, user_id, items: List[Any]) -> None:
        tracks = {}
        for item in items:
            track = (item or {}).get('track') or {}
            if track.get('id'):
                tracks[track['id']] = item

        path = self._path(user_id)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump({'timestamp': self.clock(), 'total': len(tracks), 'tracks': tracks}, f)
        except (IOError, TypeError) as e:
            logger.warning(f"Failed to save liked songs cache {path}: {e}")

    def clear(self, user_id) -> None:
        self._path(user_id).unlink(missing_ok=True)


def fetch_all_saved_tracks(client):
    """Page through the user's saved tracks, 50 at a time"""
    items = []
    offset = 0
    while True:
        page = client.get_saved_tracks_page(offset=offset, limit=PAGE_SIZE) or {}
        page_items = page.get('items') or []
        items.extend(page_items)
        offset += len(page_items)
        if not page.get('next') or not page_items:
            break
    return items


def load_liked_songs(client, user_id, cache, refresh=False):
    """
    Liked songs for a user, from cache when fresh

    Args:
        client: SpotifyClient for the user
        user_id: Cache key
        cache: LikedSongsCache
        refresh: Skip the cache and re-fetch

    Returns:
        (items, from_cache)
    """
    if not refresh:
        cached = cache.get(user_id)
        if cached is not None:
            return cached, True

    items = fetch_all_saved_tracks(client)
    cache.set(user_id, items)
    logger.info(f"Fetched {len(items)} liked songs for user {user_id}")
    return items, False
