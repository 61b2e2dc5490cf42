"""
Spotify API Client Infrastructure

Handles low-level Spotify Web API concerns for a signed-in user:
- Bearer requests with the user's access token
- Rate limiting with Retry-After aware retries
- Paging for album tracks, playlists and saved tracks
- Player transport calls

Used by the library routes, the admin lookup/search modules and the
match queue script.
"""

import re
import time
import logging
from typing import Optional
import requests

from utils.helpers import chunked

logger = logging.getLogger(__name__)

API_BASE = 'https://api.spotify.com/v1'

# Batch endpoints accept at most 50 ids
MAX_IDS_PER_REQUEST = 50

TRACK_URI_PATTERN = re.compile(r'spotify:track:([a-zA-Z0-9]+)')
TRACK_URL_PATTERN = re.compile(r'open\.spotify\.com/track/([a-zA-Z0-9]+)')
BARE_ID_PATTERN = re.compile(r'^[a-zA-Z0-9]{22}$')


class SpotifyRateLimitError(Exception):
    """Raised when Spotify API rate limit is hit"""
    def __init__(self, retry_after: int = None):
        self.retry_after = retry_after
        super().__init__(f"Spotify rate limit exceeded. Retry after {retry_after} seconds." if retry_after else "Spotify rate limit exceeded.")


class SpotifyAPIError(Exception):
    """Raised for a non-2xx response from the Web API"""
    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Spotify API error {status}: {message}")


def parse_track_id(value: str) -> Optional[str]:
    """
    Extract a track id from a spotify:track: URI, an open.spotify.com URL
    or a bare 22-character id

    Returns:
        Track id, or None when the value is not recognised
    """
    if not value:
        return None
    value = value.strip()

    match = TRACK_URI_PATTERN.search(value) or TRACK_URL_PATTERN.search(value)
    if match:
        return match.group(1)
    if BARE_ID_PATTERN.match(value):
        return value
    return None


class SpotifyClient:
    """
    Spotify Web API client acting on behalf of one user.
    """

    def __init__(self, access_token, rate_limit_delay=0.05, max_retries=3, logger=None):
        """
        Initialize Spotify Client

        Args:
            access_token: User access token (see spotify_auth.get_access_token)
            rate_limit_delay: Base delay between API calls (seconds)
            max_retries: Maximum number of retries for rate-limited requests
            logger: Optional logger instance (uses module logger if not provided)
        """
        self.logger = logger or logging.getLogger(__name__)
        self.access_token = access_token

        # Rate limiting configuration
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max_retries
        self.last_request_time = 0

        self.stats = {
            'api_calls': 0,
            'rate_limit_hits': 0,
            'rate_limit_waits': 0
        }

    # ========================================================================
    # RATE LIMITING METHODS
    # ========================================================================

    def _wait_for_rate_limit(self):
        """Enforce minimum delay between requests"""
        if self.rate_limit_delay > 0:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.rate_limit_delay:
                time.sleep(self.rate_limit_delay - elapsed)
        self.last_request_time = time.time()

    def _handle_rate_limit_response(self, response: requests.Response) -> Optional[int]:
        """
        Extract the wait time from a 429 response

        Returns:
            Number of seconds to wait before retrying, or None if not specified
        """
        if response.status_code != 429:
            return None

        retry_after = response.headers.get('Retry-After')
        if retry_after:
            try:
                return int(retry_after)
            except ValueError:
                self.logger.warning(f"Invalid Retry-After header: {retry_after}")

        return None

    def _make_api_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Make an API request with rate limit handling and retries

        Raises:
            SpotifyRateLimitError: If rate limit exceeded after all retries
            requests.exceptions.RequestException: For network failures
        """
        retry_count = 0
        base_delay = 1

        while retry_count <= self.max_retries:
            self._wait_for_rate_limit()

            response = requests.request(method, url, timeout=15, **kwargs)
            self.stats['api_calls'] += 1

            if response.status_code != 429:
                return response

            self.stats['rate_limit_hits'] += 1
            retry_after = self._handle_rate_limit_response(response)

            if retry_count >= self.max_retries:
                raise SpotifyRateLimitError(retry_after)

            if retry_after is not None:
                wait_time = retry_after
                self.logger.warning(f"Rate limit hit (attempt {retry_count + 1}/{self.max_retries + 1}). "
                                    f"Waiting {wait_time}s as specified by Spotify.")
            else:
                wait_time = base_delay * (2 ** retry_count)
                self.logger.warning(f"Rate limit hit (attempt {retry_count + 1}/{self.max_retries + 1}). "
                                    f"Using exponential backoff: {wait_time}s")

            self.stats['rate_limit_waits'] += 1
            time.sleep(wait_time)
            retry_count += 1

        raise SpotifyRateLimitError()

    def _request(self, method, path, params=None, json=None):
        """
        Authenticated call against the Web API

        Returns:
            Parsed JSON body, or None for empty (204) responses
        """
        url = path if path.startswith('http') else f"{API_BASE}{path}"
        response = self._make_api_request(
            method,
            url,
            headers={'Authorization': f'Bearer {self.access_token}'},
            params=params,
            json=json
        )

        if response.status_code >= 400:
            try:
                message = response.json().get('error', {}).get('message') or response.reason
            except ValueError:
                message = response.reason
            raise SpotifyAPIError(response.status_code, message)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _get_paged(self, path, params=None):
        """Follow `next` links and collect every item"""
        items = []
        page = self._request('GET', path, params=params)
        while page:
            items.extend(page.get('items') or [])
            next_url = page.get('next')
            page = self._request('GET', next_url) if next_url else None
        return items

    # ========================================================================
    # CATALOG
    # ========================================================================

    def get_track(self, track_id):
        return self._request('GET', f"/tracks/{track_id}")

    def get_tracks(self, track_ids):
        """Full track objects, 50 ids per request; unknown ids are dropped"""
        tracks = []
        for batch in chunked(list(track_ids), MAX_IDS_PER_REQUEST):
            data = self._request('GET', '/tracks', params={'ids': ','.join(batch)})
            tracks.extend(t for t in (data or {}).get('tracks', []) if t)
        return tracks

    def get_album(self, album_id):
        return self._request('GET', f"/albums/{album_id}")

    def get_album_tracks(self, album_id):
        """All simplified tracks of an album (paged 50 at a time)"""
        return self._get_paged(f"/albums/{album_id}/tracks",
                               params={'limit': MAX_IDS_PER_REQUEST, 'offset': 0})

    def get_artists(self, artist_ids):
        """Full artist objects, 50 ids per request"""
        artists = []
        for batch in chunked(list(artist_ids), MAX_IDS_PER_REQUEST):
            data = self._request('GET', '/artists', params={'ids': ','.join(batch)})
            artists.extend(a for a in (data or {}).get('artists', []) if a)
        return artists

    def search(self, query, types=('artist',), limit=10):
        """
        Search the catalog

        Returns:
            Raw search response keyed by plural type ('artists', 'playlists', ...)
        """
        return self._request('GET', '/search', params={
            'q': query,
            'type': ','.join(types),
            'limit': limit
        }) or {}

    def get_playlist_items(self, playlist_id):
        return self._get_paged(f"/playlists/{playlist_id}/tracks",
                               params={'limit': 100, 'offset': 0})

    # ========================================================================
    # USER
    # ========================================================================

    def get_me(self):
        return self._request('GET', '/me')

    def get_saved_tracks_page(self, offset=0, limit=MAX_IDS_PER_REQUEST):
        """One page of the user's liked songs ({items, total, next})"""
        return self._request('GET', '/me/tracks', params={'limit': limit, 'offset': offset})

    # ========================================================================
    # PLAYER
    # ========================================================================

    def get_playback_state(self):
        """Current playback state, or None when nothing is active"""
        return self._request('GET', '/me/player')

    def start_playback(self, uris=None, context_uri=None, offset=None,
                       position_ms=None, device_id=None):
        body = {}
        if uris:
            body['uris'] = list(uris)
        if context_uri:
            body['context_uri'] = context_uri
        if offset is not None:
            body['offset'] = {'position': offset}
        if position_ms is not None:
            body['position_ms'] = int(position_ms)
        params = {'device_id': device_id} if device_id else None
        return self._request('PUT', '/me/player/play', params=params, json=body or None)

    def resume(self, device_id=None):
        params = {'device_id': device_id} if device_id else None
        return self._request('PUT', '/me/player/play', params=params)

    def pause(self, device_id=None):
        params = {'device_id': device_id} if device_id else None
        return self._request('PUT', '/me/player/pause', params=params)

    def seek(self, position_ms, device_id=None):
        params = {'position_ms': int(position_ms)}
        if device_id:
            params['device_id'] = device_id
        return self._request('PUT', '/me/player/seek', params=params)

    def set_volume(self, volume_percent, device_id=None):
        params = {'volume_percent': max(0, min(100, int(volume_percent)))}
        if device_id:
            params['device_id'] = device_id
        return self._request('PUT', '/me/player/volume', params=params)

    def next_track(self, device_id=None):
        params = {'device_id': device_id} if device_id else None
        return self._request('POST', '/me/player/next', params=params)

    def previous_track(self, device_id=None):
        params = {'device_id': device_id} if device_id else None
        return self._request('POST', '/me/player/previous', params=params)
