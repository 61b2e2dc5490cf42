"""
Match Queue Processor

Works through pending match queue items album by album: the album's queued
tracks are parsed together (so movements get numbered consistently), the
classical ones are reconciled into the catalog, and each item is marked
matched or failed.
"""

import logging
import time

import catalog_ingest
import match_queue
import metadata_parser
from spotify_client import SpotifyAPIError, SpotifyRateLimitError


class MatchQueueProcessor:
    """
    Classifies queued tracks using the album-context LLM parse.
    """

    def __init__(self, client, dry_run=False, album_delay=0.5, logger=None):
        """
        Args:
            client: SpotifyClient acting as the admin user
            dry_run: Parse and report, but write nothing
            album_delay: Pause between albums (seconds)
            logger: Optional logger instance
        """
        self.client = client
        self.dry_run = dry_run
        self.album_delay = album_delay
        self.logger = logger or logging.getLogger(__name__)
        self.stats = {
            'queue_items': 0,
            'albums_processed': 0,
            'tracks_matched': 0,
            'tracks_failed': 0,
            'tracks_not_classical': 0,
            'album_parse_errors': 0,
        }

    # ------------------------------------------------------------------------

    def _mark(self, track_ids, status):
        if not track_ids:
            return
        key = 'tracks_matched' if status == 'matched' else 'tracks_failed'
        self.stats[key] += len(track_ids)
        if self.dry_run:
            self.logger.info(f"  [DRY RUN] Would mark {len(track_ids)} track(s) {status}")
            return
        match_queue.update_match_queue_status(track_ids, status)

    @staticmethod
    def _group_by_album(tracks):
        albums = {}
        for track in tracks:
            album = track.get('album') or {}
            albums.setdefault(album.get('id'), {'album': album, 'tracks': []})['tracks'].append(track)
        for group in albums.values():
            group['tracks'].sort(key=lambda t: (t.get('disc_number') or 1, t.get('track_number') or 0))
        return list(albums.values())

    @staticmethod
    def _save_payload(track, album, metadata, composer_artist):
        return {
            'album': {
                'id': album['id'],
                'name': album.get('name'),
                'release_date': album.get('release_date'),
                'popularity': album.get('popularity'),
                'images': album.get('images') or [],
            },
            'track': {
                'id': track['id'],
                'name': track['name'],
                'duration_ms': track.get('duration_ms'),
                'track_number': track.get('track_number'),
                'popularity': track.get('popularity'),
            },
            'artists': [{'id': a['id'], 'name': a['name']} for a in track.get('artists') or []],
            'metadata': {
                'composer_artist_id': composer_artist['id'],
                'composer_name': metadata.composer_name,
                'formal_name': metadata.formal_name,
                'nickname': metadata.nickname,
                'catalog_system': metadata.catalog_system,
                'catalog_number': metadata.catalog_number,
                'form': metadata.form,
                'movement_number': metadata.movement,
                'movement_name': metadata.movement_name,
                'year_composed': metadata.year_composed,
            },
        }

    # ------------------------------------------------------------------------

    def process_album(self, album, tracks):
        """Parse and save one album's queued tracks"""
        track_ids = [t['id'] for t in tracks]
        album_name = album.get('name') or ''
        self.logger.info(f"Album: {album_name} ({len(tracks)} queued track(s))")

        try:
            results = metadata_parser.parse_album_tracks(album_name, [
                {'track_name': t['name'], 'artist_names': [a['name'] for a in t.get('artists') or []]}
                for t in tracks
            ])
        except metadata_parser.MetadataParseError as e:
            self.logger.error(f"  Album parse failed: {e}")
            self.stats['album_parse_errors'] += 1
            self._mark(track_ids, 'failed')
            return

        items = []
        failed = []
        for track, metadata in zip(tracks, results):
            if not metadata.is_classical or not metadata.composer_name or not metadata.formal_name:
                self.logger.info(f"  - {track['name']}: not classical")
                self.stats['tracks_not_classical'] += 1
                failed.append(track['id'])
                continue
            try:
                composer_artist = catalog_ingest.resolve_composer_artist(
                    track.get('artists') or [], metadata.composer_name)
            except ValueError as e:
                self.logger.info(f"  - {track['name']}: {e}")
                failed.append(track['id'])
                continue

            self.logger.info(f"  + {track['name']} -> {metadata.composer_name}: {metadata.formal_name}"
                             f" ({metadata.catalog_system or '-'} {metadata.catalog_number or ''})")
            items.append(self._save_payload(track, album, metadata, composer_artist))

        matched = []
        if items and not self.dry_run:
            result = catalog_ingest.save_album_tracks({'items': items})
            matched = [s['track_id'] for s in result['saved']]
            failed.extend(e['track_id'] for e in result['errors'])
        elif items:
            matched = [i['track']['id'] for i in items]

        self._mark(matched, 'matched')
        self._mark(failed, 'failed')
        self.stats['albums_processed'] += 1

    def run(self, limit=100):
        """
        Process up to limit pending queue items

        Returns:
            Stats dict
        """
        page = match_queue.get_match_queue(limit=limit, offset=0)
        queued_ids = [item['spotify_id'] for item in page['items']]
        self.stats['queue_items'] = len(queued_ids)
        self.logger.info(f"{len(queued_ids)} of {page['total']} pending item(s) selected")
        if not queued_ids:
            return self.stats

        try:
            tracks = self.client.get_tracks(queued_ids)
        except (SpotifyAPIError, SpotifyRateLimitError) as e:
            self.logger.error(f"Failed to fetch queued tracks from Spotify: {e}")
            raise

        found = {t['id'] for t in tracks}
        missing = [t for t in queued_ids if t not in found]
        if missing:
            self.logger.warning(f"{len(missing)} queued track(s) not found on Spotify")
            self._mark(missing, 'failed')

        for i, group in enumerate(self._group_by_album(tracks)):
            if i > 0 and self.album_delay:
                time.sleep(self.album_delay)
            self.process_album(group['album'], group['tracks'])

        return self.stats
