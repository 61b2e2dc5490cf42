"""
Playback progress tracking

The player only reports its position when its state changes, so progress
is kept as a snapshot (position, duration, timestamp, paused) and
extrapolated from the wall clock while playing.

Seeking is a drag gesture: previews only move the local position, and a
single seek is sent to the player on release.
"""

import time
from dataclasses import dataclass, asdict
from typing import Callable, Optional


def _now_ms():
    return time.time() * 1000


@dataclass
class PlaybackProgress:
    position: int = 0
    duration: int = 0
    timestamp: float = 0
    paused: bool = True

    def to_dict(self):
        return asdict(self)


class ProgressTracker:
    """
    Holds the latest player snapshot and answers "where are we now".
    """

    def __init__(self, clock: Callable[[], float] = _now_ms):
        """
        Args:
            clock: Returns the current time in milliseconds
        """
        self.clock = clock
        self.progress = PlaybackProgress()
        self.track_id: Optional[str] = None

    def update(self, position, duration, paused, track_id=None):
        self.progress = PlaybackProgress(
            position=int(position or 0),
            duration=int(duration or 0),
            timestamp=self.clock(),
            paused=bool(paused),
        )
        if track_id is not None:
            self.track_id = track_id
        return self.progress

    def update_from_state(self, state):
        """
        Take a snapshot from a player state payload

        Accepts both the Web API /me/player shape (progress_ms, is_playing,
        item.duration_ms) and the Web Playback SDK shape (position,
        duration, paused). A None state means nothing is playing.
        """
        if not state:
            return self.update(0, 0, True)

        if 'progress_ms' in state or 'is_playing' in state:
            item = state.get('item') or {}
            return self.update(
                state.get('progress_ms'),
                item.get('duration_ms'),
                not state.get('is_playing', False),
                track_id=item.get('id'),
            )

        current = (state.get('track_window') or {}).get('current_track') or {}
        return self.update(
            state.get('position'),
            state.get('duration'),
            state.get('paused', True),
            track_id=current.get('id'),
        )

    def effective_position(self):
        """Snapshot position plus time elapsed since the snapshot, capped at duration"""
        p = self.progress
        if p.paused:
            return p.position
        elapsed = max(0, self.clock() - p.timestamp)
        position = p.position + elapsed
        if p.duration > 0:
            position = min(position, p.duration)
        return int(position)

    def snapshot(self):
        """Current progress as a snapshot taken now"""
        p = self.progress
        return PlaybackProgress(
            position=self.effective_position(),
            duration=p.duration,
            timestamp=self.clock(),
            paused=p.paused,
        )


class SeekGesture:
    """
    Drag-to-seek on the progress bar.

    begin() when the drag starts, preview() as it moves, commit() on release.
    """

    def __init__(self, tracker: ProgressTracker):
        self.tracker = tracker
        self.dragging = False
        self.preview_position: Optional[int] = None

    def begin(self):
        self.dragging = True
        self.preview_position = None

    def preview(self, fraction=None, position_ms=None):
        """
        Move the local position without touching the player

        Args:
            fraction: 0..1 along the progress bar
            position_ms: Absolute position (used when fraction is None)

        Returns:
            The previewed position in ms, clamped to the track
        """
        if not self.dragging:
            raise RuntimeError('Seek preview outside of a drag')

        duration = self.tracker.progress.duration
        if fraction is not None:
            position = float(fraction) * duration
        elif position_ms is not None:
            position = float(position_ms)
        else:
            raise ValueError('A fraction or position is required')

        upper = duration if duration > 0 else position
        self.preview_position = int(max(0, min(position, upper)))
        return self.preview_position

    def commit(self, seek: Callable[[int], object]):
        """
        Finish the drag, issuing exactly one seek for the last preview

        Args:
            seek: Callable taking a position in ms (e.g. SpotifyClient.seek)

        Returns:
            The position sought to, or None if the drag never moved
        """
        if not self.dragging:
            raise RuntimeError('Seek commit outside of a drag')

        self.dragging = False
        position = self.preview_position
        self.preview_position = None
        if position is None:
            return None

        seek(position)
        p = self.tracker.progress
        self.tracker.update(position, p.duration, p.paused)
        return position

    def cancel(self):
        self.dragging = False
        self.preview_position = None
