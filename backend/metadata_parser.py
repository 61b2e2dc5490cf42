"""
Classical Metadata Inference

Turns a Spotify track title (plus artist names, optionally the whole album)
into structured classical metadata with an LLM call constrained by a JSON
schema.

- parse_track_metadata: one track, one call
- parse_batch_track_metadata: independent calls in chunks of 10; a failed
  track is replaced by ClassicalMetadata.empty()
- parse_album_tracks: one call for the whole album; the response must hold
  exactly one result per input track, in order
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import List, Optional

from openai import OpenAI, OpenAIError

import config

logger = logging.getLogger(__name__)

BATCH_SIZE = 10

SYSTEM_PROMPT = (
    "You are an expert in classical music cataloguing. Given Spotify track "
    "titles and artists, identify the composer, the work and the movement. "
    "Respond with JSON matching the provided schema."
)


class MetadataParseError(Exception):
    """Raised when the model response cannot be used"""
    pass


@dataclass
class ClassicalMetadata:
    is_classical: bool
    formal_name: str
    composer_name: Optional[str] = None
    nickname: Optional[str] = None
    catalog_system: Optional[str] = None
    catalog_number: Optional[str] = None
    key: Optional[str] = None
    form: Optional[str] = None
    movement: Optional[int] = None
    movement_name: Optional[str] = None
    year_composed: Optional[int] = None

    @classmethod
    def empty(cls):
        return cls(is_classical=False, formal_name='')

    @classmethod
    def from_response(cls, data):
        """Build from the camelCase object returned by the model"""
        return cls(
            is_classical=bool(data.get('isClassical')),
            formal_name=data.get('formalName') or '',
            composer_name=data.get('composerName'),
            nickname=data.get('nickname'),
            catalog_system=data.get('catalogSystem'),
            catalog_number=_as_text(data.get('catalogNumber')),
            key=data.get('key'),
            form=data.get('form'),
            movement=_as_int(data.get('movement')),
            movement_name=data.get('movementName'),
            year_composed=_as_int(data.get('yearComposed')),
        )

    def to_dict(self):
        return asdict(self)


def _as_int(value):
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_text(value):
    if value is None:
        return None
    return str(value)


def _nullable(json_type, description):
    return {'type': [json_type, 'null'], 'description': description}


TRACK_SCHEMA = {
    'type': 'object',
    'additionalProperties': False,
    'properties': {
        'isClassical': {'type': 'boolean'},
        'composerName': _nullable(
            'string',
            "The name of the composer (e.g. 'Johann Sebastian Bach', 'Wolfgang Amadeus Mozart'). "
            "Should match one of the artist names provided. Null if not classical or unknown"),
        'formalName': {
            'type': 'string',
            'description': "The formal title of the entire work, e.g. 'Piano Concerto No. 3 in D minor', "
                           "excluding catalog numbers or movement names"},
        'nickname': _nullable('string', "Popular nickname like 'Moonlight Sonata', null if none"),
        'catalogSystem': _nullable(
            'string',
            "Catalog system: Op, RV, BWV, K, Kk, Hob, D, S, etc. Null if not classical or no catalog number. "
            "If the work has multiple catalog numbers, pick the most popular one "
            "(e.g. for Vivaldi, with Op and RV, pick RV)"),
        'catalogNumber': _nullable('string', "Catalog number like '30', '30/3', '582', etc. Null if none"),
        'key': _nullable('string', "Musical key like 'D minor', 'C major', or null if unknown or not applicable"),
        'form': _nullable(
            'string',
            "Musical form: 'concerto', 'sonata', 'symphony', 'fugue', 'prelude', etc. Null if not classical"),
        'movement': _nullable('integer', "Movement number (1, 2, 3, etc.), null if not applicable or unknown"),
        'movementName': _nullable(
            'string', "Movement name like 'Finale: Alla breve', 'Allegro', null if unknown"),
        'yearComposed': _nullable(
            'integer',
            "Year the piece was composed, if known (not expected to be in the title)"),
    },
}
TRACK_SCHEMA['required'] = list(TRACK_SCHEMA['properties'].keys())

ALBUM_SCHEMA = {
    'type': 'object',
    'additionalProperties': False,
    'properties': {
        'tracks': {'type': 'array', 'items': TRACK_SCHEMA},
    },
    'required': ['tracks'],
}


# ============================================================================
# LLM CALL
# ============================================================================

_client = None


def _get_client():
    global _client
    if _client is None:
        _client = OpenAI()
    return _client


def _call_llm(prompt, schema, schema_name):
    """
    Run one schema-constrained completion

    Returns:
        Parsed JSON object

    Raises:
        MetadataParseError: The API call failed or the reply was not JSON
    """
    try:
        response = _get_client().chat.completions.create(
            model=config.METADATA_MODEL,
            messages=[
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': prompt},
            ],
            response_format={
                'type': 'json_schema',
                'json_schema': {'name': schema_name, 'schema': schema, 'strict': True},
            },
        )
    except OpenAIError as e:
        logger.error(f"Metadata model call failed: {e}")
        raise MetadataParseError(f"Metadata model call failed: {e}") from e
    content = response.choices[0].message.content
    try:
        return json.loads(content)
    except (TypeError, json.JSONDecodeError) as e:
        raise MetadataParseError(f"Model returned invalid JSON: {e}")


def _artists_text(artist_names):
    if not artist_names:
        return ''
    return f" by {', '.join(artist_names)}"


# ============================================================================
# PUBLIC API
# ============================================================================

def parse_track_metadata(track_name: str, artist_names: Optional[List[str]] = None) -> ClassicalMetadata:
    """
    Infer classical metadata for a single track

    Args:
        track_name: Spotify track title
        artist_names: Names of the track's artists (optional)
    """
    prompt = f'Parse this classical music track name: "{track_name}"{_artists_text(artist_names)}'
    logger.debug(f"Metadata prompt: {prompt}")

    data = _call_llm(prompt, TRACK_SCHEMA, 'classical_metadata')
    result = ClassicalMetadata.from_response(data)

    logger.debug(f"Metadata response: {result}")
    return result


def _parse_or_empty(track):
    track_name = track.get('track_name') or ''
    try:
        return parse_track_metadata(track_name, track.get('artist_names'))
    except Exception as e:
        logger.error(f"Failed to parse track \"{track_name}\": {e}")
        return ClassicalMetadata.empty()


def parse_batch_track_metadata(tracks) -> List[ClassicalMetadata]:
    """
    Infer metadata for many tracks with one call per track

    Args:
        tracks: List of dicts with track_name and artist_names

    Returns:
        One ClassicalMetadata per input track, in input order
    """
    results = []
    for i in range(0, len(tracks), BATCH_SIZE):
        batch = tracks[i:i + BATCH_SIZE]
        with ThreadPoolExecutor(max_workers=BATCH_SIZE) as executor:
            results.extend(executor.map(_parse_or_empty, batch))
    return results


def parse_album_tracks(album_name: str, tracks) -> List[ClassicalMetadata]:
    """
    Infer metadata for every track of an album in a single call

    Giving the model the whole track list lets it number movements and keep
    catalog numbers consistent across the album.

    Args:
        album_name: Album title
        tracks: Ordered list of dicts with track_name and artist_names

    Raises:
        MetadataParseError: The response does not hold exactly one result per track
    """
    if not tracks:
        return []

    lines = [
        f'{i}. "{t.get("track_name") or ""}"{_artists_text(t.get("artist_names"))}'
        for i, t in enumerate(tracks, start=1)
    ]
    prompt = (
        f'Parse these classical music tracks from the album "{album_name}". '
        f'Return exactly {len(tracks)} results, one per track, in the same order.\n'
        + '\n'.join(lines)
    )

    data = _call_llm(prompt, ALBUM_SCHEMA, 'classical_album_metadata')
    items = data.get('tracks') if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise MetadataParseError('Model response has no track list')
    if len(items) != len(tracks):
        raise MetadataParseError(
            f"Expected {len(tracks)} results for album \"{album_name}\", got {len(items)}")

    return [ClassicalMetadata.from_response(item) for item in items]
