import json
from types import SimpleNamespace

import openai

import match_queue
import metadata_parser
from match_queue_processor import MatchQueueProcessor
from metadata_parser import ClassicalMetadata, MetadataParseError

BACH = {'id': 'artist-bach', 'name': 'Johann Sebastian Bach'}
BAND = {'id': 'artist-band', 'name': 'Some Band'}


def _track(track_id, number, album_id='album-1', artists=(BACH,), name=None):
    return {
        'id': track_id,
        'name': name or f'Track {number}',
        'track_number': number,
        'disc_number': 1,
        'duration_ms': 200000,
        'popularity': 10,
        'artists': [dict(a) for a in artists],
        'album': {'id': album_id, 'name': f'Album {album_id}', 'release_date': '2001', 'images': []},
    }


class FakeClient:
    def __init__(self, tracks):
        self.tracks = {t['id']: t for t in tracks}

    def get_tracks(self, track_ids):
        return [self.tracks[t] for t in track_ids if t in self.tracks]


def _bach(movement):
    return ClassicalMetadata(is_classical=True, formal_name='Keyboard Concerto No. 1',
                             composer_name='Johann Sebastian Bach', catalog_system='BWV',
                             catalog_number='1052', movement=movement)


def test_processor_saves_classical_tracks_and_marks_queue(monkeypatch, catalog):
    tracks = [_track('t2', 2), _track('t1', 1), _track('pop', 1, album_id='album-2', artists=(BAND,))]
    match_queue.enqueue_tracks(['t2', 't1', 'pop', 'gone'])
    parsed_albums = []

    def fake_parse(album_name, items):
        parsed_albums.append((album_name, [i['track_name'] for i in items]))
        if album_name == 'Album album-2':
            return [ClassicalMetadata.empty()]
        return [_bach(1), _bach(2)]

    monkeypatch.setattr(metadata_parser, 'parse_album_tracks', fake_parse)

    stats = MatchQueueProcessor(FakeClient(tracks), album_delay=0).run(limit=10)

    # Album tracks are parsed in track order
    assert parsed_albums[0] == ('Album album-1', ['Track 1', 'Track 2'])
    assert catalog.queue['t1']['status'] == 'matched'
    assert catalog.queue['t2']['status'] == 'matched'
    assert catalog.queue['pop']['status'] == 'failed'
    assert catalog.queue['gone']['status'] == 'failed'
    assert stats['tracks_matched'] == 2
    assert stats['tracks_failed'] == 2
    assert len(catalog.works) == 1
    assert sorted(m['number'] for m in catalog.movements.values()) == [1, 2]


def test_processor_marks_album_failed_on_parse_error(monkeypatch, catalog):
    tracks = [_track('t1', 1), _track('t2', 2)]
    match_queue.enqueue_tracks(['t1', 't2'])

    def broken_parse(album_name, items):
        raise MetadataParseError('Expected 2 results, got 1')

    monkeypatch.setattr(metadata_parser, 'parse_album_tracks', broken_parse)

    stats = MatchQueueProcessor(FakeClient(tracks), album_delay=0).run()

    assert {q['status'] for q in catalog.queue.values()} == {'failed'}
    assert stats['album_parse_errors'] == 1
    assert not catalog.works


def test_dry_run_writes_nothing(monkeypatch, catalog):
    match_queue.enqueue_tracks(['t1'])
    monkeypatch.setattr(metadata_parser, 'parse_album_tracks', lambda name, items: [_bach(1)])

    stats = MatchQueueProcessor(FakeClient([_track('t1', 1)]), dry_run=True, album_delay=0).run()

    assert stats['tracks_matched'] == 1
    assert catalog.queue['t1']['status'] == 'pending'
    assert not catalog.works


def test_empty_queue(catalog):
    stats = MatchQueueProcessor(FakeClient([]), album_delay=0).run()
    assert stats['queue_items'] == 0


def _album_reply(*movements):
    tracks = [{
        'isClassical': True, 'composerName': 'Johann Sebastian Bach',
        'formalName': 'Keyboard Concerto No. 1', 'nickname': None,
        'catalogSystem': 'BWV', 'catalogNumber': '1052', 'key': 'D minor',
        'form': 'concerto', 'movement': m, 'movementName': None, 'yearComposed': None,
    } for m in movements]
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps({'tracks': tracks})))])


def test_model_outage_fails_album_and_continues(monkeypatch, catalog):
    tracks = [_track('t1', 1, album_id='album-1'), _track('t2', 1, album_id='album-2')]
    match_queue.enqueue_tracks(['t1', 't2'])
    prompts = []

    def create(**kwargs):
        prompt = kwargs['messages'][-1]['content']
        prompts.append(prompt)
        if 'Album album-1' in prompt:
            raise openai.OpenAIError('Connection error.')
        return _album_reply(1)

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    monkeypatch.setattr(metadata_parser, '_get_client', lambda: client)

    stats = MatchQueueProcessor(FakeClient(tracks), album_delay=0).run()

    assert len(prompts) == 2
    assert catalog.queue['t1']['status'] == 'failed'
    assert catalog.queue['t2']['status'] == 'matched'
    assert stats['album_parse_errors'] == 1
    assert stats['tracks_matched'] == 1
    assert len(catalog.works) == 1
