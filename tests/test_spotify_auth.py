from datetime import datetime, timedelta, timezone

import pytest

import spotify_auth
from spotify_auth import AuthError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_needs_refresh_threshold():
    assert spotify_auth.needs_refresh(None, NOW)
    assert spotify_auth.needs_refresh(NOW + timedelta(minutes=4, seconds=59), NOW)
    assert not spotify_auth.needs_refresh(NOW + timedelta(minutes=5), NOW)
    assert not spotify_auth.needs_refresh(NOW + timedelta(hours=1), NOW)


def test_fresh_token_is_returned_as_is(monkeypatch):
    monkeypatch.setattr(spotify_auth, 'load_spotify_account', lambda user_id: {
        'id': 'acct', 'access_token': 'fresh', 'refresh_token': 'r', 'expires_at': NOW + timedelta(hours=1)})
    monkeypatch.setattr(spotify_auth, 'refresh_access_token', lambda token: pytest.fail('unexpected refresh'))

    assert spotify_auth.get_access_token('user-1', now=NOW) == 'fresh'


def test_expiring_token_is_refreshed_and_saved(monkeypatch):
    saved = []
    monkeypatch.setattr(spotify_auth, 'load_spotify_account', lambda user_id: {
        'id': 'acct', 'access_token': 'old', 'refresh_token': 'r1', 'expires_at': NOW + timedelta(minutes=2)})
    monkeypatch.setattr(spotify_auth, 'refresh_access_token',
                        lambda token: {'access_token': 'new', 'expires_in': 3600})
    monkeypatch.setattr(spotify_auth, 'save_refreshed_tokens',
                        lambda account_id, tokens, expires_at: saved.append((account_id, tokens, expires_at)))

    assert spotify_auth.get_access_token('user-1', now=NOW) == 'new'
    assert saved == [('acct', {'access_token': 'new', 'expires_in': 3600}, NOW + timedelta(hours=1))]


def test_missing_account_raises(monkeypatch):
    monkeypatch.setattr(spotify_auth, 'load_spotify_account', lambda user_id: None)
    with pytest.raises(AuthError, match='No Spotify access token'):
        spotify_auth.get_access_token('user-1')


def test_authorize_url_carries_state_and_scopes():
    url = spotify_auth.build_authorize_url('abc123')
    assert url.startswith(spotify_auth.AUTHORIZE_URL)
    assert 'state=abc123' in url
    assert 'user-library-read' in url
    assert 'user-modify-playback-state' in url
