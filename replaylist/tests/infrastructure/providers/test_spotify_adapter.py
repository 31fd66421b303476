from typing import Any, Dict
from unittest.mock import Mock

import pytest
import requests
from spotipy.exceptions import SpotifyException

from replaylist.domain.entities import Credential, Provider, Track
from replaylist.domain.errors import (
    AppendFailed,
    AuthExpired,
    CreateFailed,
    MalformedResponse,
    ProviderError,
    RateLimited,
    TransientProviderError,
)
from replaylist.domain.ports import SearchMode
from replaylist.infrastructure.providers.spotify import SpotifyAdapter


def spotify_track(index: int, isrc: str = None) -> Dict[str, Any]:
    return {
        "type": "track",
        "id": f"trk{index}",
        "name": f"Song {index}",
        "artists": [{"name": f"Artist {index}"}, {"name": "Featured"}],
        "external_ids": {"isrc": isrc} if isrc else {},
    }


def items_page(start: int, stop: int, next_url: str = None) -> Dict[str, Any]:
    return {
        "items": [{"track": spotify_track(i)} for i in range(start, stop)],
        "next": next_url,
    }


class TestSpotifyAdapter:
    """Contract tests for the Spotify adapter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = Mock()
        self.client.current_user.return_value = {"id": "me"}
        self.factory = Mock(return_value=self.client)
        self.adapter = SpotifyAdapter(client_factory=self.factory, market="JP")
        self.credential = Credential(provider=Provider.SPOTIFY, access_token="BQ-token")

    def test_client_is_built_from_credential(self):
        self.client.playlist_items.return_value = items_page(0, 1)

        self.adapter.fetch_tracks(self.credential, "pl1")

        self.factory.assert_called_with(self.credential)

    def test_fetch_tracks_follows_next_across_pages(self):
        """Three pages of 20 yield 60 tracks in provider order."""
        self.client.playlist_items.return_value = items_page(0, 20, "https://api.spotify.com/v1/...&offset=20")
        self.client.next.side_effect = [
            items_page(20, 40, "https://api.spotify.com/v1/...&offset=40"),
            items_page(40, 60),
        ]

        tracks = self.adapter.fetch_tracks(self.credential, "pl1")

        assert len(tracks) == 60
        assert [t.source_id for t in tracks] == [f"trk{i}" for i in range(60)]
        assert self.client.next.call_count == 2
        self.client.playlist_items.assert_called_once_with(
            "pl1", limit=100, additional_types=("track",))

    def test_fetch_tracks_maps_first_artist_and_normalized_isrc(self):
        self.client.playlist_items.return_value = {
            "items": [{"track": spotify_track(1, isrc="usrc17607839")}], "next": None,
        }

        tracks = self.adapter.fetch_tracks(self.credential, "pl1")

        assert tracks == [Track(title="Song 1", artist="Artist 1", isrc="USRC17607839", source_id="trk1")]

    def test_fetch_tracks_skips_removed_tracks_and_episodes(self):
        self.client.playlist_items.return_value = {"items": [
            {"track": None},
            {"track": {"type": "episode", "id": "ep1", "name": "Podcast"}},
            {},
            {"track": spotify_track(7)},
        ], "next": None}

        tracks = self.adapter.fetch_tracks(self.credential, "pl1")

        assert [t.source_id for t in tracks] == ["trk7"]

    def test_fetch_tracks_tolerates_missing_fields(self):
        self.client.playlist_items.return_value = {"items": [{"track": {"id": "bare"}}], "next": None}

        tracks = self.adapter.fetch_tracks(self.credential, "pl1")

        assert tracks == [Track(title="", artist="", isrc=None, source_id="bare")]

    def test_list_playlists_keeps_only_owned(self):
        self.client.current_user_playlists.return_value = {"items": [
            {"id": "mine1", "name": "Mine", "owner": {"id": "me"},
             "images": [{"url": "https://i.scdn.co/image/a"}], "tracks": {"total": 12}},
            {"id": "theirs", "name": "Followed", "owner": {"id": "someone"}},
            {"id": "mine2", "name": "Mine too", "owner": {"id": "me"}, "images": None,
             "items": {"total": 3}},
        ], "next": None}

        playlists = self.adapter.list_playlists(self.credential)

        assert [p.id for p in playlists] == ["mine1", "mine2"]
        assert playlists[0].cover_url == "https://i.scdn.co/image/a"
        assert playlists[0].track_count == 12
        assert playlists[1].cover_url == ""
        assert playlists[1].track_count == 3
        self.client.current_user_playlists.assert_called_once_with(limit=50)

    def test_list_playlists_empty_first_page_is_malformed(self):
        self.client.current_user_playlists.return_value = None

        with pytest.raises(MalformedResponse):
            self.adapter.list_playlists(self.credential)

    def test_non_object_result_is_malformed(self):
        self.client.playlist_items.return_value = ["not", "a", "page"]

        with pytest.raises(MalformedResponse):
            self.adapter.fetch_tracks(self.credential, "pl1")

    def test_isrc_search_uses_isrc_filter_and_market(self):
        self.client.search.return_value = {"tracks": {"items": [{"id": "hit"}]}}
        track = Track(title="x", artist="y", isrc="USRC17607839")

        assert self.adapter.search_track(self.credential, track, SearchMode.ISRC) == "hit"
        self.client.search.assert_called_once_with(
            q="isrc:USRC17607839", type="track", limit=1, market="JP")

    def test_text_search_uses_structured_query(self):
        self.client.search.return_value = {"tracks": {"items": []}}

        result = self.adapter.search_track(self.credential, Track(title="Hello", artist="Adele"))

        assert result is None
        assert self.client.search.call_args.kwargs["q"] == 'track:"Hello" artist:"Adele"'

    def test_create_playlist_is_private_for_current_user(self):
        self.client.user_playlist_create.return_value = {"id": "newpl"}

        assert self.adapter.create_playlist(self.credential, "Copy") == "newpl"
        self.client.user_playlist_create.assert_called_once_with("me", "Copy", public=False)

    def test_create_playlist_forbidden_is_create_failed(self):
        self.client.user_playlist_create.side_effect = SpotifyException(
            403, -1, "Forbidden", reason=None, headers={})

        with pytest.raises(CreateFailed) as exc_info:
            self.adapter.create_playlist(self.credential, "Copy")

        assert exc_info.value.status == 403
        assert exc_info.value.body == "Forbidden"

    def test_create_failed_body_keeps_reason_and_raw_response(self):
        raw = '{"error": {"status": 403, "message": "Insufficient client scope", "reason": "FORBIDDEN"}}'
        response = requests.Response()
        response.status_code = 403
        response.encoding = "utf-8"
        response._content = raw.encode("utf-8")

        def reject(*args, **kwargs):
            # spotipy raises its exception from inside the HTTPError handler
            try:
                raise requests.exceptions.HTTPError(response=response)
            except requests.exceptions.HTTPError:
                raise SpotifyException(
                    403, -1, "https://api.spotify.com/v1/users/me/playlists:\n Insufficient client scope",
                    reason="FORBIDDEN", headers={})

        self.client.user_playlist_create.side_effect = reject

        with pytest.raises(CreateFailed) as exc_info:
            self.adapter.create_playlist(self.credential, "Copy")

        body = exc_info.value.body
        assert "Insufficient client scope (reason: FORBIDDEN)" in body
        assert body.endswith(raw)

    def test_create_playlist_unauthorized_stays_auth_expired(self):
        self.client.user_playlist_create.side_effect = SpotifyException(401, -1, "The access token expired")

        with pytest.raises(AuthExpired):
            self.adapter.create_playlist(self.credential, "Copy")

    def test_append_track_uses_track_uri(self):
        self.client.playlist_add_items.return_value = {"snapshot_id": "s1"}

        self.adapter.append_track(self.credential, "newpl", "trk1")

        self.client.playlist_add_items.assert_called_once_with("newpl", ["spotify:track:trk1"])

    def test_append_track_rejected_is_append_failed(self):
        self.client.playlist_add_items.side_effect = SpotifyException(400, -1, "Invalid track uri")

        with pytest.raises(AppendFailed):
            self.adapter.append_track(self.credential, "newpl", "bad")

    def test_rate_limit_carries_retry_after(self):
        self.client.search.side_effect = SpotifyException(
            429, -1, "Too many requests", headers={"Retry-After": "7"})

        with pytest.raises(RateLimited) as exc_info:
            self.adapter.search_track(self.credential, Track(title="x"))

        assert exc_info.value.retry_after_ms == 7000

    def test_server_error_is_transient(self):
        self.client.search.side_effect = SpotifyException(502, -1, "Bad gateway")

        with pytest.raises(TransientProviderError):
            self.adapter.search_track(self.credential, Track(title="x"))

    def test_network_failure_is_transient(self):
        self.client.search.side_effect = requests.exceptions.ReadTimeout("timed out")

        with pytest.raises(TransientProviderError):
            self.adapter.search_track(self.credential, Track(title="x"))

    def test_other_status_is_plain_provider_error(self):
        self.client.playlist_items.side_effect = SpotifyException(404, -1, "Not found")

        with pytest.raises(ProviderError) as exc_info:
            self.adapter.fetch_tracks(self.credential, "gone")

        assert type(exc_info.value) is ProviderError
        assert exc_info.value.status == 404
