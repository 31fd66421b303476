import logging
from typing import Any, Callable, Dict, List, Optional

import requests
import spotipy
from spotipy.exceptions import SpotifyException
from urllib3.exceptions import ReadTimeoutError

from replaylist.domain.entities import Credential, Playlist, Provider, Track
from replaylist.domain.errors import (
    AppendFailed,
    AuthExpired,
    CreateFailed,
    MalformedResponse,
    ProviderError,
    RateLimited,
    TransientProviderError,
)
from replaylist.domain.normalization import normalize_isrc, structured_query
from replaylist.infrastructure.providers.base import CatalogAdapterBase, dig, integer, parse_retry_after, text

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Credential], Any]


def _error_body(error: Exception, message: str) -> str:
    """spotipy message plus its reason code and the raw response body when kept."""
    body = message
    reason = getattr(error, "reason", None)
    if reason:
        body = f"{body} (reason: {reason})"
    # spotipy raises SpotifyException while handling the HTTPError, so the response survives as context
    context = error.__context__
    if isinstance(context, requests.exceptions.HTTPError) and context.response is not None:
        raw = context.response.text
        if raw:
            body = f"{body}\n{raw}"
    return body


class SpotifyAdapter(CatalogAdapterBase):
    """Spotify Web API adapter built on spotipy.

    A spotipy client is created per call from the credential passed in, so the
    adapter holds no user state. Pagination follows the ``next`` URL through
    ``client.next``.
    """

    provider = Provider.SPOTIFY
    playlist_page_limit = 50
    track_page_limit = 100

    def __init__(self, client_factory: Optional[ClientFactory] = None, timeout: float = 15.0,
                 market: Optional[str] = None):
        self._timeout = timeout
        self._client_factory = client_factory or self._default_client
        self.market = market or None

    def _default_client(self, credential: Credential) -> spotipy.Spotify:
        # Transport-level retries are disabled; throttling surfaces as RateLimited.
        return spotipy.Spotify(
            auth=credential.access_token,
            requests_timeout=self._timeout,
            retries=0,
            status_retries=0,
        )

    def _translate(self, error: Exception, operation: str) -> ProviderError:
        if isinstance(error, (requests.exceptions.RequestException, ReadTimeoutError)):
            return TransientProviderError(
                f"Spotify {operation} failed: {error}", provider=self.provider)

        status = getattr(error, "http_status", None)
        message = getattr(error, "msg", "") or str(error)
        body = _error_body(error, message)
        if status == 401:
            return AuthExpired(f"Spotify rejected the credential during {operation}",
                               provider=self.provider, status=status, body=body)
        if status == 429:
            headers = getattr(error, "headers", None) or {}
            return RateLimited(
                retry_after_ms=parse_retry_after(headers.get("Retry-After")),
                message=f"Spotify rate limited {operation}",
                provider=self.provider, status=status, body=body,
            )
        if status is not None and int(status) >= 500:
            return TransientProviderError(f"Spotify {operation} returned {status}",
                                          provider=self.provider, status=status, body=body)
        return ProviderError(f"Spotify {operation} failed: {message}",
                             provider=self.provider, status=status, body=body)

    def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            result = fn(*args, **kwargs)
        except (SpotifyException, requests.exceptions.RequestException, ReadTimeoutError) as e:
            raise self._translate(e, operation) from e
        if result is not None and not isinstance(result, dict):
            raise MalformedResponse(
                f"Spotify {operation} returned {type(result).__name__} instead of an object",
                provider=self.provider,
            )
        return result

    def _all_items(self, client: Any, operation: str, first_page: Optional[Dict[str, Any]]) -> List[Any]:
        items: List[Any] = []
        page = first_page
        while page:
            items.extend(page.get("items") or [])
            if not page.get("next"):
                break
            page = self._call(operation, client.next, page)
        return items

    def _to_playlist(self, item: Dict[str, Any]) -> Playlist:
        return Playlist(
            id=text(item, "id"),
            name=text(item, "name"),
            cover_url=text(item, "images", 0, "url"),
            track_count=integer(item, "tracks", "total") or integer(item, "items", "total"),
        )

    def _to_track(self, spotify_track: Dict[str, Any]) -> Track:
        return Track(
            title=text(spotify_track, "name"),
            artist=text(spotify_track, "artists", 0, "name"),
            isrc=normalize_isrc(dig(spotify_track, "external_ids", "isrc")),
            source_id=text(spotify_track, "id") or None,
        )

    def list_playlists(self, credential: Credential) -> List[Playlist]:
        client = self._client_factory(credential)
        user = self._call("current_user", client.current_user)
        user_id = text(user, "id")
        first = self._call("current_user_playlists", client.current_user_playlists,
                           limit=self.playlist_page_limit)
        if first is None:
            raise MalformedResponse("Spotify returned an empty playlist listing",
                                    provider=self.provider)

        playlists = []
        for item in self._all_items(client, "current_user_playlists", first):
            if not isinstance(item, dict) or not item.get("id"):
                continue
            # Followed playlists are listed too; only the user's own can be copied from
            if user_id and text(item, "owner", "id") != user_id:
                continue
            playlists.append(self._to_playlist(item))
        return playlists

    def fetch_tracks(self, credential: Credential, playlist_id: str) -> List[Track]:
        client = self._client_factory(credential)
        first = self._call("playlist_items", client.playlist_items, playlist_id,
                           limit=self.track_page_limit, additional_types=("track",))
        tracks = []
        for item in self._all_items(client, "playlist_items", first):
            spotify_track = dig(item, "track")
            # Removed tracks and podcast episodes come back empty or typed differently
            if not isinstance(spotify_track, dict) or spotify_track.get("type", "track") != "track":
                continue
            tracks.append(self._to_track(spotify_track))
        return tracks

    def create_playlist(self, credential: Credential, name: str) -> str:
        client = self._client_factory(credential)
        user_id = text(self._call("current_user", client.current_user), "id")
        try:
            result = self._call("create playlist", client.user_playlist_create,
                                user_id, name, public=False)
        except (AuthExpired, TransientProviderError):
            raise
        except ProviderError as e:
            raise CreateFailed(
                f"Spotify refused to create playlist {name!r}: {e.status}",
                provider=self.provider, status=e.status, body=e.body,
            ) from e
        playlist_id = text(result, "id")
        if not playlist_id:
            raise CreateFailed("Spotify created a playlist but returned no id",
                               provider=self.provider)
        logger.info(f"Created Spotify playlist {playlist_id} ({name})")
        return playlist_id

    def _first_track_id(self, results: Optional[Dict[str, Any]]) -> Optional[str]:
        return text(results, "tracks", "items", 0, "id") or None

    def search_by_isrc(self, credential: Credential, isrc: str) -> Optional[str]:
        client = self._client_factory(credential)
        results = self._call("isrc search", client.search, q=f"isrc:{isrc}", type="track",
                             limit=1, market=self.market)
        return self._first_track_id(results)

    def search_by_text(self, credential: Credential, track: Track) -> Optional[str]:
        query = structured_query(track)
        if not query:
            return None
        client = self._client_factory(credential)
        results = self._call("text search", client.search, q=query, type="track",
                             limit=1, market=self.market)
        return self._first_track_id(results)

    def append_track(self, credential: Credential, playlist_id: str,
                     destination_track_id: str) -> None:
        client = self._client_factory(credential)
        try:
            self._call("append track", client.playlist_add_items, playlist_id,
                       [f"spotify:track:{destination_track_id}"])
        except (AuthExpired, TransientProviderError):
            raise
        except ProviderError as e:
            raise AppendFailed(
                f"Spotify refused to append {destination_track_id}: {e.status}",
                provider=self.provider, status=e.status, body=e.body,
            ) from e
