import logging
from typing import Any, Dict, Iterator, List, Optional

from replaylist.domain.entities import Credential, Playlist, Provider, Track
from replaylist.domain.errors import AppendFailed, CreateFailed, MalformedResponse
from replaylist.domain.normalization import strip_topic_suffix, text_query
from replaylist.infrastructure.providers.base import RestCatalogAdapter, dig, integer, text

logger = logging.getLogger(__name__)

MUSIC_CATEGORY_ID = "10"
_THUMBNAIL_PREFERENCE = ("high", "medium", "standard", "default", "maxres")


class YouTubeMusicAdapter(RestCatalogAdapter):
    """YouTube Data API v3 adapter.

    Listings paginate through ``nextPageToken``. The catalog offers no ISRC
    lookup, so ISRC-mode searches report no match and text search takes over.
    """

    provider = Provider.YOUTUBE
    base_url = "https://www.googleapis.com/youtube/v3"
    page_limit = 50

    def _pages(self, path: str, credential: Credential,
               params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        page_token: Optional[str] = None
        while True:
            page_params = dict(params or {})
            if page_token:
                page_params["pageToken"] = page_token
            page = self._get_json(path, credential, params=page_params)
            yield page
            page_token = page.get("nextPageToken") or None
            if not page_token:
                break

    def _cover(self, snippet: Dict[str, Any]) -> str:
        for size in _THUMBNAIL_PREFERENCE:
            url = text(snippet, "thumbnails", size, "url")
            if url:
                return url
        return ""

    def _to_playlist(self, item: Dict[str, Any]) -> Playlist:
        snippet = dig(item, "snippet", default={})
        return Playlist(
            id=text(item, "id"),
            name=text(snippet, "title"),
            cover_url=self._cover(snippet),
            track_count=integer(item, "contentDetails", "itemCount"),
        )

    def _to_track(self, item: Dict[str, Any]) -> Track:
        snippet = dig(item, "snippet", default={})
        return Track(
            title=text(snippet, "title"),
            artist=strip_topic_suffix(text(snippet, "videoOwnerChannelTitle")),
            isrc=None,
            source_id=text(snippet, "resourceId", "videoId") or None,
        )

    def list_playlists(self, credential: Credential) -> List[Playlist]:
        playlists = []
        params = {"part": "snippet,contentDetails", "mine": "true", "maxResults": self.page_limit}
        for page in self._pages("/playlists", credential, params=params):
            for item in page.get("items") or []:
                if isinstance(item, dict) and item.get("id"):
                    playlists.append(self._to_playlist(item))
        return playlists

    def fetch_tracks(self, credential: Credential, playlist_id: str) -> List[Track]:
        tracks = []
        params = {"part": "snippet", "playlistId": playlist_id, "maxResults": self.page_limit}
        for page in self._pages("/playlistItems", credential, params=params):
            for item in page.get("items") or []:
                if isinstance(item, dict):
                    tracks.append(self._to_track(item))
        return tracks

    def create_playlist(self, credential: Credential, name: str) -> str:
        response = self._send(
            "POST", "/playlists?part=snippet,status", credential,
            json_body={"snippet": {"title": name}, "status": {"privacyStatus": "private"}},
        )
        if not 200 <= response.status_code < 300:
            raise CreateFailed(
                f"YouTube refused to create playlist {name!r}: {response.status_code}",
                provider=self.provider, status=response.status_code, body=response.text,
            )
        try:
            playlist_id = text(self._json(response), "id")
        except MalformedResponse as e:
            raise CreateFailed(str(e), provider=self.provider, status=e.status, body=e.body) from e
        if not playlist_id:
            raise CreateFailed(
                "YouTube created a playlist but returned no id",
                provider=self.provider, status=response.status_code, body=response.text,
            )
        logger.info(f"Created YouTube playlist {playlist_id} ({name})")
        return playlist_id

    def search_by_isrc(self, credential: Credential, isrc: str) -> Optional[str]:
        logger.debug(f"YouTube has no ISRC lookup; skipping {isrc}")
        return None

    def search_by_text(self, credential: Credential, track: Track) -> Optional[str]:
        query = text_query(track)
        if not query:
            return None
        payload = self._get_json("/search", credential, params={
            "part": "snippet",
            "q": query,
            "type": "video",
            "videoCategoryId": MUSIC_CATEGORY_ID,
            "maxResults": 1,
        })
        return text(payload, "items", 0, "id", "videoId") or None

    def append_track(self, credential: Credential, playlist_id: str,
                     destination_track_id: str) -> None:
        response = self._send(
            "POST", "/playlistItems?part=snippet", credential,
            json_body={
                "snippet": {
                    "playlistId": playlist_id,
                    "resourceId": {"kind": "youtube#video", "videoId": destination_track_id},
                }
            },
        )
        if not 200 <= response.status_code < 300:
            raise AppendFailed(
                f"YouTube refused to append {destination_track_id}: {response.status_code}",
                provider=self.provider, status=response.status_code, body=response.text,
            )
