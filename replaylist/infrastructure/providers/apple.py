import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from replaylist.domain.entities import Credential, Playlist, Provider, Track
from replaylist.domain.errors import AppendFailed, CreateFailed, MalformedResponse, MissingCredential
from replaylist.domain.normalization import normalize_cover_url, normalize_isrc, text_query
from replaylist.infrastructure.providers.base import RestCatalogAdapter, dig, text

logger = logging.getLogger(__name__)


class AppleMusicAdapter(RestCatalogAdapter):
    """Apple Music API adapter.

    Requests carry two tokens: the developer token as bearer and the user's
    Music-User-Token. Library listings paginate through a relative ``next`` path.
    """

    provider = Provider.APPLE
    base_url = "https://api.music.apple.com"
    page_limit = 100

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 15.0,
                 storefront: str = "us"):
        super().__init__(session=session, timeout=timeout)
        self.storefront = storefront or "us"

    def _headers(self, credential: Credential) -> Dict[str, str]:
        if not credential.user_token:
            raise MissingCredential(Provider.APPLE)
        headers = super()._headers(credential)
        headers["Music-User-Token"] = credential.user_token
        return headers

    def _pages(self, path: str, credential: Credential,
               params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        next_path: Optional[str] = path
        next_params = params
        while next_path:
            page = self._get_json(next_path, credential, params=next_params)
            yield page
            # The cursor path already embeds offset and limit
            next_path = page.get("next") or None
            next_params = None

    def _to_playlist(self, item: Dict[str, Any]) -> Playlist:
        return Playlist(
            id=text(item, "id"),
            name=text(item, "attributes", "name"),
            cover_url=normalize_cover_url(text(item, "attributes", "artwork", "url")),
            track_count=0,
        )

    def _to_track(self, item: Dict[str, Any]) -> Track:
        isrc = dig(item, "attributes", "isrc") or dig(
            item, "relationships", "catalog", "data", 0, "attributes", "isrc")
        return Track(
            title=text(item, "attributes", "name"),
            artist=text(item, "attributes", "artistName"),
            isrc=normalize_isrc(isrc),
            source_id=text(item, "id") or None,
        )

    def list_playlists(self, credential: Credential) -> List[Playlist]:
        playlists = []
        for page in self._pages("/v1/me/library/playlists", credential,
                                params={"limit": self.page_limit}):
            for item in page.get("data") or []:
                if isinstance(item, dict) and item.get("id"):
                    playlists.append(self._to_playlist(item))
        return playlists

    def fetch_tracks(self, credential: Credential, playlist_id: str) -> List[Track]:
        tracks = []
        path = f"/v1/me/library/playlists/{playlist_id}/tracks"
        for page in self._pages(path, credential,
                                params={"limit": self.page_limit, "include": "catalog"}):
            for item in page.get("data") or []:
                if isinstance(item, dict):
                    tracks.append(self._to_track(item))
        return tracks

    def create_playlist(self, credential: Credential, name: str) -> str:
        response = self._send("POST", "/v1/me/library/playlists", credential,
                              json_body={"attributes": {"name": name}})
        if response.status_code not in (200, 201):
            raise CreateFailed(
                f"Apple Music refused to create playlist {name!r}: {response.status_code}",
                provider=self.provider, status=response.status_code, body=response.text,
            )
        try:
            playlist_id = text(self._json(response), "data", 0, "id")
        except MalformedResponse as e:
            raise CreateFailed(str(e), provider=self.provider, status=e.status, body=e.body) from e
        if not playlist_id:
            raise CreateFailed(
                "Apple Music created a playlist but returned no id",
                provider=self.provider, status=response.status_code, body=response.text,
            )
        logger.info(f"Created Apple Music playlist {playlist_id} ({name})")
        return playlist_id

    def search_by_isrc(self, credential: Credential, isrc: str) -> Optional[str]:
        payload = self._get_json(f"/v1/catalog/{self.storefront}/songs", credential,
                                 params={"filter[isrc]": isrc})
        return text(payload, "data", 0, "id") or None

    def search_by_text(self, credential: Credential, track: Track) -> Optional[str]:
        query = text_query(track)
        if not query:
            return None
        payload = self._get_json(f"/v1/catalog/{self.storefront}/search", credential,
                                 params={"term": query, "types": "songs", "limit": 1})
        return text(payload, "results", "songs", "data", 0, "id") or None

    def append_track(self, credential: Credential, playlist_id: str,
                     destination_track_id: str) -> None:
        response = self._send(
            "POST", f"/v1/me/library/playlists/{playlist_id}/tracks", credential,
            json_body={"data": [{"id": destination_track_id, "type": "songs"}]},
        )
        if not 200 <= response.status_code < 300:
            raise AppendFailed(
                f"Apple Music refused to append {destination_track_id}: {response.status_code}",
                provider=self.provider, status=response.status_code, body=response.text,
            )
