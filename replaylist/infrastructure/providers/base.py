import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

from replaylist.domain.entities import Credential, Playlist, Provider, Track
from replaylist.domain.errors import (
    AuthExpired,
    MalformedResponse,
    ProviderError,
    RateLimited,
    TransientProviderError,
)
from replaylist.domain.ports import SearchMode

logger = logging.getLogger(__name__)


def dig(data: Any, *path: Any, default: Any = None) -> Any:
    """Walk nested dicts/lists, returning ``default`` as soon as a step is missing.

    Integer steps index into lists; everything else is a dict key.
    """
    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, (list, tuple)) or not -len(current) <= step < len(current):
                return default
            current = current[step]
        else:
            if not isinstance(current, dict):
                return default
            current = current.get(step)
        if current is None:
            return default
    return current


def text(data: Any, *path: Any) -> str:
    value = dig(data, *path, default="")
    return value if isinstance(value, str) else str(value)


def integer(data: Any, *path: Any) -> int:
    try:
        return int(dig(data, *path, default=0))
    except (TypeError, ValueError):
        return 0


def parse_retry_after(value: Optional[str], default_sec: int = 1) -> int:
    """Convert a ``Retry-After`` header (seconds) into milliseconds."""
    try:
        return max(0, int(float(value))) * 1000
    except (TypeError, ValueError):
        return default_sec * 1000


def load_tracks(provider: Provider, headers: List[Playlist],
                fetch_tracks: Callable[[str], List[Track]]) -> List[Playlist]:
    """Attach tracks to each playlist header.

    A playlist whose tracks cannot be fetched is degraded with ``tracks_error``
    instead of failing the listing. ``AuthExpired`` still propagates.
    """
    playlists = []
    for header in headers:
        try:
            tracks = fetch_tracks(header.id)
        except AuthExpired:
            raise
        except ProviderError as e:
            logger.warning(f"Tracks of {provider.value} playlist {header.id} ('{header.name}') unavailable: {e}")
            playlists.append(header.degraded(str(e)))
            continue
        playlists.append(header.with_tracks(tracks))
    return playlists


class CatalogAdapterBase:
    """Shared behavior for all catalog adapters.

    Subclasses implement the listing/search/write primitives; this class adds the
    composed ``fetch_playlists`` and the ISRC/text dispatch of ``search_track``.
    """

    provider: Provider

    def list_playlists(self, credential: Credential) -> List[Playlist]:
        raise NotImplementedError

    def fetch_tracks(self, credential: Credential, playlist_id: str) -> List[Track]:
        raise NotImplementedError

    def search_by_isrc(self, credential: Credential, isrc: str) -> Optional[str]:
        raise NotImplementedError

    def search_by_text(self, credential: Credential, track: Track) -> Optional[str]:
        raise NotImplementedError

    def fetch_playlists(self, credential: Credential) -> List[Playlist]:
        return load_tracks(self.provider, self.list_playlists(credential),
                           lambda playlist_id: self.fetch_tracks(credential, playlist_id))

    def search_track(self, credential: Credential, track: Track,
                     mode: SearchMode = SearchMode.TEXT) -> Optional[str]:
        if mode == SearchMode.ISRC:
            if not track.isrc:
                return None
            return self.search_by_isrc(credential, track.isrc)
        return self.search_by_text(credential, track)


class RestCatalogAdapter(CatalogAdapterBase):
    """Catalog adapter speaking a JSON REST API through ``requests``."""

    base_url = ""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 15.0):
        self._session = session or requests.Session()
        self._timeout = timeout

    def _headers(self, credential: Credential) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
        }

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
            return path_or_url
        return f"{self.base_url}{path_or_url}"

    def _send(self, method: str, path_or_url: str, credential: Credential,
              params: Optional[Dict[str, Any]] = None,
              json_body: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Issue one request, mapping transport failures and throttling/auth statuses.

        Other non-success statuses are returned to the caller, which decides
        which error they become.
        """
        url = self._url(path_or_url)
        try:
            response = self._session.request(
                method,
                url,
                headers=self._headers(credential),
                params=params,
                json=json_body,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransientProviderError(
                f"{self.provider.value} request failed: {e}", provider=self.provider
            ) from e

        status = response.status_code
        if status == 401:
            raise AuthExpired(
                f"{self.provider.value} rejected the credential",
                provider=self.provider, status=status, body=response.text,
            )
        if status == 429:
            raise RateLimited(
                retry_after_ms=parse_retry_after(response.headers.get("Retry-After")),
                message=f"{self.provider.value} rate limited the request",
                provider=self.provider, status=status, body=response.text,
            )
        if status >= 500:
            raise TransientProviderError(
                f"{self.provider.value} returned {status}",
                provider=self.provider, status=status, body=response.text,
            )
        return response

    def _get_json(self, path_or_url: str, credential: Credential,
                  params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._send("GET", path_or_url, credential, params=params)
        if not 200 <= response.status_code < 300:
            raise ProviderError(
                f"{self.provider.value} GET {path_or_url} returned {response.status_code}",
                provider=self.provider, status=response.status_code, body=response.text,
            )
        return self._json(response)

    def _json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponse(
                f"{self.provider.value} returned a non-JSON body",
                provider=self.provider, status=response.status_code, body=response.text,
            ) from e
        if not isinstance(payload, dict):
            raise MalformedResponse(
                f"{self.provider.value} returned {type(payload).__name__} instead of an object",
                provider=self.provider, status=response.status_code, body=response.text,
            )
        return payload

    def _pages(self, path: str, credential: Credential,
               params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """Yield every page of a paginated listing; subclasses define the cursor."""
        raise NotImplementedError
