import logging
from typing import Any, Callable, List, Optional

from replaylist.crosscutting.metrics import TransferMetrics
from replaylist.domain.entities import Playlist, Provider, Track
from replaylist.domain.errors import AuthExpired
from replaylist.domain.ports import CatalogAdapter, CredentialSupplier, SearchMode

logger = logging.getLogger(__name__)


class AuthenticatedCatalog:
    """Binds a catalog adapter to a credential supplier.

    Every call fetches a credential, and an ``AuthExpired`` answer triggers
    exactly one refresh-and-retry. A second ``AuthExpired`` propagates.
    """

    def __init__(self, adapter: CatalogAdapter, supplier: CredentialSupplier,
                 metrics: Optional[TransferMetrics] = None):
        self.adapter = adapter
        self.supplier = supplier
        self.metrics = metrics

    @property
    def provider(self) -> Provider:
        return self.adapter.provider

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        credential = self.supplier.get_credential(self.provider)
        try:
            return fn(credential, *args)
        except AuthExpired:
            logger.warning(f"{self.provider.value} credential expired during {operation}, refreshing")
            fresh = self.supplier.refresh_credential(self.provider, credential)
            if self.metrics is not None:
                self.metrics.record_refresh()
            return fn(fresh, *args)

    def list_playlists(self) -> List[Playlist]:
        return self._call("list_playlists", self.adapter.list_playlists)

    def fetch_tracks(self, playlist_id: str) -> List[Track]:
        return self._call("fetch_tracks", self.adapter.fetch_tracks, playlist_id)

    def create_playlist(self, name: str) -> str:
        return self._call("create_playlist", self.adapter.create_playlist, name)

    def search_track(self, track: Track, mode: SearchMode = SearchMode.TEXT) -> Optional[str]:
        return self._call("search_track", self.adapter.search_track, track, mode)

    def append_track(self, playlist_id: str, destination_track_id: str) -> None:
        return self._call("append_track", self.adapter.append_track, playlist_id, destination_track_id)
