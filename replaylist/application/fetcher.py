import logging
from typing import List

from replaylist.application.catalog import AuthenticatedCatalog
from replaylist.domain.entities import Playlist
from replaylist.infrastructure.providers.base import load_tracks

logger = logging.getLogger(__name__)


class PlaylistFetcher:
    """Lists a library's playlists together with their tracks.

    Listing the playlists themselves must succeed. Loading one playlist's
    tracks may fail; that playlist is then returned with no tracks and a
    ``tracks_error`` rather than failing the whole listing.
    """

    def __init__(self, catalog: AuthenticatedCatalog):
        self.catalog = catalog

    def list_playlists(self) -> List[Playlist]:
        headers = self.catalog.list_playlists()
        logger.info(f"Found {len(headers)} {self.catalog.provider.value} playlists")
        # each track fetch goes through the catalog so it gets its own refresh-and-retry
        return load_tracks(self.catalog.provider, headers, self.catalog.fetch_tracks)
