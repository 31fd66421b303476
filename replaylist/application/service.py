import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import requests

from replaylist.application.catalog import AuthenticatedCatalog
from replaylist.application.fetcher import PlaylistFetcher
from replaylist.application.resolver import TrackResolver
from replaylist.application.transfer import TransferOrchestrator
from replaylist.crosscutting.config import Settings
from replaylist.crosscutting.logging import CorrelationContext
from replaylist.crosscutting.metrics import TransferMetrics
from replaylist.domain.entities import Playlist, Provider, TransferReport
from replaylist.domain.errors import PlaylistNotFound
from replaylist.domain.ports import CatalogAdapter, CredentialStore, CredentialSupplier
from replaylist.infrastructure.credentials import StoreCredentialSupplier
from replaylist.infrastructure.providers.registry import build_adapters

logger = logging.getLogger(__name__)


def new_transfer_id() -> str:
    return f"transfer_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


class SyncService:
    """Entry point used by the CLI and the HTTP server."""

    def __init__(self,
                 supplier: CredentialSupplier,
                 adapters: Dict[Provider, CatalogAdapter],
                 max_workers: int = 5,
                 resolver: Optional[TrackResolver] = None):
        self.supplier = supplier
        self.adapters = adapters
        self.max_workers = max_workers
        self.resolver = resolver or TrackResolver()

    @classmethod
    def from_settings(cls, store: CredentialStore, settings: Settings,
                      session: Optional[requests.Session] = None) -> 'SyncService':
        session = session or requests.Session()
        return cls(
            supplier=StoreCredentialSupplier.from_settings(store, settings, session=session),
            adapters=build_adapters(settings, session=session),
            max_workers=settings.max_workers,
        )

    def catalog(self, provider: Provider,
                metrics: Optional[TransferMetrics] = None) -> AuthenticatedCatalog:
        try:
            adapter = self.adapters[provider]
        except KeyError:
            raise ValueError(f"No adapter configured for provider {provider}") from None
        return AuthenticatedCatalog(adapter, self.supplier, metrics=metrics)

    def list_playlists(self, provider: Provider) -> List[Playlist]:
        """All playlists of the user's library, each with its tracks when they could be loaded."""
        with CorrelationContext(provider=provider.value, stage='listing'):
            return PlaylistFetcher(self.catalog(provider)).list_playlists()

    def find_playlist(self, provider: Provider, id_or_name: str) -> Playlist:
        """Look up a playlist by id, then by exact name, then by case-insensitive name."""
        catalog = self.catalog(provider)
        headers = catalog.list_playlists()

        match = next((p for p in headers if p.id == id_or_name), None)
        if match is None:
            match = next((p for p in headers if p.name == id_or_name), None)
        if match is None:
            wanted = id_or_name.casefold()
            match = next((p for p in headers if p.name.casefold() == wanted), None)
        if match is None:
            raise PlaylistNotFound(f"No {provider.value} playlist matches '{id_or_name}'")

        return match.with_tracks(catalog.fetch_tracks(match.id))

    def transfer_playlist(self,
                          source_provider: Provider,
                          destination_provider: Provider,
                          playlist: Playlist,
                          name: Optional[str] = None,
                          cancel_event: Optional[threading.Event] = None,
                          metrics: Optional[TransferMetrics] = None,
                          transfer_id: Optional[str] = None) -> TransferReport:
        """Copy ``playlist`` from ``source_provider`` into ``destination_provider``.

        Args:
            source_provider: Provider the playlist lives in
            destination_provider: Provider to create the copy in
            playlist: Source playlist; its tracks are (re)loaded when missing or incomplete
            name: Destination playlist name, the source name by default
            cancel_event: Set to stop handling further tracks
            metrics: Metrics collector to fill in
            transfer_id: Correlation id, generated when omitted

        Returns:
            TransferReport for the new destination playlist
        """
        transfer_id = transfer_id or new_transfer_id()
        metrics = metrics or TransferMetrics()

        with CorrelationContext(transfer_id=transfer_id, provider=source_provider.value,
                                playlist_id=playlist.id, stage='fetching'):
            if not playlist.tracks or not playlist.tracks_complete:
                logger.info(f"Loading tracks of '{playlist.name}' from {source_provider.value}")
                tracks = self.catalog(source_provider).fetch_tracks(playlist.id)
                playlist = playlist.with_tracks(tracks)

        orchestrator = TransferOrchestrator(
            destination=self.catalog(destination_provider, metrics=metrics),
            resolver=self.resolver,
            max_workers=self.max_workers,
            metrics=metrics,
            cancel_event=cancel_event,
            transfer_id=transfer_id,
        )
        return orchestrator.run(playlist, name=name)
