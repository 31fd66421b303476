from __future__ import annotations

from enum import Enum
from typing import List, Optional, Protocol

from .entities import Credential, Playlist, Provider, SignedAssertion, Track


class SearchMode(str, Enum):
    """Query mode for destination catalog search."""

    ISRC = "isrc"
    TEXT = "text"


class CatalogAdapter(Protocol):
    """Port defining the contract every provider adapter implements.

    Implementations are stateless with respect to users: every call is a function
    of the credential passed in and the request. They map provider payloads into
    domain entities and provider failures into ``replaylist.domain.errors``.
    """

    provider: Provider

    def list_playlists(self, credential: Credential) -> List[Playlist]:
        """Return headers of every playlist owned by the user, all pages."""

    def fetch_tracks(self, credential: Credential, playlist_id: str) -> List[Track]:
        """Return every track of the playlist in provider order, all pages."""

    def fetch_playlists(self, credential: Credential) -> List[Playlist]:
        """Return every owned playlist with its complete track listing."""

    def create_playlist(self, credential: Credential, name: str) -> str:
        """Create an empty playlist and return its id."""

    def search_track(self, credential: Credential, track: Track,
                     mode: SearchMode = SearchMode.TEXT) -> Optional[str]:
        """Return the top-ranked destination track id for ``track`` or None."""

    def append_track(self, credential: Credential, playlist_id: str,
                     destination_track_id: str) -> None:
        """Append one catalog track to the playlist."""


class CredentialStore(Protocol):
    """Narrow capability over wherever credentials are kept."""

    def get(self, provider: Provider) -> Credential:
        """Return the stored credential or raise MissingCredential."""

    def put(self, credential: Credential) -> None:
        """Store or replace the credential for ``credential.provider``."""

    def delete(self, provider: Provider) -> None:
        """Forget the credential for the provider, if any."""

    def providers(self) -> List[Provider]:
        """Providers that currently have a stored credential."""


class SigningService(Protocol):
    """Produces Apple's service-to-service assertion (developer token)."""

    def mint_provider_assertion(self) -> SignedAssertion:
        """Return a signed token and its expiry horizon."""


class CredentialSupplier(Protocol):
    """Produces a valid bearer credential per provider, refreshing on demand."""

    def get_credential(self, provider: Provider) -> Credential:
        """Return a usable credential or raise MissingCredential."""

    def refresh_credential(self, provider: Provider, stale: Credential) -> Credential:
        """Replace ``stale`` with a refreshed credential and return it."""
