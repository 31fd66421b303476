from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence, Tuple


class Provider(str, Enum):
    """Music services a playlist can be read from or written to."""

    APPLE = "apple"
    SPOTIFY = "spotify"
    YOUTUBE = "youtube"

    @classmethod
    def parse(cls, value: str) -> "Provider":
        key = (value or "").strip().lower()
        aliases = {
            "apple_music": cls.APPLE,
            "applemusic": cls.APPLE,
            "youtube_music": cls.YOUTUBE,
            "ytmusic": cls.YOUTUBE,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown provider: {value!r}") from None


class MatchMethod(str, Enum):
    """How a source track was resolved in the destination catalog."""

    ISRC = "isrc"
    TITLE_ARTIST_SEARCH = "title_artist_search"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class Track:
    """Provider-agnostic track. ``isrc`` is authoritative for matching when present."""

    title: str = ""
    artist: str = ""
    isrc: Optional[str] = None
    source_id: Optional[str] = None


@dataclass(frozen=True)
class Playlist:
    """Provider-agnostic playlist.

    ``track_count`` carries provider metadata when the provider reports it.
    Once every page of tracks has been fetched, ``with_tracks`` raises it to at
    least ``len(tracks)``; a playlist whose tracks could not be fetched keeps
    the metadata count and records ``tracks_error`` instead.
    """

    id: str
    name: str
    cover_url: str = ""
    track_count: int = 0
    tracks: Tuple[Track, ...] = ()
    tracks_error: Optional[str] = None

    @property
    def tracks_complete(self) -> bool:
        return self.tracks_error is None

    def with_tracks(self, tracks: Sequence[Track]) -> "Playlist":
        tracks = tuple(tracks)
        return replace(
            self,
            tracks=tracks,
            track_count=max(self.track_count, len(tracks)),
            tracks_error=None,
        )

    def degraded(self, reason: str) -> "Playlist":
        return replace(self, tracks=(), tracks_error=reason or "unknown error")


@dataclass(frozen=True)
class MatchResult:
    """Outcome of resolving one source track. Produced once per track per transfer."""

    source_track: Track
    destination_id: Optional[str] = None
    method: MatchMethod = MatchMethod.UNMATCHED
    failure: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return bool(self.destination_id) and self.method != MatchMethod.UNMATCHED


@dataclass(frozen=True)
class TransferReport:
    """Immutable summary of one transfer.

    ``matched`` holds the tracks that were resolved and appended, ``unmatched``
    everything else; both keep the source playlist order.
    """

    destination_playlist_id: str
    destination_provider: Provider
    matched: Tuple[MatchResult, ...] = ()
    unmatched: Tuple[MatchResult, ...] = ()
    unmatched_count: int = 0

    @property
    def total_tracks(self) -> int:
        return len(self.matched) + self.unmatched_count


@dataclass(frozen=True)
class Credential:
    """Bearer credential for one provider.

    For Apple Music ``access_token`` is the developer token and ``user_token``
    the Music-User-Token.
    """

    provider: Provider
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    user_token: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None, leeway_sec: int = 60) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now()
        return now + timedelta(seconds=leeway_sec) >= self.expires_at


@dataclass(frozen=True)
class SignedAssertion:
    """Opaque service-to-service token with a known expiry horizon."""

    token: str
    expires_at: Optional[datetime] = None
