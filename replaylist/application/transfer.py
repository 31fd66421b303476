import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from replaylist.application.catalog import AuthenticatedCatalog
from replaylist.application.resolver import TrackResolver
from replaylist.crosscutting.config import MAX_WORKERS_CAP
from replaylist.crosscutting.logging import CorrelationContext, log_with_fields, set_stage
from replaylist.crosscutting.metrics import TransferMetrics
from replaylist.domain.entities import MatchMethod, MatchResult, Playlist, Track, TransferReport
from replaylist.domain.errors import (
    CreateFailed,
    InvalidTransition,
    ProviderError,
    ReplaylistError,
)


logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


class TransferState(str, Enum):
    """Lifecycle of a single transfer."""

    CREATED = "created"
    PLAYLIST_CREATED = "playlist_created"
    RESOLVING = "resolving"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: Dict[TransferState, FrozenSet[TransferState]] = {
    TransferState.CREATED: frozenset({TransferState.PLAYLIST_CREATED, TransferState.FAILED}),
    TransferState.PLAYLIST_CREATED: frozenset({TransferState.RESOLVING, TransferState.FAILED}),
    TransferState.RESOLVING: frozenset({TransferState.COMPLETED}),
    TransferState.COMPLETED: frozenset(),
    TransferState.FAILED: frozenset(),
}


class ProgressLogger:
    """Logs resolution progress every ``every`` tracks. Thread-safe."""

    def __init__(self, total_tracks: int, every: int = 10):
        self.total_tracks = total_tracks
        self.every = every
        self.done = 0
        self._lock = threading.Lock()

    def tick(self) -> None:
        with self._lock:
            self.done += 1
            done = self.done
        if done % self.every == 0 or done == self.total_tracks:
            pct = (done / self.total_tracks) * 100 if self.total_tracks else 100.0
            logger.info(f"Resolved {done}/{self.total_tracks} tracks ({pct:.1f}%)")


class TransferOrchestrator:
    """Copies one playlist into a destination catalog.

    The destination playlist is created first. Source tracks are then resolved
    concurrently on a bounded worker pool, each result written to the slot of
    its source index. Appends run afterwards, one at a time, in source order,
    so the destination playlist mirrors the source ordering.

    A failure on one track is recorded on that track and never aborts the
    transfer. A failure to create the destination playlist aborts before any
    track is touched.

    An orchestrator runs once.
    """

    def __init__(self,
                 destination: AuthenticatedCatalog,
                 resolver: Optional[TrackResolver] = None,
                 max_workers: int = 5,
                 metrics: Optional[TransferMetrics] = None,
                 cancel_event: Optional[threading.Event] = None,
                 transfer_id: Optional[str] = None):
        """Initialize orchestrator.

        Args:
            destination: Catalog the playlist is copied into
            resolver: Track resolver, a fresh ``TrackResolver`` by default
            max_workers: Resolution concurrency, clamped to 1..10
            metrics: Metrics collector for this transfer
            cancel_event: Once set, tracks not yet handled are reported as cancelled
            transfer_id: Correlation id attached to every log line
        """
        self.destination = destination
        self.resolver = resolver or TrackResolver()
        self.max_workers = max(1, min(max_workers, MAX_WORKERS_CAP))
        self.metrics = metrics or TransferMetrics()
        self.cancel_event = cancel_event or threading.Event()
        self.transfer_id = transfer_id
        self._state = TransferState.CREATED
        self._state_lock = threading.Lock()

    @property
    def state(self) -> TransferState:
        return self._state

    def _transition(self, target: TransferState) -> None:
        with self._state_lock:
            if target not in _TRANSITIONS[self._state]:
                raise InvalidTransition(
                    f"Cannot move transfer from {self._state.value} to {target.value}"
                )
            logger.debug(f"Transfer state {self._state.value} -> {target.value}")
            self._state = target

    def run(self, playlist: Playlist, name: Optional[str] = None) -> TransferReport:
        """Transfer ``playlist`` into the destination catalog.

        Args:
            playlist: Source playlist with its tracks loaded
            name: Destination playlist name, the source name by default

        Returns:
            TransferReport with matched and unmatched tracks in source order

        Raises:
            InvalidTransition: the orchestrator already ran
            CreateFailed: the destination playlist could not be created
            MissingCredential: no credential for the destination provider
        """
        if self._state != TransferState.CREATED:
            raise InvalidTransition(f"Transfer already {self._state.value}")

        tracks = list(playlist.tracks)
        destination_name = name or playlist.name

        with CorrelationContext(transfer_id=self.transfer_id,
                                provider=self.destination.provider.value,
                                playlist_id=playlist.id,
                                stage='starting'):
            self.metrics.start(len(tracks))
            log_with_fields(logger, 'info', f"Starting transfer of '{playlist.name}'",
                            destination=self.destination.provider.value,
                            total_tracks=len(tracks), max_workers=self.max_workers)

            destination_playlist_id = self._create_playlist(destination_name)
            self._transition(TransferState.PLAYLIST_CREATED)

            self._transition(TransferState.RESOLVING)
            set_stage('resolving')
            results = self._resolve_all(tracks)

            set_stage('appending')
            report = self._append_all(destination_playlist_id, results)

            self._transition(TransferState.COMPLETED)
            set_stage('completed')
            self.metrics.finish()

            counters = self.metrics.snapshot()
            log_with_fields(logger, 'info',
                            f"Transfer completed: {len(report.matched)}/{report.total_tracks} tracks copied",
                            destination_playlist_id=destination_playlist_id,
                            unmatched=report.unmatched_count,
                            isrc_matches=counters.isrc_matches,
                            text_matches=counters.text_matches,
                            cancelled=counters.cancelled,
                            duration_ms=counters.duration_ms)
            return report

    def _create_playlist(self, name: str) -> str:
        set_stage('creating')
        try:
            playlist_id = self.destination.create_playlist(name)
        except CreateFailed as e:
            self._fail(e)
            raise
        except ProviderError as e:
            self._fail(e)
            raise CreateFailed(f"Could not create playlist '{name}': {e}",
                               provider=e.provider, status=e.status, body=e.body) from e
        except ReplaylistError as e:
            self._fail(e)
            raise

        logger.info(f"Created destination playlist {playlist_id}")
        return playlist_id

    def _fail(self, error: Exception) -> None:
        self._transition(TransferState.FAILED)
        set_stage('failed')
        self.metrics.finish()
        logger.error(f"Transfer failed before any track was processed: {error}")

    def _resolve_one(self, track: Track) -> MatchResult:
        if self.cancel_event.is_set():
            return MatchResult(track, failure=CANCELLED)
        try:
            result = self.resolver.resolve(track, self.destination)
        except ReplaylistError as e:
            logger.warning(f"Resolution failed for '{track.title}' by '{track.artist}': {e}")
            return MatchResult(track, failure=f"resolution_failed: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error resolving '{track.title}' by '{track.artist}'")
            return MatchResult(track, failure=f"resolution_failed: {e}")
        logger.debug(f"'{track.title}' -> {result.destination_id} ({result.method.value})")
        return result

    def _resolve_all(self, tracks: List[Track]) -> List[MatchResult]:
        slots: List[Optional[MatchResult]] = [None] * len(tracks)
        if not tracks:
            return []

        progress = ProgressLogger(len(tracks))

        def work(index: int, track: Track) -> None:
            result = self._resolve_one(track)
            slots[index] = result
            self.metrics.record_resolution(result)
            progress.tick()

        workers = min(self.max_workers, len(tracks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='resolve') as executor:
            futures = [
                executor.submit(contextvars.copy_context().run, work, index, track)
                for index, track in enumerate(tracks)
            ]
            for future in futures:
                future.result()

        return [slot for slot in slots if slot is not None]

    def _append_all(self, destination_playlist_id: str,
                    results: List[MatchResult]) -> TransferReport:
        matched: List[MatchResult] = []
        unmatched: List[MatchResult] = []

        for result in results:
            if not result.resolved:
                unmatched.append(result)
                continue

            if self.cancel_event.is_set():
                unmatched.append(replace(result, failure=CANCELLED))
                self.metrics.record_cancelled()
                continue

            try:
                self.destination.append_track(destination_playlist_id, result.destination_id)
            except ReplaylistError as e:
                logger.warning(f"Append failed for '{result.source_track.title}': {e}")
                unmatched.append(replace(result, failure=f"append_failed: {e}"))
                self.metrics.record_append(False)
                continue

            matched.append(result)
            self.metrics.record_append(True)

        return TransferReport(
            destination_playlist_id=destination_playlist_id,
            destination_provider=self.destination.provider,
            matched=tuple(matched),
            unmatched=tuple(unmatched),
            unmatched_count=len(unmatched),
        )


def unmatched_reason(result: MatchResult) -> str:
    """Short human-readable reason for an unmatched result."""
    if result.failure:
        return result.failure
    if result.method == MatchMethod.UNMATCHED:
        return "not_found"
    return "unknown"
