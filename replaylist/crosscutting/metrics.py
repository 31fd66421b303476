import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from replaylist.domain.entities import MatchMethod, MatchResult


@dataclass
class TransferCounters:
    """Counters for a single transfer."""
    total_tracks: int = 0
    isrc_matches: int = 0
    text_matches: int = 0
    not_found: int = 0
    resolution_failures: int = 0
    cancelled: int = 0
    appended: int = 0
    append_failures: int = 0
    credential_refreshes: int = 0
    duration_ms: int = 0

    @property
    def match_rate(self) -> float:
        """Share of tracks that ended up in the destination playlist."""
        if self.total_tracks == 0:
            return 0.0
        return self.appended / self.total_tracks


class TransferMetrics:
    """Collects metrics for one transfer. Safe to update from worker threads."""

    def __init__(self, total_tracks: int = 0):
        self._lock = threading.Lock()
        self._counters = TransferCounters(total_tracks=total_tracks)
        self._started: Optional[float] = None

    def start(self, total_tracks: Optional[int] = None) -> None:
        with self._lock:
            self._started = time.monotonic()
            if total_tracks is not None:
                self._counters.total_tracks = total_tracks

    def finish(self) -> None:
        with self._lock:
            if self._started is not None:
                self._counters.duration_ms = int((time.monotonic() - self._started) * 1000)

    def record_resolution(self, result: MatchResult) -> None:
        """Record the outcome of resolving one track."""
        with self._lock:
            if result.method == MatchMethod.ISRC:
                self._counters.isrc_matches += 1
            elif result.method == MatchMethod.TITLE_ARTIST_SEARCH:
                self._counters.text_matches += 1
            elif result.failure == 'cancelled':
                self._counters.cancelled += 1
            elif result.failure and result.failure.startswith('resolution_failed'):
                self._counters.resolution_failures += 1
            else:
                self._counters.not_found += 1

    def record_append(self, success: bool) -> None:
        with self._lock:
            if success:
                self._counters.appended += 1
            else:
                self._counters.append_failures += 1

    def record_cancelled(self) -> None:
        """Record a resolved track whose append was skipped by cancellation."""
        with self._lock:
            self._counters.cancelled += 1

    def record_refresh(self) -> None:
        with self._lock:
            self._counters.credential_refreshes += 1

    @contextmanager
    def timed(self, total_tracks: Optional[int] = None):
        """Context manager measuring the transfer's wall-clock duration."""
        self.start(total_tracks)
        try:
            yield self
        finally:
            self.finish()

    def snapshot(self) -> TransferCounters:
        with self._lock:
            return TransferCounters(**asdict(self._counters))

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        counters = self.snapshot()
        data = asdict(counters)
        data['match_rate'] = counters.match_rate
        return data
