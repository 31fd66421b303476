import logging
from typing import Optional, Protocol

from replaylist.domain.entities import MatchMethod, MatchResult, Provider, Track
from replaylist.domain.errors import ProviderError, ResolutionFailed
from replaylist.domain.ports import SearchMode

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"


class SearchableCatalog(Protocol):
    provider: Provider

    def search_track(self, track: Track, mode: SearchMode = SearchMode.TEXT) -> Optional[str]:
        ...


class TrackResolver:
    """Resolves a source track to a destination catalog id.

    Precision first: an ISRC lookup is always tried before text search when the
    source track has an ISRC, and text search runs only when that lookup finds
    nothing. Text search is a heuristic; a false positive there is accepted.
    """

    def resolve(self, source: Track, catalog: SearchableCatalog) -> MatchResult:
        """Return a ``MatchResult`` for ``source`` in ``catalog``.

        Raises:
            ResolutionFailed: a provider call errored (as opposed to finding nothing)
        """
        try:
            if source.isrc:
                destination_id = catalog.search_track(source, SearchMode.ISRC)
                if destination_id:
                    return MatchResult(source, destination_id, MatchMethod.ISRC)
                logger.debug(f"No ISRC match for {source.isrc}, falling back to text search")

            destination_id = catalog.search_track(source, SearchMode.TEXT)
            if destination_id:
                return MatchResult(source, destination_id, MatchMethod.TITLE_ARTIST_SEARCH)
        except ProviderError as e:
            raise ResolutionFailed(
                f"Could not resolve '{source.title}' by '{source.artist}': {e}",
                provider=e.provider, status=e.status, body=e.body,
            ) from e

        return MatchResult(source, None, MatchMethod.UNMATCHED, failure=NOT_FOUND)
