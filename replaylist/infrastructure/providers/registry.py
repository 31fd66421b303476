from typing import Dict, Optional

import requests

from replaylist.crosscutting.config import Settings, get_settings
from replaylist.domain.entities import Provider
from replaylist.domain.ports import CatalogAdapter
from replaylist.infrastructure.providers.apple import AppleMusicAdapter
from replaylist.infrastructure.providers.spotify import SpotifyAdapter
from replaylist.infrastructure.providers.youtube import YouTubeMusicAdapter


def build_adapters(settings: Optional[Settings] = None,
                   session: Optional[requests.Session] = None) -> Dict[Provider, CatalogAdapter]:
    """Create one adapter per provider, sharing a single HTTP session for the REST ones."""
    settings = settings or get_settings()
    session = session or requests.Session()
    return {
        Provider.APPLE: AppleMusicAdapter(session=session, timeout=settings.http_timeout,
                                          storefront=settings.apple_storefront),
        Provider.SPOTIFY: SpotifyAdapter(timeout=settings.http_timeout,
                                         market=settings.spotify_market),
        Provider.YOUTUBE: YouTubeMusicAdapter(session=session, timeout=settings.http_timeout),
    }
