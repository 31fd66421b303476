import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import requests
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from replaylist.crosscutting.config import ConfigError, Settings
from replaylist.domain.entities import Credential, Provider, SignedAssertion
from replaylist.domain.errors import AuthExpired, MissingCredential
from replaylist.domain.ports import CredentialStore, SigningService

logger = logging.getLogger(__name__)

SPOTIFY_SCOPES = [
    'playlist-read-private',      # Read private playlists
    'playlist-modify-public',     # Create/modify public playlists
    'playlist-modify-private',    # Create/modify private playlists
]
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'


def credential_to_dict(credential: Credential) -> Dict[str, Any]:
    return {
        'access_token': credential.access_token,
        'refresh_token': credential.refresh_token,
        'expires_at': credential.expires_at.timestamp() if credential.expires_at else None,
        'user_token': credential.user_token,
    }


def credential_from_dict(provider: Provider, data: Dict[str, Any]) -> Credential:
    expires_at = data.get('expires_at')
    return Credential(
        provider=provider,
        access_token=data.get('access_token') or '',
        refresh_token=data.get('refresh_token') or None,
        expires_at=datetime.fromtimestamp(float(expires_at)) if expires_at else None,
        user_token=data.get('user_token') or None,
    )


class InMemoryCredentialStore:
    """Thread-safe credential store kept in process memory."""

    def __init__(self, credentials: Optional[Dict[Provider, Credential]] = None):
        self._lock = threading.Lock()
        self._credentials: Dict[Provider, Credential] = dict(credentials or {})

    def get(self, provider: Provider) -> Credential:
        with self._lock:
            credential = self._credentials.get(provider)
        if credential is None:
            raise MissingCredential(provider)
        return credential

    def put(self, credential: Credential) -> None:
        with self._lock:
            self._credentials[credential.provider] = credential

    def delete(self, provider: Provider) -> None:
        with self._lock:
            self._credentials.pop(provider, None)

    def providers(self) -> List[Provider]:
        with self._lock:
            return [p for p in Provider if p in self._credentials]

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {p.value: credential_to_dict(c) for p, c in self._credentials.items()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'InMemoryCredentialStore':
        credentials = {}
        for key, value in (data or {}).items():
            try:
                provider = Provider.parse(key)
            except ValueError:
                logger.warning(f"Ignoring credentials for unknown provider {key!r}")
                continue
            if isinstance(value, dict):
                credentials[provider] = credential_from_dict(provider, value)
        return cls(credentials)


class JsonFileCredentialStore:
    """Credential store backed by a ``tokens.json`` file, one entry per provider."""

    def __init__(self, tokens_file: Path):
        self.tokens_file = Path(tokens_file)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        if not self.tokens_file.exists():
            return {}
        try:
            with open(self.tokens_file, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        try:
            self.tokens_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.tokens_file, 'w') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get(self, provider: Provider) -> Credential:
        with self._lock:
            entry = self._load().get(provider.value)
        if not isinstance(entry, dict) or not (entry.get('access_token') or entry.get('user_token')):
            raise MissingCredential(provider)
        return credential_from_dict(provider, entry)

    def put(self, credential: Credential) -> None:
        with self._lock:
            data = self._load()
            entry = credential_to_dict(credential)
            entry['updated_at'] = datetime.now().isoformat()
            data[credential.provider.value] = entry
            self._save(data)

    def delete(self, provider: Provider) -> None:
        with self._lock:
            data = self._load()
            if data.pop(provider.value, None) is not None:
                self._save(data)

    def providers(self) -> List[Provider]:
        with self._lock:
            data = self._load()
        return [p for p in Provider if isinstance(data.get(p.value), dict)]


class StaticSigningService:
    """Hands out a pre-minted Apple developer token.

    Minting (ES256 with the team's private key) happens outside this system; the
    token and its expiry arrive through configuration.
    """

    def __init__(self, token: Optional[str], expires_at: Optional[datetime] = None):
        self._token = token
        self._expires_at = expires_at

    @classmethod
    def from_settings(cls, settings: Settings) -> 'StaticSigningService':
        return cls(settings.apple_developer_token, settings.apple_developer_token_expires_at)

    def mint_provider_assertion(self) -> SignedAssertion:
        if not self._token:
            raise MissingCredential(Provider.APPLE)
        return SignedAssertion(token=self._token, expires_at=self._expires_at)


class TokenRefresher(Protocol):
    def refresh(self, credential: Credential) -> Credential:
        """Exchange the credential's refresh token for a new access token."""


class SpotifyTokenRefresher:
    """Refreshes Spotify access tokens through spotipy's OAuth manager."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str):
        self._oauth = SpotifyOAuth(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scope=' '.join(SPOTIFY_SCOPES),
            open_browser=False,
            cache_handler=MemoryCacheHandler(),
        )

    def refresh(self, credential: Credential) -> Credential:
        try:
            token_info = self._oauth.refresh_access_token(credential.refresh_token)
        except (SpotifyOauthError, requests.exceptions.RequestException) as e:
            raise AuthExpired(f"Spotify token refresh failed: {e}", provider=Provider.SPOTIFY) from e

        if not token_info or 'access_token' not in token_info:
            raise AuthExpired("Spotify token refresh returned no access token",
                              provider=Provider.SPOTIFY)
        expires_at = token_info.get('expires_at')
        return Credential(
            provider=Provider.SPOTIFY,
            access_token=token_info['access_token'],
            # A new refresh token is only sometimes issued
            refresh_token=token_info.get('refresh_token') or credential.refresh_token,
            expires_at=datetime.fromtimestamp(expires_at) if expires_at else None,
        )


class GoogleTokenRefresher:
    """Refreshes YouTube access tokens against Google's OAuth token endpoint."""

    def __init__(self, client_id: str, client_secret: str,
                 session: Optional[requests.Session] = None, timeout: float = 15.0):
        self._client_id = client_id
        self._client_secret = client_secret
        self._session = session or requests.Session()
        self._timeout = timeout

    def refresh(self, credential: Credential) -> Credential:
        data = {
            'grant_type': 'refresh_token',
            'refresh_token': credential.refresh_token,
            'client_id': self._client_id,
            'client_secret': self._client_secret,
        }
        try:
            response = self._session.post(GOOGLE_TOKEN_URL, data=data, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise AuthExpired(f"Google token refresh failed: {e}", provider=Provider.YOUTUBE) from e

        if response.status_code != 200:
            raise AuthExpired(
                f"Google token refresh failed: {response.status_code}",
                provider=Provider.YOUTUBE, status=response.status_code, body=response.text,
            )
        try:
            tokens = response.json()
        except ValueError as e:
            raise AuthExpired("Google token refresh returned a non-JSON body",
                              provider=Provider.YOUTUBE, body=response.text) from e

        access_token = tokens.get('access_token') if isinstance(tokens, dict) else None
        if not access_token:
            raise AuthExpired("Google token refresh returned no access token",
                              provider=Provider.YOUTUBE, body=response.text)
        return Credential(
            provider=Provider.YOUTUBE,
            access_token=access_token,
            refresh_token=tokens.get('refresh_token') or credential.refresh_token,
            expires_at=datetime.now() + timedelta(seconds=int(tokens.get('expires_in') or 3600)),
        )


class StoreCredentialSupplier:
    """Supplies valid credentials from a store, refreshing them when needed.

    Apple credentials combine the stored Music-User-Token with a developer token
    from the signing service. Spotify and YouTube credentials are refreshed with
    their refresh token. Refreshes are serialized; a caller holding a stale
    credential that another thread already replaced gets the new one back
    without a second refresh.
    """

    def __init__(self, store: CredentialStore,
                 signing_service: Optional[SigningService] = None,
                 refreshers: Optional[Dict[Provider, TokenRefresher]] = None):
        self._store = store
        self._signing_service = signing_service
        self._refreshers = dict(refreshers or {})
        self._lock = threading.Lock()
        self._assertion: Optional[SignedAssertion] = None

    @classmethod
    def from_settings(cls, store: CredentialStore, settings: Settings,
                      session: Optional[requests.Session] = None) -> 'StoreCredentialSupplier':
        refreshers: Dict[Provider, TokenRefresher] = {}
        if settings.spotify_client_id and settings.spotify_client_secret:
            refreshers[Provider.SPOTIFY] = SpotifyTokenRefresher(
                settings.spotify_client_id, settings.spotify_client_secret,
                settings.spotify_redirect_uri)
        if settings.google_client_id and settings.google_client_secret:
            refreshers[Provider.YOUTUBE] = GoogleTokenRefresher(
                settings.google_client_id, settings.google_client_secret,
                session=session, timeout=settings.http_timeout)
        return cls(store, StaticSigningService.from_settings(settings), refreshers)

    def _developer_token(self, force: bool = False) -> SignedAssertion:
        if self._signing_service is None:
            raise MissingCredential(Provider.APPLE)
        assertion = self._assertion
        expired = assertion is not None and assertion.expires_at is not None \
            and assertion.expires_at <= datetime.now() + timedelta(seconds=60)
        if force or assertion is None or expired:
            assertion = self._signing_service.mint_provider_assertion()
            self._assertion = assertion
        return assertion

    def _apple_credential(self, force: bool = False) -> Credential:
        stored = self._store.get(Provider.APPLE)
        if not stored.user_token:
            raise MissingCredential(Provider.APPLE)
        assertion = self._developer_token(force=force)
        return Credential(
            provider=Provider.APPLE,
            access_token=assertion.token,
            expires_at=assertion.expires_at,
            user_token=stored.user_token,
        )

    def get_credential(self, provider: Provider) -> Credential:
        if provider == Provider.APPLE:
            with self._lock:
                return self._apple_credential()
        credential = self._store.get(provider)
        if credential.is_expired() and provider in self._refreshers and credential.refresh_token:
            return self.refresh_credential(provider, credential)
        return credential

    def refresh_credential(self, provider: Provider, stale: Credential) -> Credential:
        with self._lock:
            if provider == Provider.APPLE:
                current = self._assertion
                if current is not None and current.token != stale.access_token:
                    return self._apple_credential()
                logger.info("Re-minting Apple developer token")
                fresh = self._apple_credential(force=True)
            else:
                current = self._store.get(provider)
                if current.access_token != stale.access_token:
                    return current
                refresher = self._refreshers.get(provider)
                if refresher is None or not current.refresh_token:
                    raise AuthExpired(f"{provider.value} credential expired and cannot be refreshed",
                                      provider=provider)
                logger.info(f"Refreshing {provider.value} access token")
                fresh = refresher.refresh(current)
                self._store.put(fresh)
        return fresh
