import logging
import os
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import requests
from flask import Flask, jsonify, redirect, request, session
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from replaylist.application.service import SyncService, new_transfer_id
from replaylist.crosscutting.config import Settings, get_settings
from replaylist.crosscutting.metrics import TransferMetrics
from replaylist.crosscutting.reporting import playlist_to_json, report_to_json
from replaylist.domain.entities import Credential, Provider
from replaylist.domain.errors import (
    CreateFailed,
    MissingCredential,
    PlaylistNotFound,
    ProviderError,
    ReplaylistError,
)
from replaylist.infrastructure.credentials import (
    SPOTIFY_SCOPES,
    InMemoryCredentialStore,
    StaticSigningService,
)

SESSION_CREDENTIALS_KEY = 'credentials'


class SessionCredentialStore(InMemoryCredentialStore):
    """Credential store backed by the signed Flask session cookie.

    Loaded once per request; worker threads only ever see the in-memory copy.
    Call ``save()`` from the request thread to write changes (such as refreshed
    tokens) back into the cookie.
    """

    @classmethod
    def load(cls) -> 'SessionCredentialStore':
        return cls.from_dict(session.get(SESSION_CREDENTIALS_KEY))

    def save(self) -> None:
        session[SESSION_CREDENTIALS_KEY] = self.to_dict()


def error_response(error: Exception) -> Tuple[Any, int]:
    """Map an error to a JSON body and HTTP status."""
    if isinstance(error, MissingCredential):
        status = 401
    elif isinstance(error, PlaylistNotFound):
        status = 404
    elif isinstance(error, (CreateFailed, ProviderError)):
        status = 502
    elif isinstance(error, ValueError):
        status = 400
    else:
        status = 500
    body: Dict[str, Any] = {'error': type(error).__name__, 'details': str(error)}
    if isinstance(error, ProviderError) and error.status is not None:
        body['providerStatus'] = error.status
    return jsonify(body), status


class HTTPServer:
    """HTTP server for replaylist: session logins, playlist listing and transfers."""

    def __init__(self, host: str = 'localhost', port: int = 8080, debug: bool = False,
                 settings: Optional[Settings] = None,
                 http_session: Optional[requests.Session] = None,
                 secure_cookies: bool = True):
        """Initialize HTTP server."""
        self.host = host
        self.port = port
        self.debug = debug
        self.settings = settings or get_settings()
        self.http_session = http_session or requests.Session()
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self.app = Flask(__name__)
        secret_key = self.settings.session_secret_key
        if not secret_key:
            self.logger.warning("SESSION_SECRET_KEY not set, sessions will not survive a restart")
            secret_key = secrets.token_hex(32)
        self.app.secret_key = secret_key
        self.app.config.update(
            SESSION_COOKIE_NAME='replaylist.sid',
            SESSION_COOKIE_HTTPONLY=True,
            SESSION_COOKIE_SECURE=secure_cookies,
            SESSION_COOKIE_SAMESITE='None' if secure_cookies else 'Lax',
        )

        self._setup_routes()

    def build_service(self, store: SessionCredentialStore) -> SyncService:
        return SyncService.from_settings(store, self.settings, session=self.http_session)

    def _spotify_oauth(self) -> SpotifyOAuth:
        if not self.settings.spotify_client_id or not self.settings.spotify_client_secret:
            raise ValueError("Spotify client credentials not configured")
        return SpotifyOAuth(
            client_id=self.settings.spotify_client_id,
            client_secret=self.settings.spotify_client_secret,
            redirect_uri=self.settings.spotify_redirect_uri,
            scope=' '.join(SPOTIFY_SCOPES),
            open_browser=False,
            cache_handler=MemoryCacheHandler(),
        )

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/api/login/status', methods=['GET'])
        def login_status():
            store = SessionCredentialStore.load()
            logged_in = set(store.providers())
            return jsonify({p.value: p in logged_in for p in Provider}), 200

        @self.app.route('/api/logout/<provider>', methods=['POST'])
        def logout(provider: str):
            try:
                parsed = Provider.parse(provider)
            except ValueError as e:
                return error_response(e)
            store = SessionCredentialStore.load()
            store.delete(parsed)
            store.save()
            return jsonify({'message': 'logout ok'}), 200

        @self.app.route('/api/logout_all', methods=['POST'])
        def logout_all():
            session.pop(SESSION_CREDENTIALS_KEY, None)
            return jsonify({'message': 'logout all ok'}), 200

        @self.app.route('/api/apple/devtoken', methods=['GET'])
        def apple_devtoken():
            """Developer token for MusicKit JS in the browser."""
            try:
                assertion = StaticSigningService.from_settings(self.settings).mint_provider_assertion()
            except MissingCredential:
                self.logger.error("Apple developer token requested but APPLE_DEVELOPER_TOKEN is not set")
                return jsonify({'error': 'Apple developer token not configured'}), 500
            return jsonify({'token': assertion.token}), 200

        @self.app.route('/api/apple/usertoken', methods=['POST'])
        def apple_usertoken():
            """Store the Music-User-Token obtained by MusicKit JS."""
            payload = request.get_json(silent=True) or {}
            token = payload.get('token')
            if not token:
                return jsonify({'error': 'Missing token'}), 400
            store = SessionCredentialStore.load()
            store.put(Credential(provider=Provider.APPLE, access_token='', user_token=token))
            store.save()
            self.logger.info("Stored Apple Music user token in session")
            return '', 200

        @self.app.route('/api/login/<provider>/token', methods=['POST'])
        def save_tokens(provider: str):
            """Store OAuth tokens obtained elsewhere for Spotify or YouTube."""
            try:
                parsed = Provider.parse(provider)
            except ValueError as e:
                return error_response(e)
            if parsed == Provider.APPLE:
                return jsonify({'error': 'Use /api/apple/usertoken for Apple Music'}), 400

            payload = request.get_json(silent=True) or {}
            access_token = payload.get('access_token')
            if not access_token:
                return jsonify({'error': 'Missing access_token'}), 400
            expires_in = payload.get('expires_in')
            expires_at = None
            if expires_in:
                try:
                    expires_at = datetime.now() + timedelta(seconds=int(expires_in))
                except (TypeError, ValueError):
                    return error_response(ValueError(f"expires_in must be a number of seconds, got {expires_in!r}"))

            store = SessionCredentialStore.load()
            store.put(Credential(
                provider=parsed,
                access_token=access_token,
                refresh_token=payload.get('refresh_token'),
                expires_at=expires_at,
            ))
            store.save()
            return jsonify({'message': 'login ok'}), 200

        @self.app.route('/api/login/spotify', methods=['GET'])
        def spotify_auth():
            """Initiate Spotify OAuth flow."""
            try:
                oauth = self._spotify_oauth()
            except ValueError as e:
                return jsonify({'error': str(e)}), 500
            state = secrets.token_urlsafe(16)
            session['spotify_oauth_state'] = state
            return jsonify({
                'auth_url': oauth.get_authorize_url(state=state),
                'redirect_uri': self.settings.spotify_redirect_uri
            }), 200

        @self.app.route('/api/login/spotify/callback', methods=['GET'])
        def spotify_callback():
            """OAuth callback endpoint for Spotify."""
            error = request.args.get('error')
            if error:
                self.logger.error(f"OAuth error: {error}")
                return jsonify({'error': 'OAuth authorization failed', 'details': error}), 400

            code = request.args.get('code')
            if not code:
                return jsonify({'error': 'Missing authorization code'}), 400
            expected_state = session.pop('spotify_oauth_state', None)
            if expected_state and request.args.get('state') != expected_state:
                return jsonify({'error': 'OAuth state mismatch'}), 400

            try:
                oauth = self._spotify_oauth()
                tokens = oauth.get_access_token(code, as_dict=True, check_cache=False)
            except ValueError as e:
                return jsonify({'error': str(e)}), 500
            except SpotifyOauthError as e:
                self.logger.error(f"Token exchange failed: {e}")
                return jsonify({'error': 'Failed to exchange code for tokens'}), 502

            store = SessionCredentialStore.load()
            store.put(Credential(
                provider=Provider.SPOTIFY,
                access_token=tokens['access_token'],
                refresh_token=tokens.get('refresh_token'),
                expires_at=datetime.now() + timedelta(seconds=int(tokens.get('expires_in') or 3600)),
            ))
            store.save()
            self.logger.info("Spotify OAuth tokens saved to session")
            return redirect('/')

        @self.app.route('/api/<provider>/playlists', methods=['GET'])
        def list_playlists(provider: str):
            store = SessionCredentialStore.load()
            try:
                parsed = Provider.parse(provider)
                playlists = self.build_service(store).list_playlists(parsed)
            except (ReplaylistError, ValueError) as e:
                self.logger.warning(f"Listing {provider} playlists failed: {e}")
                return error_response(e)
            finally:
                store.save()

            include_tracks = request.args.get('tracks', '1') not in ('0', 'false', 'no')
            return jsonify({
                'provider': parsed.value,
                'playlists': [playlist_to_json(p, include_tracks=include_tracks) for p in playlists],
            }), 200

        @self.app.route('/api/transfer', methods=['POST'])
        def transfer():
            """Copy one playlist. Body: {source, target, playlistId, name?}."""
            payload = request.get_json(silent=True) or {}
            store = SessionCredentialStore.load()
            try:
                source = Provider.parse(payload.get('source', ''))
                target = Provider.parse(payload.get('target', ''))
                playlist_id = payload.get('playlistId')
                if not playlist_id:
                    raise ValueError("Missing playlistId")
                if source == target:
                    raise ValueError("Source and target providers must be different")

                service = self.build_service(store)
                playlist = service.find_playlist(source, playlist_id)
                transfer_id = new_transfer_id()
                metrics = TransferMetrics()
                report = service.transfer_playlist(source, target, playlist,
                                                   name=payload.get('name'),
                                                   metrics=metrics,
                                                   transfer_id=transfer_id)
            except (ReplaylistError, ValueError) as e:
                self.logger.warning(f"Transfer failed: {e}")
                return error_response(e)
            finally:
                store.save()

            return jsonify(report_to_json(report, metrics=metrics, transfer_id=transfer_id)), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'replaylist HTTP interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'login_status': '/api/login/status',
                    'spotify_login': '/api/login/spotify',
                    'apple_devtoken': '/api/apple/devtoken',
                    'playlists': '/api/<provider>/playlists',
                    'transfer': '/api/transfer'
                }
            }), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting replaylist HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(settings: Optional[Settings] = None,
               http_session: Optional[requests.Session] = None,
               secure_cookies: bool = True) -> Flask:
    """Create Flask app (used by tests and WSGI servers)."""
    server = HTTPServer(settings=settings, http_session=http_session, secure_cookies=secure_cookies)
    return server.app
