import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


class ConfigError(Exception):
    """Configuration error."""
    pass


MAX_WORKERS_CAP = 10


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass
class Settings:
    """Runtime configuration, read from the environment."""

    config_dir: Path = field(default_factory=lambda: Path.home() / '.replaylist')
    max_workers: int = 5
    http_timeout: float = 15.0
    log_level: str = 'INFO'

    apple_developer_token: Optional[str] = None
    apple_developer_token_expires_at: Optional[datetime] = None
    apple_storefront: str = 'us'

    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_redirect_uri: str = 'http://localhost:8080/callback'
    spotify_market: Optional[str] = None

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None

    session_secret_key: Optional[str] = None

    @property
    def tokens_file(self) -> Path:
        return self.config_dir / 'tokens.json'

    @classmethod
    def from_env(cls) -> 'Settings':
        """Build settings from environment variables."""
        config_dir = _env_str('REPLAYLIST_CONFIG_DIR')
        expires_raw = _env_int('APPLE_DEVELOPER_TOKEN_EXPIRES_AT', 0)

        max_workers = _env_int('REPLAYLIST_MAX_WORKERS', 5)
        if max_workers < 1:
            raise ConfigError("REPLAYLIST_MAX_WORKERS must be at least 1")

        return cls(
            config_dir=Path(config_dir).expanduser() if config_dir else Path.home() / '.replaylist',
            max_workers=min(max_workers, MAX_WORKERS_CAP),
            http_timeout=_env_float('REPLAYLIST_HTTP_TIMEOUT', 15.0),
            log_level=(_env_str('REPLAYLIST_LOG_LEVEL', 'INFO') or 'INFO').upper(),
            apple_developer_token=_env_str('APPLE_DEVELOPER_TOKEN'),
            apple_developer_token_expires_at=datetime.fromtimestamp(expires_raw) if expires_raw else None,
            apple_storefront=_env_str('APPLE_STOREFRONT', 'us'),
            spotify_client_id=_env_str('SPOTIFY_CLIENT_ID'),
            spotify_client_secret=_env_str('SPOTIFY_CLIENT_SECRET'),
            spotify_redirect_uri=_env_str('SPOTIFY_REDIRECT_URI', 'http://localhost:8080/callback'),
            spotify_market=_env_str('SPOTIFY_MARKET'),
            google_client_id=_env_str('GOOGLE_CLIENT_ID'),
            google_client_secret=_env_str('GOOGLE_CLIENT_SECRET'),
            session_secret_key=_env_str('SESSION_SECRET_KEY'),
        )

    def validation(self) -> Dict[str, bool]:
        """Which optional pieces of configuration are present."""
        return {
            'apple_developer_token': bool(self.apple_developer_token),
            'spotify_refresh': bool(self.spotify_client_id and self.spotify_client_secret),
            'youtube_refresh': bool(self.google_client_id and self.google_client_secret),
            'session_secret_key': bool(self.session_secret_key),
        }

    def summary(self) -> Dict[str, Any]:
        """Configuration summary (without sensitive data)."""
        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'max_workers': self.max_workers,
            'http_timeout': self.http_timeout,
            'apple_storefront': self.apple_storefront,
            'validation': self.validation(),
        }


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load a ``.env`` file (if any) into the environment, then read settings."""
    if env_file:
        if not Path(env_file).exists():
            raise ConfigError(f"Environment file not found: {env_file}")
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)
    return Settings.from_env()


# Global instance, created lazily
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def setup_config(settings: Optional[Settings] = None, env_file: Optional[str] = None) -> Settings:
    """Replace the global settings, optionally loading a ``.env`` file first."""
    global _settings
    _settings = settings or load_settings(env_file)
    return _settings
