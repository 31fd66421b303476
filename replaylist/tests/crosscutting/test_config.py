import os
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from replaylist.crosscutting.config import (
    MAX_WORKERS_CAP,
    ConfigError,
    Settings,
    get_settings,
    load_settings,
    setup_config,
)


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        settings = Settings.from_env()

        assert settings.max_workers == 5
        assert settings.http_timeout == 15.0
        assert settings.log_level == 'INFO'
        assert settings.apple_storefront == 'us'
        assert settings.config_dir == Path.home() / '.replaylist'
        assert settings.tokens_file == Path.home() / '.replaylist' / 'tokens.json'
        assert settings.apple_developer_token is None

    @patch.dict(os.environ, {
        'REPLAYLIST_CONFIG_DIR': '/tmp/replaylist-test',
        'REPLAYLIST_MAX_WORKERS': '8',
        'REPLAYLIST_HTTP_TIMEOUT': '2.5',
        'REPLAYLIST_LOG_LEVEL': 'debug',
        'APPLE_DEVELOPER_TOKEN': 'eyJdev',
        'APPLE_DEVELOPER_TOKEN_EXPIRES_AT': '1900000000',
        'APPLE_STOREFRONT': 'jp',
        'SPOTIFY_CLIENT_ID': 'cid',
        'SPOTIFY_CLIENT_SECRET': 'csecret',
        'SPOTIFY_MARKET': 'JP',
    })
    def test_reads_environment(self):
        settings = Settings.from_env()

        assert settings.config_dir == Path('/tmp/replaylist-test')
        assert settings.max_workers == 8
        assert settings.http_timeout == 2.5
        assert settings.log_level == 'DEBUG'
        assert settings.apple_developer_token == 'eyJdev'
        assert settings.apple_developer_token_expires_at == datetime.fromtimestamp(1900000000)
        assert settings.apple_storefront == 'jp'
        assert settings.spotify_market == 'JP'
        assert settings.validation()['spotify_refresh'] is True
        assert settings.validation()['youtube_refresh'] is False

    @patch.dict(os.environ, {'REPLAYLIST_MAX_WORKERS': '64'})
    def test_max_workers_is_capped(self):
        assert Settings.from_env().max_workers == MAX_WORKERS_CAP

    @patch.dict(os.environ, {'REPLAYLIST_MAX_WORKERS': '0'})
    def test_max_workers_below_one_is_rejected(self):
        with pytest.raises(ConfigError):
            Settings.from_env()

    @patch.dict(os.environ, {'REPLAYLIST_HTTP_TIMEOUT': 'soon'})
    def test_non_numeric_value_is_rejected(self):
        with pytest.raises(ConfigError, match='REPLAYLIST_HTTP_TIMEOUT'):
            Settings.from_env()

    def test_summary_hides_secrets(self):
        settings = Settings(spotify_client_secret='csecret', apple_developer_token='eyJdev')

        summary = settings.summary()

        assert 'csecret' not in str(summary)
        assert 'eyJdev' not in str(summary)
        assert summary['validation']['apple_developer_token'] is True


class TestLoadSettings:
    """Tests for .env loading."""

    def test_env_file_values_are_loaded(self, tmp_path):
        env_file = tmp_path / '.env'
        env_file.write_text('APPLE_STOREFRONT=gb\nREPLAYLIST_MAX_WORKERS=3\n')

        settings = load_settings(str(env_file))

        assert settings.apple_storefront == 'gb'
        assert settings.max_workers == 3

    def test_missing_env_file_is_config_error(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(str(tmp_path / 'nope.env'))

    def test_setup_config_replaces_global_settings(self):
        custom = Settings(apple_storefront='fr')

        assert setup_config(custom) is custom
        assert get_settings() is custom
