import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _clear_provider_env():
    """Ensure provider secrets and replaylist settings do not leak across tests.
    A developer's .env may set these variables; clear before each test and
    restore afterwards so tests that set them explicitly stay deterministic.
    """
    keys = [
        'APPLE_DEVELOPER_TOKEN', 'APPLE_DEVELOPER_TOKEN_EXPIRES_AT', 'APPLE_STOREFRONT',
        'SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REDIRECT_URI', 'SPOTIFY_MARKET',
        'GOOGLE_CLIENT_ID', 'GOOGLE_CLIENT_SECRET', 'SESSION_SECRET_KEY',
        'REPLAYLIST_CONFIG_DIR', 'REPLAYLIST_MAX_WORKERS', 'REPLAYLIST_HTTP_TIMEOUT',
        'REPLAYLIST_LOG_LEVEL',
    ]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
