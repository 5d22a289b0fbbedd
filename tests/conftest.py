import json
import time

import pytest
from loguru import logger


@pytest.fixture
def sls_home(tmp_path, monkeypatch):
    home = tmp_path / "sls-home"
    home.mkdir()
    monkeypatch.setenv("SLS_HOME", str(home))
    monkeypatch.delenv("STRAVA_CLIENT_ID", raising=False)
    monkeypatch.delenv("STRAVA_CLIENT_SECRET", raising=False)
    monkeypatch.delenv("STRAVA_ENV_FILE", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("strava_ls.config.load_keychain_secret", lambda _var_name: None)
    return home


@pytest.fixture
def write_token(tmp_path):
    def _write(expires_in: int, access_token: str = "cached-access", refresh_token: str = "cached-refresh"):
        path = tmp_path / "token"
        path.write_text(
            json.dumps(
                {
                    "access_token": access_token,
                    "expires_at": int(time.time()) + expires_in,
                    "refresh_token": refresh_token,
                }
            ),
            encoding="utf-8",
        )
        return path

    return _write


@pytest.fixture
def log_messages():
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record), level="DEBUG")
    try:
        yield messages
    finally:
        logger.remove(handler_id)
