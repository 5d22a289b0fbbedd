from __future__ import annotations

import json
import threading
from pathlib import Path

import requests
from loguru import logger

from .cache import write_json_atomic
from .errors import AuthError
from .models import Token

STRAVA_TOKEN_URL = "https://www.strava.com/api/v3/oauth/token"


def read_token(path: Path) -> Token:
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as exc:
        raise AuthError(
            f"Couldn't read bootstrap token data from {path}. "
            "Authorize the app once and save the token response there."
        ) from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise AuthError(f"Couldn't read token data from {path}: {exc}") from exc
    try:
        return Token.from_dict(payload)
    except ValueError as exc:
        raise AuthError(f"Couldn't parse token data in {path}: {exc}") from exc


def write_token(path: Path, token: Token) -> None:
    try:
        write_json_atomic(path, token.to_dict(), mode=0o600)
    except OSError as exc:
        raise AuthError(f"Couldn't write token data to {path}: {exc}") from exc


class CredentialStore:
    """Holds the single OAuth token shared by all fetch workers.

    Every caller goes through one lock, so an expired token is refreshed once
    no matter how many workers ask for it at the same time. The refreshed
    token is persisted before it is handed out.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_path: Path,
        session: requests.Session | None = None,
        token_url: str = STRAVA_TOKEN_URL,
        timeout: float = 30,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_path = Path(token_path).expanduser()
        self.session = session or requests.Session()
        self.token_url = token_url
        self.timeout = timeout
        self._lock = threading.Lock()
        self._token: Token | None = None

    def get_access_token(self) -> str:
        with self._lock:
            if self._token is None:
                self._token = read_token(self.token_path)
            if self._token.is_expired():
                self._token = self._refresh(self._token.refresh_token)
            return self._token.access_token

    def _refresh(self, refresh_token: str) -> Token:
        logger.info("Access token expired; refreshing")
        try:
            response = self.session.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Couldn't refresh token: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError(
                f"Couldn't parse token refresh response ({response.status_code}): {response.text}"
            ) from exc

        if isinstance(payload, dict) and payload.get("message"):
            raise AuthError(f"Got an error response when updating token: {response.text}")
        if response.status_code >= 400:
            raise AuthError(f"Error fetching token: {response.status_code} - {response.text}")

        try:
            token = Token.from_dict(payload)
        except ValueError as exc:
            raise AuthError(f"Couldn't parse refreshed token: {exc}") from exc

        write_token(self.token_path, token)
        logger.debug(f"Persisted refreshed token to {self.token_path}")
        return token
