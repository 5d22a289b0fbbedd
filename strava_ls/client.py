from __future__ import annotations

import time
from typing import Any

import requests
from loguru import logger
from requests.adapters import HTTPAdapter

from .credentials import CredentialStore
from .errors import ApiFault, FetchError, QuotaExhausted
from .models import Activity, Gear
from .ratelimit import StravaRateLimiter

STRAVA_API_BASE = "https://www.strava.com/api/v3"

BASE_DELAY = 15  # seconds


def is_fault(payload: Any) -> bool:
    """Strava signals errors with an object carrying a non-empty ``message``."""
    if not isinstance(payload, dict):
        return False
    message = payload.get("message")
    return isinstance(message, str) and bool(message)


def build_session(pool_size: int = 10) -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class StravaClient:
    def __init__(
        self,
        credentials: CredentialStore,
        session: requests.Session | None = None,
        api_base: str = STRAVA_API_BASE,
        athlete_id: int | None = None,
        timeout: float = 30,
        rate_limiter: StravaRateLimiter | None = None,
        max_retries: int = 0,
        backoff_base: float = BASE_DELAY,
    ) -> None:
        self.credentials = credentials
        self.session = session or build_session()
        self.api_base = api_base.rstrip("/")
        self.athlete_id = athlete_id
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base

    def activity_page(self, page: int, per_page: int, after: int = 0) -> list[Activity]:
        if self.athlete_id:
            endpoint = f"/athletes/{self.athlete_id}/activities"
        else:
            endpoint = "/athlete/activities"
        params = {"after": after, "page": page, "per_page": per_page}
        try:
            payload = self.request_json(endpoint, params)
            if not isinstance(payload, list):
                raise ApiFault(f"unexpected activities response: {type(payload).__name__}")
            return [Activity.from_dict(item) for item in payload]
        except (requests.RequestException, ApiFault, QuotaExhausted, TypeError, ValueError) as exc:
            raise FetchError(exc, page=page) from exc

    def gear(self, gear_id: str) -> Gear:
        try:
            return Gear.from_dict(self.request_json(f"/gear/{gear_id}"))
        except (requests.RequestException, ApiFault, QuotaExhausted, TypeError, ValueError) as exc:
            raise FetchError(exc, resource_id=gear_id) from exc

    def request_json(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``endpoint`` and return its decoded body.

        HTTP 429 and connection failures are retried up to ``max_retries``
        times with exponential backoff; everything else raises immediately.
        """
        url = f"{self.api_base}{endpoint}"
        attempt = 0
        while True:
            if self.rate_limiter:
                self.rate_limiter.wait_for_slot()

            token = self.credentials.get_access_token()
            logger.debug(f"GET {url} {params or ''}")
            try:
                response = self.session.get(
                    url,
                    headers={"Authorization": f"Bearer {token}"},
                    params=params,
                    timeout=self.timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt >= self.max_retries:
                    raise
                self._backoff(attempt, f"{type(exc).__name__} for {url}")
                attempt += 1
                continue

            if response.status_code == 429 and attempt < self.max_retries:
                self._backoff(attempt, "Rate limited")
                attempt += 1
                continue

            return self._decode(url, response)

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.backoff_base * (2**attempt)
        logger.warning(f"{reason}. Waiting {delay}s before retry ({attempt + 1}/{self.max_retries})...")
        time.sleep(delay)

    @staticmethod
    def _decode(url: str, response: requests.Response) -> Any:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiFault(
                f"malformed JSON from {url} ({response.status_code})",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        if is_fault(payload):
            raise ApiFault(
                f"Strava API error ({response.status_code}): {payload['message']}",
                status_code=response.status_code,
                body=response.text,
            )
        if response.status_code >= 400:
            raise ApiFault(
                f"Request failed ({response.status_code}) for {url}",
                status_code=response.status_code,
                body=response.text,
            )
        return payload
