from __future__ import annotations

import threading
import time
from collections import deque

from loguru import logger

from .errors import QuotaExhausted

DAY_SECONDS = 24 * 60 * 60


class StravaRateLimiter:
    """Conservative client-side limiter to stay under Strava API quotas.

    Shared by every fetch worker. A slot is reserved when ``wait_for_slot``
    returns, so concurrent callers never overshoot the window.
    """

    def __init__(
        self,
        short_window_limit: int = 100,
        short_window_seconds: int = 15 * 60,
        daily_limit: int = 1000,
        safety_margin: int = 2,
    ) -> None:
        self.short_window_limit = max(1, short_window_limit - safety_margin)
        self.short_window_seconds = short_window_seconds
        self.daily_limit = max(1, daily_limit - safety_margin)
        self.short_window_requests: deque[float] = deque()
        self.daily_requests: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self.short_window_requests and now - self.short_window_requests[0] >= self.short_window_seconds:
            self.short_window_requests.popleft()
        while self.daily_requests and now - self.daily_requests[0] >= DAY_SECONDS:
            self.daily_requests.popleft()

    def wait_for_slot(self) -> None:
        while True:
            with self._lock:
                now = time.time()
                self._prune(now)

                if len(self.daily_requests) >= self.daily_limit:
                    raise QuotaExhausted(
                        "Daily Strava API limit reached locally; retry after the daily window resets."
                    )

                if len(self.short_window_requests) < self.short_window_limit:
                    self.short_window_requests.append(now)
                    self.daily_requests.append(now)
                    return

                sleep_for = self.short_window_requests[0] + self.short_window_seconds - now + 1

            if sleep_for > 0:
                logger.warning(
                    f"Approaching Strava 15-minute limit; sleeping {int(sleep_for)}s to stay under quota."
                )
                time.sleep(sleep_for)
