from __future__ import annotations

from pathlib import Path


class SlsError(RuntimeError):
    pass


class ConfigError(SlsError):
    pass


class AuthError(SlsError):
    pass


class QuotaExhausted(SlsError):
    pass


class ApiFault(RuntimeError):
    """An error payload or HTTP error status returned by the Strava API."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class FetchError(SlsError):
    def __init__(
        self,
        cause: BaseException,
        page: int | None = None,
        resource_id: str | None = None,
    ) -> None:
        self.cause = cause
        self.page = page
        self.resource_id = resource_id
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.page is not None:
            target = f"activity page {self.page}"
        elif self.resource_id is not None:
            target = f"gear {self.resource_id}"
        else:
            target = "request"
        return f"failed to fetch {target}: {self.cause}"


class CacheError(SlsError):
    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
