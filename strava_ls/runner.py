from __future__ import annotations

import datetime as dt

from loguru import logger

from .cache import ActivityCache
from .client import StravaClient, build_session
from .config import Settings
from .credentials import CredentialStore
from .errors import CacheError
from .fetcher import fetch_activities, fetch_many
from .incremental import merge, missing_gear_ids, plan
from .models import Snapshot
from .ratelimit import StravaRateLimiter


def build_client(settings: Settings) -> StravaClient:
    session = build_session(max(settings.activity_workers, settings.gear_workers))
    credentials = CredentialStore(
        settings.client_id,
        settings.client_secret,
        settings.token_path,
        session=session,
        token_url=settings.token_url,
        timeout=settings.request_timeout,
    )
    return StravaClient(
        credentials,
        session=session,
        api_base=settings.api_base,
        athlete_id=settings.athlete_id,
        timeout=settings.request_timeout,
        rate_limiter=StravaRateLimiter(
            short_window_limit=settings.short_window_limit,
            daily_limit=settings.daily_limit,
        ),
        max_retries=settings.max_retries,
        backoff_base=settings.backoff_base,
    )


def build_cache(settings: Settings) -> ActivityCache:
    return ActivityCache(settings.activity_cache, settings.gear_cache)


def load_cached(cache: ActivityCache, refresh: bool) -> Snapshot:
    if refresh:
        return Snapshot.empty()
    try:
        return cache.load()
    except CacheError as exc:
        logger.warning(f"Couldn't read cache ({exc}); fetching everything")
        return Snapshot.empty()


def run(
    settings: Settings,
    client: StravaClient | None = None,
    cache: ActivityCache | None = None,
) -> Snapshot:
    """Bring the cached activities and gear up to date.

    Fetch failures propagate unchanged; only cache read errors are absorbed.
    """
    client = client or build_client(settings)
    cache = cache or build_cache(settings)

    cached = load_cached(cache, settings.refresh)
    watermark = plan(cached, settings.refresh)
    if watermark:
        since = dt.datetime.fromtimestamp(watermark, dt.UTC).isoformat()
        logger.info(f"Found {len(cached.activities)} cached activities; fetching those starting from {since}")
    else:
        logger.info("No usable cache; fetching all activities")

    fresh = fetch_activities(
        client,
        watermark,
        per_page=settings.per_page,
        concurrency=settings.activity_workers,
    )
    logger.info(f"Fetched {len(fresh)} activities")

    wanted = missing_gear_ids([*cached.activities, *fresh], cached.gear, settings.refresh)
    fresh_gear = fetch_many(wanted, client.gear, concurrency=settings.gear_workers)
    if fresh_gear:
        logger.info(f"Fetched {len(fresh_gear)} gear records")

    snapshot = merge(cached, fresh, fresh_gear, dedupe=settings.dedupe_on_merge)
    logger.info(f"Library size: {len(snapshot.activities)} activities, {len(snapshot.gear)} gear")
    return snapshot


def save_snapshot(cache: ActivityCache, snapshot: Snapshot) -> bool:
    try:
        cache.save(snapshot)
    except CacheError as exc:
        logger.warning(f"Couldn't write cache: {exc}")
        return False
    return True
