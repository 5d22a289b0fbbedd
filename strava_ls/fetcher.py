"""Concurrent fetching of activity pages and gear.

Activity pages are fetched by a small pipeline: a page counter hands out page
numbers on demand, a pool of worker threads requests them, and the calling
thread collects completed pages from a result queue. The collection length is
unknown, so the first short page stops the counter and the workers wind down
after their in-flight request.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol, TypeVar

from loguru import logger

from .errors import FetchError, SlsError
from .models import Activity, sort_activities

DEFAULT_PER_PAGE = 100
DEFAULT_ACTIVITY_WORKERS = 20
DEFAULT_GEAR_WORKERS = 10

T = TypeVar("T")


class PageSource(Protocol):
    def activity_page(self, page: int, per_page: int, after: int = 0) -> list[Activity]: ...


@dataclass
class _Result:
    key: Any
    value: Any = None
    error: Exception | None = None


_WORKER_DONE = object()


class _PageNumbers:
    """Hands out 1, 2, 3, ... until stopped."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next = 1
        self._stopped = threading.Event()

    def next(self) -> int | None:
        with self._lock:
            if self._stopped.is_set():
                return None
            page = self._next
            self._next += 1
            return page

    def stop(self) -> None:
        self._stopped.set()


def worker_count(watermark: int, concurrency: int) -> int:
    # With a cached prefix only the last few pages are new, so speculative
    # parallel requests would mostly come back empty.
    if watermark > 0:
        return 1
    return max(1, concurrency)


def _drain(results: queue.Queue, workers: int) -> tuple[dict[Any, Any], list[_Result]]:
    values: dict[Any, Any] = {}
    failures: list[_Result] = []
    finished = 0
    while finished < workers:
        item = results.get()
        if item is _WORKER_DONE:
            finished += 1
        elif item.error is not None:
            failures.append(item)
        else:
            values[item.key] = item.value
    return values, failures


def fetch_activities(
    client: PageSource,
    watermark: int = 0,
    *,
    per_page: int = DEFAULT_PER_PAGE,
    concurrency: int = DEFAULT_ACTIVITY_WORKERS,
) -> list[Activity]:
    """Fetch every activity newer than ``watermark``, oldest first.

    Raises the error of the lowest-numbered failing page; pages fetched
    before the failure are discarded.
    """
    workers = worker_count(watermark, concurrency)
    pages = _PageNumbers()
    results: queue.Queue = queue.Queue()

    def work() -> None:
        page = None
        try:
            while True:
                page = pages.next()
                if page is None:
                    return
                logger.debug(f"Fetching activity page {page}")
                activities = client.activity_page(page=page, per_page=per_page, after=watermark)
                results.put(_Result(page, activities))
                if len(activities) < per_page:
                    pages.stop()
                    return
        except Exception as exc:
            pages.stop()
            results.put(_Result(page, error=exc))
        finally:
            results.put(_WORKER_DONE)

    logger.debug(f"Fetching activities after {watermark} with {workers} worker(s)")
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sls-page") as executor:
        for _ in range(workers):
            executor.submit(work)
        try:
            fetched, failures = _drain(results, workers)
        except BaseException:
            # The executor joins its workers on exit; stop handing out pages first.
            pages.stop()
            raise

    if failures:
        first = min(failures, key=lambda failure: failure.key)
        if isinstance(first.error, SlsError):
            raise first.error
        raise FetchError(first.error, page=first.key) from first.error

    activities = [activity for page in sorted(fetched) for activity in fetched[page]]
    logger.debug(f"Fetched {len(activities)} activities across {len(fetched)} page(s)")
    return sort_activities(activities)


def fetch_many(
    ids: Iterable[str],
    fetch_one: Callable[[str], T],
    *,
    concurrency: int = DEFAULT_GEAR_WORKERS,
) -> dict[str, T]:
    """Fetch each distinct id once; any failure fails the whole batch."""
    pending = sorted(set(ids))
    if not pending:
        return {}

    work_items: queue.SimpleQueue = queue.SimpleQueue()
    for resource_id in pending:
        work_items.put(resource_id)

    workers = min(max(1, concurrency), len(pending))
    failed = threading.Event()
    results: queue.Queue = queue.Queue()

    def work() -> None:
        try:
            while not failed.is_set():
                try:
                    resource_id = work_items.get_nowait()
                except queue.Empty:
                    return
                logger.debug(f"Fetching {resource_id}")
                try:
                    results.put(_Result(resource_id, fetch_one(resource_id)))
                except Exception as exc:
                    failed.set()
                    results.put(_Result(resource_id, error=exc))
                    return
        finally:
            results.put(_WORKER_DONE)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sls-batch") as executor:
        for _ in range(workers):
            executor.submit(work)
        try:
            fetched, failures = _drain(results, workers)
        except BaseException:
            failed.set()
            raise

    if failures:
        first = failures[0]
        if isinstance(first.error, SlsError):
            raise first.error
        raise FetchError(first.error, resource_id=first.key) from first.error
    return fetched
