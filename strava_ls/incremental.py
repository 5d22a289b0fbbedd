from __future__ import annotations

from typing import Iterable

from .models import Activity, Gear, Snapshot, gear_ids, sort_activities


def plan(snapshot: Snapshot, refresh: bool = False) -> int:
    """Return the watermark for the next fetch: the newest cached start time, or 0."""
    if refresh or not snapshot.activities:
        return 0
    return max(activity.timestamp for activity in snapshot.activities)


def missing_gear_ids(
    activities: Iterable[Activity],
    cached_gear: dict[str, Gear],
    refresh: bool = False,
) -> set[str]:
    referenced = gear_ids(activities)
    if refresh:
        return referenced
    return referenced - cached_gear.keys()


def merge(
    cached: Snapshot,
    fresh_activities: list[Activity],
    fresh_gear: dict[str, Gear],
    *,
    dedupe: bool = False,
) -> Snapshot:
    """Combine the cached snapshot with freshly fetched activities and gear.

    Activities starting exactly at the watermark are returned by the API again
    and appear twice unless ``dedupe`` is set, in which case the fresh copy
    replaces the cached one. Cached gear that no activity references any more
    is dropped.
    """
    previous = cached.activities
    if dedupe:
        fresh_ids = {activity.id for activity in fresh_activities}
        previous = [activity for activity in previous if activity.id not in fresh_ids]
    activities = sort_activities([*previous, *fresh_activities])

    referenced = gear_ids(activities)
    gear = {gear_id: item for gear_id, item in cached.gear.items() if gear_id in referenced}
    gear.update({gear_id: item for gear_id, item in fresh_gear.items() if gear_id in referenced})
    return Snapshot(activities=activities, gear=gear)
