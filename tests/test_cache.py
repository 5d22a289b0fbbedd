import json
import os

import pytest

from fakes import activity_payload, make_activity
from strava_ls.cache import ActivityCache, read_json, write_json_atomic
from strava_ls.errors import CacheError
from strava_ls.models import Gear, Snapshot


def test_missing_cache_files_load_as_empty(tmp_path):
    cache = ActivityCache(tmp_path / "activities.json", tmp_path / "gear.json")

    snapshot = cache.load()

    assert snapshot.activities == []
    assert snapshot.gear == {}


def test_save_then_load_keeps_order_and_gear(tmp_path):
    cache = ActivityCache(tmp_path / "activities.json", tmp_path / "gear.json")
    snapshot = Snapshot(
        activities=[make_activity(1, 100, "b1", distance=1000.5), make_activity(2, 200)],
        gear={"b1": Gear(id="b1", name="Bike", distance=12.0)},
    )

    cache.save(snapshot)
    loaded = cache.load()

    assert loaded.activities == snapshot.activities
    assert loaded.gear == snapshot.gear


def test_load_sorts_activities_written_out_of_order(tmp_path):
    activity_path = tmp_path / "activities.json"
    activity_path.write_text(
        json.dumps([activity_payload(2, 200), activity_payload(1, 100)]),
        encoding="utf-8",
    )

    loaded = ActivityCache(activity_path, tmp_path / "gear.json").load()

    assert [activity.id for activity in loaded.activities] == [1, 2]


def test_corrupt_activity_cache_raises_cache_error(tmp_path):
    activity_path = tmp_path / "activities.json"
    activity_path.write_text("[{not json", encoding="utf-8")

    with pytest.raises(CacheError) as excinfo:
        ActivityCache(activity_path, tmp_path / "gear.json").load()
    assert excinfo.value.path == activity_path


def test_wrong_shape_gear_cache_raises_cache_error(tmp_path):
    gear_path = tmp_path / "gear.json"
    gear_path.write_text("[]", encoding="utf-8")

    with pytest.raises(CacheError, match="keyed by gear id"):
        ActivityCache(tmp_path / "activities.json", gear_path).load()


def test_activity_without_start_date_raises_cache_error(tmp_path):
    activity_path = tmp_path / "activities.json"
    activity_path.write_text(json.dumps([{"id": 1, "name": "No date"}]), encoding="utf-8")

    with pytest.raises(CacheError, match="start_date"):
        ActivityCache(activity_path, tmp_path / "gear.json").load()


def test_write_json_atomic_replaces_destination_and_leaves_no_temp_files(tmp_path):
    target = tmp_path / "nested" / "activities.json"
    write_json_atomic(target, [1])
    write_json_atomic(target, [1, 2])

    assert read_json(target) == [1, 2]
    assert sorted(os.listdir(target.parent)) == ["activities.json"]


def test_failed_write_keeps_previous_snapshot(tmp_path):
    target = tmp_path / "activities.json"
    write_json_atomic(target, ["previous"])

    with pytest.raises(TypeError):
        write_json_atomic(target, {"bad": object()})

    assert read_json(target) == ["previous"]
    assert sorted(os.listdir(tmp_path)) == ["activities.json"]


def test_save_wraps_write_failures(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    cache = ActivityCache(blocker / "activities.json", blocker / "gear.json")

    with pytest.raises(CacheError, match="couldn't write"):
        cache.save(Snapshot(activities=[make_activity(1, 100)]))
