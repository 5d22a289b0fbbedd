from fakes import make_activity
from strava_ls.incremental import merge, missing_gear_ids, plan
from strava_ls.models import Gear, Snapshot


def test_plan_uses_latest_cached_start():
    snapshot = Snapshot(activities=[make_activity(1, 10), make_activity(2, 20), make_activity(3, 30)])

    assert plan(snapshot) == 30


def test_plan_is_zero_for_empty_cache_or_refresh():
    assert plan(Snapshot.empty()) == 0
    assert plan(Snapshot(activities=[make_activity(1, 10)]), refresh=True) == 0


def test_merge_keeps_watermark_overlap():
    cached = Snapshot(activities=[make_activity(1, 10), make_activity(2, 20), make_activity(3, 30)])
    fresh = [make_activity(3, 30), make_activity(4, 40)]

    merged = merge(cached, fresh, {})

    assert [activity.timestamp for activity in merged.activities] == [10, 20, 30, 30, 40]
    assert [activity.id for activity in merged.activities] == [1, 2, 3, 3, 4]


def test_merge_with_dedupe_prefers_fresh_copy():
    cached = Snapshot(activities=[make_activity(1, 10), make_activity(3, 30, name="Before edit")])
    fresh = [make_activity(3, 30, name="After edit"), make_activity(4, 40)]

    merged = merge(cached, fresh, {}, dedupe=True)

    assert [activity.id for activity in merged.activities] == [1, 3, 4]
    assert merged.activities[1].name == "After edit"


def test_merge_is_idempotent_on_sorted_input():
    cached = Snapshot(activities=[make_activity(1, 10), make_activity(2, 20)])

    once = merge(cached, [make_activity(3, 15)], {})
    twice = merge(once, [], {})

    assert once.activities == twice.activities
    assert [activity.id for activity in once.activities] == [1, 3, 2]


def test_missing_gear_ids_skips_cached_entries():
    activities = [make_activity(1, 10, "b1"), make_activity(2, 20, "b2"), make_activity(3, 30), make_activity(4, 40, "b1")]
    cached_gear = {"b1": Gear(id="b1", name="Bike"), "old": Gear(id="old", name="Gone")}

    assert missing_gear_ids(activities, cached_gear) == {"b2"}
    assert missing_gear_ids(activities, cached_gear, refresh=True) == {"b1", "b2"}


def test_merge_prunes_unreferenced_gear_and_overwrites_with_fresh():
    cached = Snapshot(
        activities=[make_activity(1, 10, "b1"), make_activity(2, 20, "b2")],
        gear={
            "b1": Gear(id="b1", name="Old name"),
            "b2": Gear(id="b2", name="Commuter"),
            "sold": Gear(id="sold", name="Sold bike"),
        },
    )
    fresh_gear = {"b1": Gear(id="b1", name="New name"), "s1": Gear(id="s1", name="Shoes")}

    merged = merge(cached, [make_activity(3, 30, "s1")], fresh_gear)

    assert set(merged.gear) == {"b1", "b2", "s1"}
    assert merged.gear["b1"].name == "New name"
    referenced = {activity.gear_id for activity in merged.activities if activity.gear_id}
    assert set(merged.gear) <= referenced
