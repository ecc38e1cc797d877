"""Tests for collection subscriptions and merge_collection."""

import asyncio

import pytest

from reactive_kv.exceptions import InvalidUpdateError

COLLECTION = {"collection_keys": ["test_"], "safe_eviction_keys": ["test_"]}


async def test_aggregate_subscriber_gets_one_call_per_update(make_kv, store, recorder):
    await store.multi_set({f"test_{i}": {"id": i} for i in range(5000)})
    kv = await make_kv(store, **COLLECTION)

    await kv.connect("test_", recorder, wait_for_collection_callback=True)

    assert len(recorder.calls) == 1
    collection, key = recorder.calls[0]
    assert key == "test_"
    assert len(collection) == 5000

    await kv.merge("test_1", {"name": "first"})

    assert len(recorder.calls) == 2
    collection, key = recorder.calls[1]
    assert key == "test_"
    assert len(collection) == 5000
    assert collection["test_1"] == {"id": 1, "name": "first"}


async def test_aggregate_members_survive_cache_trimming(make_kv, store, recorder, make_recorder):
    await store.multi_set({f"test_{i}": i for i in range(50)})
    kv = await make_kv(store, max_cached_keys_count=10, **COLLECTION)
    await kv.connect("test_", recorder, wait_for_collection_callback=True)

    # Connecting to a safe key trims the cache.
    await kv.connect("test_7", make_recorder())
    await kv.set("test_7", "seven")

    collection, _key = recorder.calls[-1]
    assert len(collection) == 50
    assert collection["test_7"] == "seven"


async def test_cache_is_trimmed_on_safe_key_connect(make_kv, store):
    await store.multi_set({f"test_{i}": i for i in range(20)})
    kv = await make_kv(store, max_cached_keys_count=5, **COLLECTION)
    for i in range(20):
        await kv.get(f"test_{i}")

    await kv.connect("test_0", lambda value, key: None)

    assert len(kv.cache.all_cached_keys()) <= 6
    # Trimmed keys are read back from the backend.
    assert await kv.get("test_3") == 3


async def test_member_subscriber_gets_one_call_per_member(make_kv, recorder):
    kv = await make_kv(**COLLECTION)
    await kv.set("test_1", {"a": 1})
    await kv.set("test_2", {"b": 1})

    await kv.connect("test_", recorder)
    assert recorder.calls == [({"a": 1}, "test_1"), ({"b": 1}, "test_2")]

    await kv.merge_collection("test_", {"test_1": {"a": 2}, "test_2": {"b": 2}})
    assert recorder.calls[2:] == [({"a": 2}, "test_1"), ({"b": 2}, "test_2")]


async def test_connect_to_empty_collection(make_kv, make_recorder):
    kv = await make_kv(**COLLECTION)
    aggregate = make_recorder()
    members = make_recorder()

    await kv.connect("test_", aggregate, wait_for_collection_callback=True)
    await kv.connect("test_", members)

    assert aggregate.calls == [({}, "test_")]
    assert members.calls == [(None, "test_")]


async def test_merge_collection_writes_existing_and_new_members(make_kv, store, recorder):
    kv = await make_kv(store, **COLLECTION)
    await kv.set("test_1", {"a": 1, "b": 1})
    await kv.connect("test_", recorder, wait_for_collection_callback=True)
    store.writes.clear()

    await kv.merge_collection(
        "test_",
        {"test_1": {"b": None, "c": 3}, "test_2": {"new": True, "dropped": None}},
    )

    assert await kv.get("test_1") == {"a": 1, "c": 3}
    assert await kv.get("test_2") == {"new": True}
    assert await store.get_item("test_1") == {"a": 1, "c": 3}
    assert await store.get_item("test_2") == {"new": True}
    assert store.writes == ["multi_merge", "multi_set"]
    assert len(recorder.calls) == 2
    assert recorder.calls[-1] == ({"test_1": {"a": 1, "c": 3}, "test_2": {"new": True}}, "test_")


async def test_merge_collection_keeps_merges_queued_before_it(make_kv, store):
    kv = await make_kv(store, **COLLECTION)

    await asyncio.gather(
        kv.merge("test_1", {"a": 1}),
        kv.merge_collection("test_", {"test_1": {"b": 2}}),
    )

    assert await kv.get("test_1") == {"a": 1, "b": 2}
    assert await store.get_item("test_1") == {"a": 1, "b": 2}


async def test_merge_collection_keeps_queued_merges_on_stored_member(make_kv, store):
    kv = await make_kv(store, **COLLECTION)
    await kv.set("test_1", {"x": 0})
    store.writes.clear()

    await asyncio.gather(
        kv.merge("test_1", {"a": 1}),
        kv.merge("test_1", {"x": None}),
        kv.merge_collection("test_", {"test_1": {"b": 2}, "test_2": {"c": 3}}),
    )

    assert await kv.get("test_1") == {"a": 1, "b": 2}
    assert await store.get_item("test_1") == {"a": 1, "b": 2}
    assert await store.get_item("test_2") == {"c": 3}
    assert store.writes == ["multi_set"]


async def test_merge_collection_removes_null_members(make_kv, store):
    kv = await make_kv(store, **COLLECTION)
    await kv.set("test_1", 1)

    await kv.merge_collection("test_", {"test_1": None, "test_2": 2})

    assert await kv.get("test_1") is None
    assert await store.get_all_keys() == {"test_2"}


async def test_merge_collection_rejects_foreign_keys(make_kv, store):
    kv = await make_kv(store, **COLLECTION)
    with pytest.raises(InvalidUpdateError):
        await kv.merge_collection("test_", {"test_1": 1, "other_1": 2})
    assert await kv.get("test_1") is None
    assert await store.get_all_keys() == set()


async def test_merge_collection_skips_empty_input(make_kv, store, caplog):
    kv = await make_kv(store, **COLLECTION)
    with caplog.at_level("INFO"):
        await kv.merge_collection("test_", {})
    assert "Skipping this update" in caplog.text
    assert store.writes == []


async def test_aggregate_selector(make_kv, recorder):
    kv = await make_kv(**COLLECTION)
    await kv.multi_set({"test_1": {"title": "a", "n": 1}, "test_2": {"title": "b", "n": 1}})
    await kv.connect("test_", recorder, selector="title", wait_for_collection_callback=True)
    assert recorder.values == [{"test_1": "a", "test_2": "b"}]

    await kv.merge("test_1", {"n": 2})
    assert len(recorder.calls) == 1

    await kv.merge("test_2", {"title": "c"})
    assert recorder.values[-1] == {"test_1": "a", "test_2": "c"}
