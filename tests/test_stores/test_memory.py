"""Tests for InMemoryStore."""

import pytest

from reactive_kv.exceptions import StorageFullError
from reactive_kv.stores import InMemoryStore


@pytest.fixture
def store():
    return InMemoryStore()


async def test_get_nonexistent(store):
    assert await store.get_item("nope") is None


async def test_set_and_get(store):
    await store.set_item("k", {"val": 1})
    assert await store.get_item("k") == {"val": 1}


async def test_values_are_copied(store):
    value = {"nested": {"a": 1}}
    await store.set_item("k", value)
    value["nested"]["a"] = 2
    stored = await store.get_item("k")
    assert stored == {"nested": {"a": 1}}
    stored["nested"]["a"] = 3
    assert await store.get_item("k") == {"nested": {"a": 1}}


async def test_remove(store):
    await store.set_item("k", 1)
    await store.remove_item("k")
    await store.remove_item("never-there")
    assert await store.get_item("k") is None


async def test_remove_items(store):
    await store.multi_set({"a": 1, "b": 2, "c": 3})
    await store.remove_items(["a", "c"])
    assert await store.get_all_keys() == {"b"}


async def test_multi_get_maps_missing_to_none(store):
    await store.set_item("a", 1)
    assert await store.multi_get(["a", "b"]) == {"a": 1, "b": None}


async def test_multi_merge(store):
    await store.set_item("a", {"x": 1, "y": 2})
    await store.multi_merge({"a": {"y": None, "z": 3}, "b": {"n": None, "m": 1}})
    assert await store.get_item("a") == {"x": 1, "z": 3}
    assert await store.get_item("b") == {"m": 1}


async def test_clear(store):
    await store.multi_set({"a": 1, "b": 2})
    await store.clear()
    assert await store.get_all_keys() == set()


async def test_capacity():
    store = InMemoryStore(max_keys=2)
    await store.multi_set({"a": 1, "b": 2})
    # Overwriting an existing key never needs room.
    await store.set_item("a", 3)
    with pytest.raises(StorageFullError):
        await store.set_item("c", 1)
    await store.remove_item("a")
    await store.set_item("c", 1)
    assert await store.get_all_keys() == {"b", "c"}
