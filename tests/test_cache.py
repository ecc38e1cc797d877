"""Tests for CacheStore."""

import asyncio

from reactive_kv.cache import CacheStore


def test_set_and_get():
    cache = CacheStore()
    cache.set("k", {"a": 1})
    assert cache.has("k")
    assert cache.get("k") == {"a": 1}
    assert "k" in cache.storage_keys


def test_known_absent_entry():
    cache = CacheStore()
    cache.set("k", 1)
    cache.set("k", None)
    assert cache.has("k")
    assert cache.get("k") is None
    assert "k" not in cache.storage_keys


def test_drop_forgets_everything():
    cache = CacheStore()
    cache.set("k", 1)
    cache.drop("k")
    assert not cache.has("k")
    assert cache.stamp("k") == 0
    assert "k" not in cache.storage_keys


def test_reads_and_writes_touch():
    cache = CacheStore()
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.least_recently_used(["a", "b"]) == ["a", "b"]
    cache.get("a")
    assert cache.least_recently_used(["a", "b"]) == ["b", "a"]
    cache.get("b", touch=False)
    assert cache.least_recently_used(["a", "b"]) == ["b", "a"]


def test_unstamped_keys_sort_first_then_by_name():
    cache = CacheStore()
    cache.set("stamped", 1)
    assert cache.least_recently_used(["stamped", "z", "y"]) == ["y", "z", "stamped"]


def test_has_value_changed_is_structural():
    cache = CacheStore()
    cache.set("k", {"a": [1, 2]})
    assert not cache.has_value_changed("k", {"a": [1, 2]})
    assert cache.has_value_changed("k", {"a": [1]})


def test_remove_least_recently_used_keys():
    cache = CacheStore(max_cached_keys=2)
    for key in ("a", "b", "c", "d"):
        cache.set(key, key)
    removed = cache.remove_least_recently_used_keys()
    assert removed == ["a", "b"]
    assert cache.all_cached_keys() == {"c", "d"}
    # Trimming frees memory only, the keys are still known.
    assert cache.storage_keys == {"a", "b", "c", "d"}


def test_remove_least_recently_used_keys_respects_predicate():
    cache = CacheStore(max_cached_keys=1)
    for key in ("a", "b", "c"):
        cache.set(key, key)
    removed = cache.remove_least_recently_used_keys(lambda key: key != "a")
    assert removed == ["b", "c"]
    assert cache.all_cached_keys() == {"a"}


def test_trimming_disabled_by_default():
    cache = CacheStore()
    for key in ("a", "b"):
        cache.set(key, key)
    assert cache.remove_least_recently_used_keys() == []


async def test_capture_task_is_shared_and_forgotten():
    cache = CacheStore()
    calls = []

    async def work():
        calls.append(1)
        await asyncio.sleep(0)
        return "done"

    task = cache.capture_task("get:k", work())
    assert cache.get_task("get:k") is task
    assert await task == "done"
    await asyncio.sleep(0)
    assert cache.get_task("get:k") is None
    assert calls == [1]


def test_has_value_changed_tells_booleans_from_numbers():
    cache = CacheStore()
    cache.set("k", {"flag": 1})
    assert cache.has_value_changed("k", {"flag": True})
    assert not cache.has_value_changed("k", {"flag": 1})
