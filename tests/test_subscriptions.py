"""Tests for the subscription registry and broadcaster."""

import pytest

from reactive_kv.cache import CacheStore
from reactive_kv.keys import KeySchema
from reactive_kv.subscriptions import Broadcaster, SubscriptionRegistry


@pytest.fixture
def cache():
    return CacheStore()


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def broadcaster(registry, cache):
    return Broadcaster(registry, cache, KeySchema(collection_keys=["test_"]))


def test_removed_members_release_selector_state(broadcaster, registry, cache, recorder):
    subscription = registry.add("test_", recorder, selector="title")

    for i in range(100):
        key = f"test_{i}"
        cache.set(key, {"title": key})
        broadcaster.key_changed(key)
        cache.set(key, None)
        broadcaster.key_changed(key)

    assert subscription.last_payloads == {}
    assert recorder.calls[:2] == [("test_0", "test_0"), (None, "test_0")]
    assert len(recorder.calls) == 200


def test_live_members_keep_selector_dedupe(broadcaster, registry, cache, recorder):
    subscription = registry.add("test_", recorder, selector="title")

    cache.set("test_1", {"title": "a", "n": 1})
    broadcaster.key_changed("test_1")
    cache.set("test_1", {"title": "a", "n": 2})
    broadcaster.key_changed("test_1")

    assert recorder.calls == [("a", "test_1")]
    assert subscription.last_payloads == {"test_1": "a"}


def test_selector_dedupe_tells_booleans_from_numbers(broadcaster, registry, cache, recorder):
    registry.add("flags", recorder, selector="on")

    cache.set("flags", {"on": 1})
    broadcaster.key_changed("flags")
    cache.set("flags", {"on": True})
    broadcaster.key_changed("flags")

    assert recorder.values == [1, True]


def test_disconnected_subscriber_is_skipped(broadcaster, registry, cache, recorder):
    subscription = registry.add("flags", recorder)
    registry.remove(subscription.connection_id)

    cache.set("flags", 1)
    broadcaster.key_changed("flags")

    assert recorder.calls == []
