"""Subscription registry and broadcaster.

Subscriptions are registered under a key pattern (an exact key or a
collection prefix).  When keys change, the broadcaster works out which live
subscriptions match, computes the payload each one should receive from the
cache and calls them synchronously, in registration order.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeAlias

from reactive_kv._internal.selectors import Selector, select, select_collection
from reactive_kv.merge import deep_equal

if TYPE_CHECKING:
    from reactive_kv.cache import CacheStore
    from reactive_kv.keys import KeySchema

_logger = logging.getLogger(__name__)

Callback: TypeAlias = Callable[[Any, str], Any]


@dataclass(eq=False)
class Subscription:
    """A live connection between a key pattern and a callback.

    Attributes:
        connection_id: Handle returned by ``connect`` and used to disconnect.
        key:           Exact key or collection prefix.
        callback:      Called as ``callback(value, key)``.  Aggregate
                       subscribers get ``callback(collection, collection_key)``.
        selector:      Optional path (or callable) narrowing the payload.
        wait_for_collection_callback: Deliver a collection as one mapping of
                       every cached member instead of one call per member.
        init_with_stored_values: Deliver the stored value on connect.  When
                       ``False`` the subscriber also hears about writes that
                       did not change the value.
        can_evict:     Allow the key to be evicted even while subscribed.
        last_payloads: Last selected payload per key, used to skip
                       deliveries whose selected data did not change.
    """

    connection_id: int
    key: str
    callback: Callback
    selector: Selector | None = None
    wait_for_collection_callback: bool = False
    init_with_stored_values: bool = True
    can_evict: bool = False
    last_payloads: dict[str, Any] = field(default_factory=dict)


class SubscriptionRegistry:
    """Owns every live :class:`Subscription`, in registration order."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count()

    def add(
        self,
        key: str,
        callback: Callback,
        *,
        selector: Selector | None = None,
        wait_for_collection_callback: bool = False,
        init_with_stored_values: bool = True,
        can_evict: bool = False,
    ) -> Subscription:
        subscription = Subscription(
            connection_id=next(self._ids),
            key=key,
            callback=callback,
            selector=selector,
            wait_for_collection_callback=wait_for_collection_callback,
            init_with_stored_values=init_with_stored_values,
            can_evict=can_evict,
        )
        self._subscriptions[subscription.connection_id] = subscription
        return subscription

    def remove(self, connection_id: int) -> Subscription | None:
        return self._subscriptions.pop(connection_id, None)

    def get(self, connection_id: int) -> Subscription | None:
        return self._subscriptions.get(connection_id)

    def is_live(self, subscription: Subscription) -> bool:
        return self._subscriptions.get(subscription.connection_id) is subscription

    def snapshot(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def eviction_blocked_keys(self) -> set[str]:
        """Keys with an exact-key subscription that did not opt into eviction."""
        return {sub.key for sub in self._subscriptions.values() if not sub.can_evict}

    def clear(self) -> None:
        self._subscriptions.clear()

    def __len__(self) -> int:
        return len(self._subscriptions)


class Broadcaster:
    """Fans key changes out to the matching subscriptions.

    Payloads are always read from the cache at delivery time, so aggregate
    subscribers see every member present at that moment, including members
    the triggering mutation did not touch.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        cache: CacheStore,
        schema: KeySchema,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._schema = schema

    def collection(self, collection_key: str) -> dict[str, Any]:
        """Every cached, present member of *collection_key*."""
        members = sorted(
            key
            for key in self._cache.all_cached_keys()
            if self._schema.is_collection_member_key(collection_key, key)
        )
        result: dict[str, Any] = {}
        for key in members:
            value = self._cache.get(key, touch=False)
            if value is not None:
                result[key] = value
        return result

    def key_changed(
        self,
        key: str,
        *,
        only: Callable[[Subscription], bool] | None = None,
    ) -> None:
        self.keys_changed([key], only=only)

    def keys_changed(
        self,
        keys: Iterable[str],
        *,
        only: Callable[[Subscription], bool] | None = None,
    ) -> None:
        """Notify subscribers about *keys*.

        Aggregate collection subscribers receive exactly one call however
        many of their members changed.  Other collection subscribers get one
        call per changed member; exact-key subscribers one call.

        Parameters:
            keys: The changed keys.  Their new values must already be cached.
            only: Optional filter; subscriptions it rejects are skipped.
        """
        changed = list(dict.fromkeys(keys))
        if not changed:
            return
        changed_set = set(changed)

        for subscription in self._registry.snapshot():
            if only is not None and not only(subscription):
                continue

            if not self._schema.is_collection_key(subscription.key):
                if subscription.key in changed_set:
                    self.deliver(
                        subscription,
                        self._cache.get(subscription.key, touch=False),
                        subscription.key,
                    )
                continue

            matched = [key for key in changed if key.startswith(subscription.key)]
            if not matched:
                continue

            if subscription.wait_for_collection_callback:
                self.deliver(subscription, self.collection(subscription.key), subscription.key)
                continue

            for key in matched:
                value = self._cache.get(key, touch=False)
                self.deliver(subscription, value, key)
                if value is None:
                    # Forget selector state of removed members.
                    subscription.last_payloads.pop(key, None)

    def deliver(self, subscription: Subscription, payload: Any, key: str) -> None:
        """Call one subscriber, narrowing the payload through its selector."""
        # The subscriber may have disconnected earlier in this fan-out.
        if not self._registry.is_live(subscription):
            return

        if subscription.selector is not None:
            if subscription.wait_for_collection_callback and isinstance(payload, dict):
                payload = select_collection(payload, subscription.selector)
            else:
                payload = select(payload, subscription.selector)
            last = subscription.last_payloads
            if key in last and deep_equal(last[key], payload):
                return
            subscription.last_payloads[key] = payload

        try:
            subscription.callback(payload, key)
        except Exception:
            _logger.exception(
                "Subscriber callback failed. ConnectionID: %s Key: %s",
                subscription.connection_id,
                key,
            )
