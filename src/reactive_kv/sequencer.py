"""Write sequencer — applies mutations to the cache, notifies, then persists.

Every mutation follows the same path: compute the new value, update the
cache, notify subscribers, and only then write to the backend.  The first
three steps run without yielding to the event loop, so observers never see a
half-applied mutation.  Backend writes for the same key are chained in call
order; writes for unrelated keys run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Collection, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from reactive_kv.eviction import EvictionRecovery
from reactive_kv.exceptions import InvalidUpdateError
from reactive_kv.merge import apply_merge, remove_nested_null_values

if TYPE_CHECKING:
    from reactive_kv.cache import CacheStore
    from reactive_kv.eviction import EvictionPolicy
    from reactive_kv.keys import KeySchema
    from reactive_kv.reader import StorageReader
    from reactive_kv.stores.base import Store
    from reactive_kv.subscriptions import Broadcaster, Subscription

_logger = logging.getLogger(__name__)


def _skips_stored_values(subscription: Subscription) -> bool:
    return not subscription.init_with_stored_values


def _describe(value: Any) -> str:
    """Log-safe summary of a value: its shape, never its content."""
    if isinstance(value, Mapping):
        return f" properties: {', '.join(sorted(map(str, value)))}"
    return f" type: {type(value).__name__}"


class WriteSequencer:
    """Serializes and batches writes against the cache and the backend.

    Parameters:
        cache:            Cache updated before every backend write.
        store:            Backend writes go to.
        schema:           Key schema (collection prefixes).
        reader:           Read-through access used to fetch current values.
        broadcaster:      Notifies subscribers after each cache update.
        eviction_policy:  Picks keys to evict when a write fails.
        default_states:   Default value per key or collection prefix.
    """

    def __init__(
        self,
        *,
        cache: CacheStore,
        store: Store,
        schema: KeySchema,
        reader: StorageReader,
        broadcaster: Broadcaster,
        eviction_policy: EvictionPolicy,
        default_states: Mapping[str, Any] | None = None,
    ) -> None:
        self._cache = cache
        self._store = store
        self._schema = schema
        self._reader = reader
        self._broadcaster = broadcaster
        self._recovery = EvictionRecovery(eviction_policy, self._evict)
        self._defaults: dict[str, Any] = dict(default_states or {})
        self._tails: dict[str, asyncio.Future[None]] = {}
        self._merge_queue: dict[str, list[Any]] = {}
        self._merge_tasks: dict[str, asyncio.Task[None]] = {}
        self._barrier: asyncio.Future[None] | None = None

    # ── state ────────────────────────────────────────────────

    def has_pending_write(self, key: str) -> bool:
        return key in self._tails or key in self._merge_queue

    def can_drop(self, key: str) -> bool:
        """Whether *key* may be trimmed from the cache right now."""
        return not self._reader.is_ram_only(key) and not self.has_pending_write(key)

    def default_for(self, key: str) -> Any:
        """Default value of *key*, falling back to its collection's default."""
        if key in self._defaults:
            return self._defaults[key]
        collection_key = self._schema.get_collection_key(key)
        if collection_key is not None:
            return self._defaults.get(collection_key)
        return None

    async def drain(self) -> None:
        """Wait until every queued merge and backend write has settled."""
        while self._tails or self._merge_tasks or self._barrier is not None:
            waiting = [*self._tails.values(), *self._merge_tasks.values()]
            if self._barrier is not None:
                waiting.append(self._barrier)
            await asyncio.wait(waiting)

    # ── ordering ─────────────────────────────────────────────

    @asynccontextmanager
    async def _sequenced(
        self,
        keys: Collection[str],
        *,
        exclusive: bool = False,
    ) -> AsyncIterator[None]:
        # Registration happens before the first suspension, so the order
        # writes are chained in is the order their callers reached this point.
        # An exclusive write waits for every earlier write, and every later
        # write waits for it.
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        previous = {self._tails[key] for key in keys if key in self._tails}
        if self._barrier is not None:
            previous.add(self._barrier)
        if exclusive:
            previous.update(self._tails.values())
            self._barrier = done
        for key in keys:
            self._tails[key] = done
        try:
            if previous:
                await asyncio.wait(previous)
            yield
        finally:
            done.set_result(None)
            if self._barrier is done:
                self._barrier = None
            for key in keys:
                if self._tails.get(key) is done:
                    del self._tails[key]

    async def _persist(
        self,
        operation: str,
        keys: Collection[str],
        write: Callable[[], Awaitable[None]],
        *,
        exclusive: bool = False,
    ) -> None:
        async with self._sequenced(keys, exclusive=exclusive):
            await self._recovery.run(operation, write, keys)

    async def _evict(self, key: str) -> None:
        # Runs inside another key's write, so it must not wait on the chain.
        self._merge_queue.pop(key, None)
        self._cache.set(key, None)
        self._broadcaster.key_changed(key)
        await self._store.remove_item(key)

    def _cancel_queued_merge(self, key: str) -> None:
        if self._merge_queue.pop(key, None) is not None:
            _logger.warning(
                "set() called after merge() for key: %s. "
                "The queued merges are discarded in favour of the new value.",
                key,
            )

    # ── single key ───────────────────────────────────────────

    async def set(self, key: str, value: Any) -> None:
        """Replace the value of *key*.  ``None`` removes it."""
        if value is None:
            await self.remove(key)
            return

        self._cancel_queued_merge(key)
        value = remove_nested_null_values(value)
        await self._commit("set", key, value)

    async def _commit(self, operation: str, key: str, value: Any) -> None:
        changed = not self._cache.has(key) or self._cache.has_value_changed(key, value)
        _logger.info("%s called for key: %s%s hasChanged: %s", operation, key, _describe(value), changed)
        if not changed:
            self._cache.touch(key)
            self._broadcaster.key_changed(key, only=_skips_stored_values)
            return

        self._cache.set(key, value)
        self._broadcaster.key_changed(key)
        if self._reader.is_ram_only(key):
            return
        await self._persist(operation, [key], lambda: self._store.set_item(key, value))

    async def remove(self, key: str) -> None:
        """Remove *key* from cache and backend and notify its subscribers."""
        self._merge_queue.pop(key, None)
        known_absent = self._cache.has(key) and self._cache.get(key, touch=False) is None
        self._cache.set(key, None)
        if not known_absent:
            self._broadcaster.key_changed(key)
        if self._reader.is_ram_only(key):
            return
        await self._persist("remove", [key], lambda: self._store.remove_item(key))

    async def merge(self, key: str, changes: Any) -> None:
        """Queue *changes* for *key*.

        Merges issued before the queue is flushed are applied together, in
        call order, and written once.  Every caller waits for that write.
        """
        queue = self._merge_queue.get(key)
        if queue is not None:
            queue.append(changes)
            await asyncio.shield(self._merge_tasks[key])
            return

        queue = [changes]
        self._merge_queue[key] = queue
        task = asyncio.ensure_future(self._flush_merge_queue(key, queue))
        self._merge_tasks[key] = task
        await asyncio.shield(task)

    async def _flush_merge_queue(self, key: str, queue: list[Any]) -> None:
        try:
            existing = await self._reader.get(key)
        finally:
            if self._merge_tasks.get(key) is asyncio.current_task():
                del self._merge_tasks[key]
            # A set() or remove() issued meanwhile replaced the queued changes.
            still_queued = self._merge_queue.get(key) is queue
            if still_queued:
                del self._merge_queue[key]
        if not still_queued:
            return

        if self._cache.has(key):
            existing = self._cache.get(key, touch=False)
        new_value = apply_merge(existing, queue)
        if new_value is None:
            await self.remove(key)
            return
        await self._commit("merge", key, new_value)

    # ── several keys ─────────────────────────────────────────

    async def multi_set(self, data: Mapping[str, Any]) -> None:
        """Replace several keys at once with one notification pass."""
        entries: dict[str, Any] = {}
        removals: list[str] = []
        for key, value in data.items():
            self._cancel_queued_merge(key)
            if value is None:
                removals.append(key)
                self._cache.set(key, None)
                continue
            value = remove_nested_null_values(value)
            self._cache.set(key, value)
            if not self._reader.is_ram_only(key):
                entries[key] = value

        _logger.info("multi_set called for %d keys", len(data))
        self._broadcaster.keys_changed(data)
        persisted_removals = [key for key in removals if not self._reader.is_ram_only(key)]

        async def write() -> None:
            if persisted_removals:
                await self._store.remove_items(persisted_removals)
            if entries:
                await self._store.multi_set(entries)

        await self._persist("multi_set", [*entries, *persisted_removals], write)

    async def merge_collection(self, collection_key: str, collection: Any) -> None:
        """Merge changes into several members of one collection.

        Members mapped to ``None`` are removed.  Members already persisted are
        merged in the backend; new members are written whole.
        """
        if not isinstance(collection, Mapping) or not collection:
            _logger.info("merge_collection() called with invalid or empty value. Skipping this update.")
            return

        for member in collection:
            if not self._schema.is_collection_member_key(collection_key, member):
                raise InvalidUpdateError(
                    "merge_collection",
                    "Provided collection doesn't have all its data belonging to the same parent. "
                    f"CollectionKey: {collection_key}, DataKey: {member}",
                )

        persisted_keys = await self._reader.get_all_keys()
        changes = {key: value for key, value in collection.items() if value is not None}
        removals = [key for key, value in collection.items() if value is None]
        existing_keys = [key for key in changes if key in persisted_keys]
        await self._reader.multi_get(existing_keys)

        merged: dict[str, Any] = {}
        folded: set[str] = set()
        for key, change in changes.items():
            # Merges queued for this member were issued first, so they apply first.
            queued = self._merge_queue.pop(key, None)
            if queued:
                folded.add(key)
            merged[key] = apply_merge(self._cache.get(key, touch=False), [*(queued or ()), change])
            self._cache.set(key, merged[key])
        for key in removals:
            self._merge_queue.pop(key, None)
            self._cache.set(key, None)

        _logger.info(
            "merge_collection called for collection: %s with %d members",
            collection_key,
            len(collection),
        )
        self._broadcaster.keys_changed(collection)

        # Members with folded merges are written whole, so the queued changes persist too.
        to_merge = {
            key: changes[key]
            for key in existing_keys
            if key not in folded and not self._reader.is_ram_only(key)
        }
        to_set = {
            key: value
            for key, value in merged.items()
            if (key not in persisted_keys or key in folded) and not self._reader.is_ram_only(key)
        }
        to_remove = [key for key in removals if not self._reader.is_ram_only(key)]

        async def write() -> None:
            if to_remove:
                await self._store.remove_items(to_remove)
            if to_merge:
                await self._store.multi_merge(to_merge)
            if to_set:
                await self._store.multi_set(to_set)

        await self._persist("merge_collection", [*to_merge, *to_set, *to_remove], write)

    async def clear(self, keys_to_preserve: Iterable[str] = ()) -> None:
        """Reset every key except *keys_to_preserve* to its default.

        Preserved keys keep their cached value throughout, so subscribers
        never see them disappear.  The backend is wiped and then refilled
        with defaults and preserved values.
        """
        preserve = set(keys_to_preserve)
        await self._reader.get_all_keys()
        preserved = await self._reader.multi_get(sorted(preserve))
        # Taken after the reads, so keys written while they ran are reset too.
        known = self._cache.storage_keys | set(self._merge_queue)
        known |= {key for key in self._defaults if not self._schema.is_collection_key(key)}

        changed: list[str] = []
        restored: dict[str, Any] = {}
        for key in sorted(known - preserve):
            self._merge_queue.pop(key, None)
            new_value = self.default_for(key)
            if not self._cache.has(key) or self._cache.has_value_changed(key, new_value):
                changed.append(key)
            self._cache.set(key, new_value)
            if new_value is not None:
                restored[key] = new_value
        for key, value in preserved.items():
            if self._cache.has(key):
                value = self._cache.get(key, touch=False)
            if value is not None:
                restored[key] = value
        restored = {key: value for key, value in restored.items() if not self._reader.is_ram_only(key)}

        _logger.info("clear called, preserving %d keys", len(preserve))
        self._broadcaster.keys_changed(changed)

        async def write() -> None:
            await self._store.clear()
            if restored:
                await self._store.multi_set(restored)

        await self._persist("clear", sorted(known | preserve), write, exclusive=True)
