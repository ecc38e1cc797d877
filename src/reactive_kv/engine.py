"""ReactiveStore — the public facade over cache, sequencer and subscriptions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from reactive_kv._internal.selectors import Selector
from reactive_kv.cache import CacheStore
from reactive_kv.config import InitOptions
from reactive_kv.eviction import EvictionPolicy
from reactive_kv.exceptions import NotInitializedError
from reactive_kv.keys import KeySchema
from reactive_kv.reader import StorageReader
from reactive_kv.sequencer import WriteSequencer
from reactive_kv.stores.base import Store
from reactive_kv.stores.memory import InMemoryStore
from reactive_kv.subscriptions import Broadcaster, Callback, SubscriptionRegistry
from reactive_kv.updates import Update, UpdateMethod, validate_updates

_logger = logging.getLogger(__name__)


class ReactiveStore:
    """Reactive key-value store.

    Reads are served from an in-memory cache, writes update the cache and
    notify subscribers before being persisted to the backend, and a full
    backend is handled by evicting safe keys and retrying.

    Usage::

        kv = ReactiveStore(store=SQLiteStore("app.db"))
        await kv.init(collection_keys=["report_"], safe_eviction_keys=["report_"])
        connection_id = await kv.connect("report_", on_reports, wait_for_collection_callback=True)
        await kv.merge("report_1", {"title": "Q3"})

    Parameters:
        store: Persistent backend.  Defaults to an :class:`InMemoryStore`.
    """

    def __init__(self, store: Store | None = None) -> None:
        self._store = store or InMemoryStore()
        self._cache = CacheStore()
        self._registry = SubscriptionRegistry()
        self._ready = asyncio.Event()
        self._initialized = False
        self._options = InitOptions()
        self._setup(self._options)

    def _setup(self, options: InitOptions) -> None:
        self._options = options
        self._schema: KeySchema = options.key_schema()
        self._cache.max_cached_keys = options.max_cached_keys_count
        self._reader = StorageReader(self._cache, self._store, self._schema, options.ram_only_keys)
        self._broadcaster = Broadcaster(self._registry, self._cache, self._schema)
        self._eviction = EvictionPolicy(
            self._schema,
            self._cache,
            self._registry,
            safe_eviction_keys=options.safe_eviction_keys,
            ram_only_keys=options.ram_only_keys,
        )
        self._sequencer = WriteSequencer(
            cache=self._cache,
            store=self._store,
            schema=self._schema,
            reader=self._reader,
            broadcaster=self._broadcaster,
            eviction_policy=self._eviction,
            default_states=options.initial_key_states,
        )

    @property
    def store(self) -> Store:
        return self._store

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _require_init(self, operation: str) -> None:
        if not self._initialized:
            raise NotInitializedError(operation)

    def _trim_cache(self) -> None:
        # Aggregate subscribers are served from the cache, so their members stay.
        aggregated = tuple(
            sub.key for sub in self._registry.snapshot() if sub.wait_for_collection_callback
        )
        removed = self._cache.remove_least_recently_used_keys(
            lambda key: self._sequencer.can_drop(key) and not key.startswith(aggregated)
        )
        if removed:
            _logger.info("Trimmed %d keys from the cache", len(removed))

    # ── Lifecycle ────────────────────────────────────────────

    async def init(self, options: InitOptions | None = None, **kwargs: Any) -> None:
        """Configure the engine and load what the backend holds.

        Pass either an :class:`InitOptions` or its fields as keyword
        arguments.  Subscriptions made before ``init`` get their initial
        values once it completes.
        """
        if self._initialized:
            _logger.warning("init() called on an initialized store, ignoring")
            return
        options = options or InitOptions.model_validate(kwargs)
        self._setup(options)

        stored_keys = await self._store.get_all_keys()
        ram_only = sorted(key for key in stored_keys if self._reader.is_ram_only(key))
        if ram_only:
            _logger.info("Removing %d RAM-only keys from persistent storage", len(ram_only))
            await self._store.remove_items(ram_only)

        await self._reader.get_all_keys()
        self._eviction.stamp_safe_keys(self._cache.storage_keys)

        defaults = {
            key: value
            for key, value in options.initial_key_states.items()
            if not self._schema.is_collection_key(key) and value is not None
        }
        stored = await self._reader.multi_get(defaults)
        seeded = []
        for key, default in defaults.items():
            if stored[key] is None:
                self._cache.set(key, default)
                seeded.append(key)

        self._initialized = True
        self._ready.set()
        _logger.info(
            "Store initialized with %d stored keys and %d defaults",
            len(stored_keys) - len(ram_only),
            len(seeded),
        )
        # Regular subscribers receive these values from their pending connect.
        self._broadcaster.keys_changed(seeded, only=lambda sub: not sub.init_with_stored_values)

    async def teardown(self) -> None:
        """Disconnect everyone, wait for pending writes and close the backend."""
        if self._initialized:
            await self._sequencer.drain()
        pending = self._cache.pending_tasks()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._registry.clear()
        self._cache.reset()
        self._initialized = False
        self._ready.clear()
        self._setup(InitOptions())
        await self._store.close()

    # ── Subscriptions ────────────────────────────────────────

    async def connect(
        self,
        key: str,
        callback: Callback,
        *,
        selector: Selector | None = None,
        wait_for_collection_callback: bool = False,
        init_with_stored_values: bool = True,
        can_evict: bool = False,
    ) -> int:
        """Subscribe *callback* to *key* (an exact key or collection prefix).

        Returns the connection id once the initial value has been delivered.
        """
        subscription = self._registry.add(
            key,
            callback,
            selector=selector,
            wait_for_collection_callback=wait_for_collection_callback,
            init_with_stored_values=init_with_stored_values,
            can_evict=can_evict,
        )
        if not init_with_stored_values:
            return subscription.connection_id

        await self._ready.wait()
        if self._eviction.is_safe_eviction_key(key):
            self._trim_cache()

        if not self._schema.is_collection_key(key):
            value = await self._reader.get(key)
            self._broadcaster.deliver(subscription, value, key)
            return subscription.connection_id

        known = await self._reader.get_all_keys()
        members = sorted(k for k in known if self._schema.is_collection_member_key(key, k))
        values = await self._reader.multi_get(members)
        if wait_for_collection_callback:
            present = {k: v for k, v in values.items() if v is not None}
            self._broadcaster.deliver(subscription, present, key)
        elif not members:
            self._broadcaster.deliver(subscription, None, key)
        else:
            for member in members:
                self._broadcaster.deliver(subscription, values[member], member)
        return subscription.connection_id

    def disconnect(self, connection_id: int) -> None:
        """Stop deliveries to a subscription.  Unknown ids are ignored."""
        if self._registry.remove(connection_id) is None:
            _logger.info("disconnect() called with unknown connection id: %s", connection_id)

    # ── Reads ────────────────────────────────────────────────

    async def get(self, key: str) -> Any:
        self._require_init("get")
        return await self._reader.get(key)

    async def get_all_keys(self) -> set[str]:
        self._require_init("get_all_keys")
        return await self._reader.get_all_keys()

    # ── Writes ───────────────────────────────────────────────

    async def set(self, key: str, value: Any) -> None:
        self._require_init("set")
        await self._sequencer.set(key, value)

    async def multi_set(self, data: Mapping[str, Any]) -> None:
        self._require_init("multi_set")
        await self._sequencer.multi_set(data)

    async def merge(self, key: str, changes: Any) -> None:
        self._require_init("merge")
        await self._sequencer.merge(key, changes)

    async def merge_collection(self, collection_key: str, collection: Mapping[str, Any]) -> None:
        self._require_init("merge_collection")
        await self._sequencer.merge_collection(collection_key, collection)

    async def clear(self, keys_to_preserve: Iterable[str] = ()) -> None:
        self._require_init("clear")
        await self._sequencer.clear(keys_to_preserve)

    async def update(self, updates: Iterable[Update | Mapping[str, Any]]) -> None:
        """Apply a batch of updates.

        The whole batch is validated first.  A ``clear`` entry runs before
        everything else; the remaining entries then start in list order.
        """
        self._require_init("update")
        batch = validate_updates(updates)
        if any(item.method == UpdateMethod.CLEAR for item in batch):
            await self._sequencer.clear()
        await asyncio.gather(
            *(self._apply(item) for item in batch if item.method != UpdateMethod.CLEAR)
        )

    async def _apply(self, update: Update) -> None:
        match update.method:
            case UpdateMethod.SET:
                await self._sequencer.set(update.key, update.value)
            case UpdateMethod.MERGE:
                await self._sequencer.merge(update.key, update.value)
            case UpdateMethod.MERGE_COLLECTION:
                await self._sequencer.merge_collection(update.key, update.value)
            case UpdateMethod.MULTI_SET:
                await self._sequencer.multi_set(update.value)
