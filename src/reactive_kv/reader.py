"""Read-through access to the backend.

Misses are filled from the backend through pending tasks kept in the cache,
so concurrent readers of one key share a single backend call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from reactive_kv.exceptions import StorageError

if TYPE_CHECKING:
    from reactive_kv.cache import CacheStore
    from reactive_kv.keys import KeySchema
    from reactive_kv.stores.base import Store

_logger = logging.getLogger(__name__)

_GET_ALL_KEYS_TASK = "get_all_keys"


class StorageReader:
    """Reads values and key listings, caching what the backend returns.

    Parameters:
        cache:         Cache to consult first and fill on a miss.
        store:         Backend to read from.
        schema:        Key schema, for RAM-only pattern matching.
        ram_only_keys: Keys that only ever live in the cache.
    """

    def __init__(
        self,
        cache: CacheStore,
        store: Store,
        schema: KeySchema,
        ram_only_keys: Iterable[str] = (),
    ) -> None:
        self._cache = cache
        self._store = store
        self._schema = schema
        self._ram_only_keys = tuple(ram_only_keys)
        self._keys_loaded = False

    def is_ram_only(self, key: str) -> bool:
        return self._schema.matches_any(self._ram_only_keys, key)

    async def get(self, key: str) -> Any:
        """Return the value of *key*, or ``None`` if it is absent."""
        if self._cache.has(key):
            return self._cache.get(key)
        if self.is_ram_only(key):
            return None

        task_name = f"get:{key}"
        pending = self._cache.get_task(task_name)
        if pending is None:
            pending = self._cache.capture_task(task_name, self._read(key))
        return await asyncio.shield(pending)

    async def _read(self, key: str) -> Any:
        try:
            value = await self._store.get_item(key)
        except StorageError as error:
            _logger.info("Unable to get item from persistent storage. Key: %s Error: %s", key, error)
            return None

        # A write that landed while the backend was busy wins over what we read.
        if self._cache.has(key):
            return self._cache.get(key)
        return self._cache.set(key, value)

    async def multi_get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return ``{key: value}`` for *keys*, fetching every miss in one call."""
        wanted = list(dict.fromkeys(keys))
        waiting: dict[str, asyncio.Future[Any]] = {}
        missing: list[str] = []
        for key in wanted:
            if self._cache.has(key) or self.is_ram_only(key):
                continue
            pending = self._cache.get_task(f"get:{key}")
            if pending is not None:
                waiting[key] = pending
            else:
                missing.append(key)

        if missing:
            try:
                fetched = await self._store.multi_get(missing)
            except StorageError as error:
                _logger.info("Unable to get items from persistent storage. Error: %s", error)
                fetched = {}
            else:
                for key in missing:
                    if not self._cache.has(key):
                        self._cache.set(key, fetched.get(key))

        for key, pending in waiting.items():
            await asyncio.shield(pending)

        result: dict[str, Any] = {}
        for key in wanted:
            result[key] = self._cache.get(key) if self._cache.has(key) else None
        return result

    async def get_all_keys(self) -> set[str]:
        """Return every key known to hold a value.

        The backend is listed once; afterwards the cache's known-key set is
        kept current by every write.
        """
        if self._keys_loaded:
            return self._cache.storage_keys

        pending = self._cache.get_task(_GET_ALL_KEYS_TASK)
        if pending is None:
            pending = self._cache.capture_task(_GET_ALL_KEYS_TASK, self._load_keys())
        await asyncio.shield(pending)
        return self._cache.storage_keys

    async def _load_keys(self) -> None:
        keys = await self._store.get_all_keys()
        for key in keys:
            if self.is_ram_only(key):
                continue
            if self._cache.has(key) and self._cache.get(key, touch=False) is None:
                continue
            self._cache.add_key(key)
        self._keys_loaded = True
