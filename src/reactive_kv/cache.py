"""CacheStore — in-memory values, recency stamps and in-flight backend tasks."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from reactive_kv.merge import deep_equal


class CacheStore:
    """In-memory cache providing data by reference.

    Recency is a monotonically increasing counter stamped on a key every time
    it is read or written.  Eviction picks the least-recently-touched keys by
    comparing stamps, so no linked list has to be maintained.

    A cached ``None`` means "known to be absent": the key was removed (or
    read back empty) and must not be fetched from the backend again.

    Parameters:
        max_cached_keys: How many entries :meth:`remove_least_recently_used_keys`
                         keeps.  ``0`` disables trimming.
    """

    def __init__(self, max_cached_keys: int = 0) -> None:
        self.max_cached_keys = max_cached_keys
        self._values: dict[str, Any] = {}
        self._stamps: dict[str, int] = {}
        self._counter = itertools.count(1)
        self._storage_keys: set[str] = set()
        self._pending: dict[str, asyncio.Future[Any]] = {}

    # ── values ───────────────────────────────────────────────

    def has(self, key: str) -> bool:
        """``True`` if *key* has a cache entry (a known-absent ``None`` counts)."""
        return key in self._values

    def get(self, key: str, touch: bool = True) -> Any:
        if touch:
            self.touch(key)
        return self._values.get(key)

    def set(self, key: str, value: Any) -> Any:
        self._values[key] = value
        if value is None:
            self._storage_keys.discard(key)
        else:
            self._storage_keys.add(key)
        self.touch(key)
        return value

    def drop(self, key: str) -> None:
        """Forget *key* entirely (value, recency and known-key entry)."""
        self._values.pop(key, None)
        self._stamps.pop(key, None)
        self._storage_keys.discard(key)

    def touch(self, key: str) -> None:
        self._stamps[key] = next(self._counter)

    def all_cached_keys(self) -> set[str]:
        return set(self._values)

    def has_value_changed(self, key: str, value: Any) -> bool:
        return not deep_equal(self._values.get(key), value)

    # ── known keys ───────────────────────────────────────────

    @property
    def storage_keys(self) -> set[str]:
        """Keys known to hold a value, in the backend or in memory."""
        return set(self._storage_keys)

    def add_key(self, key: str) -> None:
        self._storage_keys.add(key)

    def discard_key(self, key: str) -> None:
        self._storage_keys.discard(key)

    # ── recency ──────────────────────────────────────────────

    def stamp(self, key: str) -> int:
        """Recency stamp of *key*; ``0`` if it was never touched."""
        return self._stamps.get(key, 0)

    def least_recently_used(self, keys: Iterable[str]) -> list[str]:
        """Order *keys* oldest first.  Equal stamps fall back to key order."""
        return sorted(keys, key=lambda k: (self.stamp(k), k))

    def remove_least_recently_used_keys(
        self,
        can_drop: Callable[[str], bool] = lambda _key: True,
    ) -> list[str]:
        """Trim cached values down to ``max_cached_keys``.

        Only memory is freed: dropped keys stay known and are read back from
        the backend on the next access.  Keys rejected by *can_drop* are
        skipped.
        """
        if self.max_cached_keys <= 0:
            return []
        excess = len(self._values) - self.max_cached_keys
        if excess <= 0:
            return []

        removed: list[str] = []
        for key in self.least_recently_used(self._values):
            if len(removed) >= excess:
                break
            if not can_drop(key):
                continue
            del self._values[key]
            removed.append(key)
        return removed

    # ── pending tasks ────────────────────────────────────────

    def get_task(self, task_name: str) -> asyncio.Future[Any] | None:
        return self._pending.get(task_name)

    def capture_task(self, task_name: str, awaitable: Awaitable[Any]) -> asyncio.Future[Any]:
        """Start *awaitable* and share it under *task_name* until it settles."""
        future = asyncio.ensure_future(awaitable)
        self._pending[task_name] = future

        def _forget(done: asyncio.Future[Any]) -> None:
            if self._pending.get(task_name) is done:
                del self._pending[task_name]

        future.add_done_callback(_forget)
        return future

    def pending_tasks(self) -> list[asyncio.Future[Any]]:
        return list(self._pending.values())

    def reset(self) -> None:
        self._values.clear()
        self._stamps.clear()
        self._storage_keys.clear()
