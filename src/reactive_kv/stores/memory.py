"""InMemoryStore — zero-config, dict-backed storage for development and testing."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any

from reactive_kv.exceptions import StorageFullError
from reactive_kv.merge import fast_merge
from reactive_kv.stores.base import Store


class InMemoryStore(Store):
    """In-memory store using a plain dict.  Data is lost on process exit.

    Values are deep-copied on the way in and out so callers can never alias
    stored data.

    Parameters:
        max_keys: Optional capacity.  Writing a new key beyond it raises
                  :class:`StorageFullError`, which is how a size-limited
                  backend is simulated.
    """

    def __init__(self, max_keys: int | None = None) -> None:
        self._data: dict[str, Any] = {}
        self.max_keys = max_keys

    def _check_capacity(self, new_keys: Iterable[str]) -> None:
        if self.max_keys is None:
            return
        added = {key for key in new_keys if key not in self._data}
        if len(self._data) + len(added) > self.max_keys:
            raise StorageFullError("set", f"capacity of {self.max_keys} keys exceeded")

    async def get_item(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    async def set_item(self, key: str, value: Any) -> None:
        self._check_capacity([key])
        self._data[key] = copy.deepcopy(value)

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    async def remove_items(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def multi_get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: copy.deepcopy(self._data.get(key)) for key in keys}

    async def multi_set(self, entries: Mapping[str, Any]) -> None:
        self._check_capacity(entries)
        for key, value in entries.items():
            self._data[key] = copy.deepcopy(value)

    async def multi_merge(self, entries: Mapping[str, Any]) -> None:
        self._check_capacity(entries)
        for key, change in entries.items():
            merged = fast_merge(self._data.get(key), change, True)
            if merged is None:
                self._data.pop(key, None)
            else:
                self._data[key] = copy.deepcopy(merged)

    async def get_all_keys(self) -> set[str]:
        return set(self._data)

    async def clear(self) -> None:
        self._data.clear()
