"""Store protocol — the persistent key-value backend the engine writes through."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any


class Store(ABC):
    """Abstract base for all storage backends.

    The store is completely agnostic to what is being stored — it just
    persists values keyed by string.  Every method may fail; failures are
    raised as :class:`~reactive_kv.exceptions.StorageError` subclasses
    (``StorageFullError`` when out of capacity, ``FatalStorageError`` when
    retrying cannot help).
    """

    @abstractmethod
    async def get_item(self, key: str) -> Any:
        """Return the stored value, or ``None`` if not found."""
        ...

    @abstractmethod
    async def set_item(self, key: str, value: Any) -> None:
        """Create or overwrite a value."""
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Delete a value.  No-op if the key does not exist."""
        ...

    async def remove_items(self, keys: Iterable[str]) -> None:
        """Delete several values."""
        for key in keys:
            await self.remove_item(key)

    @abstractmethod
    async def multi_get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return ``{key: value}`` for *keys*; missing keys map to ``None``."""
        ...

    @abstractmethod
    async def multi_set(self, entries: Mapping[str, Any]) -> None:
        """Create or overwrite several values in one batch."""
        ...

    @abstractmethod
    async def multi_merge(self, entries: Mapping[str, Any]) -> None:
        """Deep-merge each change into the stored value.

        Nested ``None`` values in a change delete the matching stored field;
        arrays replace the stored value.
        """
        ...

    @abstractmethod
    async def get_all_keys(self) -> set[str]:
        """Return every stored key."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Delete everything."""
        ...

    async def close(self) -> None:
        """Release backend resources.  The default implementation does nothing."""
