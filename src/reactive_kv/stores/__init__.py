"""Storage backends the engine persists through.

``SQLiteStore`` is imported on first access, so the package works without
the optional ``aiosqlite`` dependency until that backend is used.
"""

from typing import Any

from reactive_kv.stores.base import Store
from reactive_kv.stores.memory import InMemoryStore

__all__ = ["InMemoryStore", "SQLiteStore", "Store"]


def __getattr__(name: str) -> Any:
    if name == "SQLiteStore":
        from reactive_kv.stores.sqlite import SQLiteStore

        return SQLiteStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
