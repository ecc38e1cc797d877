"""reactive_kv — a reactive key-value store over a slow persistent backend.

Reads come from an in-memory cache, writes notify subscribers immediately
and are persisted in call order per key.  When the backend fills up,
safe-to-evict keys are dropped least recently used first and the write is
retried.
"""

from reactive_kv.config import InitOptions, StorageConfig, create_store
from reactive_kv.engine import ReactiveStore
from reactive_kv.exceptions import (
    ConfigurationError,
    FatalStorageError,
    InvalidDataError,
    InvalidUpdateError,
    NotInitializedError,
    ReactiveStoreError,
    StorageError,
    StorageFullError,
)
from reactive_kv.merge import fast_merge, remove_nested_null_values
from reactive_kv.updates import Update, UpdateMethod

__all__ = [
    "ConfigurationError",
    "FatalStorageError",
    "InitOptions",
    "InvalidDataError",
    "InvalidUpdateError",
    "NotInitializedError",
    "ReactiveStore",
    "ReactiveStoreError",
    "StorageConfig",
    "StorageError",
    "StorageFullError",
    "Update",
    "UpdateMethod",
    "create_store",
    "fast_merge",
    "remove_nested_null_values",
]
