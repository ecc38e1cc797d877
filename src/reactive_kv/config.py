# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Configuration models for the engine and its storage backend."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from reactive_kv.exceptions import ConfigurationError
from reactive_kv.keys import KeySchema
from reactive_kv.stores.base import Store
from reactive_kv.stores.memory import InMemoryStore


class InitOptions(BaseModel):
    """Options passed to ``ReactiveStore.init``.

    Attributes:
        keys: Plain keys the application uses
        collection_keys: Collection prefixes (e.g. "report_")
        initial_key_states: Default value per key or collection prefix
        safe_eviction_keys: Keys or prefixes that may be evicted when storage is full
        ram_only_keys: Keys or prefixes that are never persisted
        max_cached_keys_count: Cached values kept when trimming (0 disables trimming)
    """

    keys: list[str] = Field(default_factory=list)
    collection_keys: list[str] = Field(default_factory=list)
    initial_key_states: dict[str, Any] = Field(default_factory=dict)
    safe_eviction_keys: list[str] = Field(default_factory=list)
    ram_only_keys: list[str] = Field(default_factory=list)
    max_cached_keys_count: int = Field(default=1000, ge=0)

    @field_validator("collection_keys")
    @classmethod
    def _reject_empty_prefix(cls, value: list[str]) -> list[str]:
        if any(not prefix for prefix in value):
            raise ValueError("collection keys must be non-empty prefixes")
        return value

    def key_schema(self) -> KeySchema:
        return KeySchema(keys=self.keys, collection_keys=self.collection_keys)


class StorageConfig(BaseModel):
    """Storage backend configuration.

    Attributes:
        type: Store type ("memory" or "sqlite")
        path: Path to SQLite database file (for sqlite type)
        max_keys: Key capacity of the memory store (unbounded when unset)
    """

    type: Literal["memory", "sqlite"] = "memory"
    path: str = ""
    max_keys: int | None = Field(default=None, ge=1)


def create_store(config: StorageConfig) -> Store:
    """Create a store from configuration.

    Args:
        config: Storage configuration

    Returns:
        Store instance
    """
    if config.type == "sqlite":
        if not config.path:
            raise ConfigurationError("SQLite store requires 'path' configuration")
        from reactive_kv.stores.sqlite import SQLiteStore

        return SQLiteStore(config.path)
    return InMemoryStore(max_keys=config.max_keys)
