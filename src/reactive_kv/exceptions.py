"""Custom exceptions for the reactive_kv package."""

from __future__ import annotations


class ReactiveStoreError(Exception):
    """Base exception for all reactive_kv errors."""


class NotInitializedError(ReactiveStoreError):
    """Raised when the engine is used before ``init`` or after ``teardown``."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot run '{operation}': the store is not initialized")


class InvalidUpdateError(ReactiveStoreError):
    """Raised when a collection or update batch is malformed."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Invalid '{operation}' update: {message}")


class StorageError(ReactiveStoreError):
    """Raised when a backend operation fails.

    Plain storage errors are treated as transient: a failed write triggers
    eviction of a safe-to-evict key and a retry.
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        msg = f"Storage error during '{operation}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class StorageFullError(StorageError):
    """Raised when the backend has run out of capacity."""


class FatalStorageError(StorageError):
    """Raised for backend failures that eviction cannot fix (corrupt storage)."""


class InvalidDataError(FatalStorageError):
    """Raised when a value cannot be serialized by the backend."""


class ConfigurationError(ReactiveStoreError):
    """Raised when store or init configuration is invalid."""
