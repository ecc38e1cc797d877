"""Eviction policy and storage-full recovery.

Keys matching a *safe eviction* pattern may be deleted to make room when the
backend rejects a write.  The least recently touched eligible key goes first,
then the failed write is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Collection, Iterable
from typing import TYPE_CHECKING

from reactive_kv.exceptions import FatalStorageError, StorageError

if TYPE_CHECKING:
    from reactive_kv.cache import CacheStore
    from reactive_kv.keys import KeySchema
    from reactive_kv.subscriptions import SubscriptionRegistry

_logger = logging.getLogger(__name__)


class EvictionPolicy:
    """Decides which keys may be evicted, and in what order.

    A key is a candidate when it matches a safe eviction pattern, is known to
    hold a persisted value, and has no exact-key subscription that did not
    opt into eviction.  Collection-wide subscriptions never block eviction.

    Parameters:
        schema:             Key schema used for prefix matching.
        cache:              Source of known keys and recency stamps.
        registry:           Live subscriptions.
        safe_eviction_keys: Exact keys or collection prefixes that may be evicted.
        ram_only_keys:      Keys never persisted; evicting them frees nothing.
    """

    def __init__(
        self,
        schema: KeySchema,
        cache: CacheStore,
        registry: SubscriptionRegistry,
        safe_eviction_keys: Iterable[str] = (),
        ram_only_keys: Iterable[str] = (),
    ) -> None:
        self._schema = schema
        self._cache = cache
        self._registry = registry
        self.safe_eviction_keys = tuple(safe_eviction_keys)
        self._ram_only_keys = tuple(ram_only_keys)

    def is_safe_eviction_key(self, key: str) -> bool:
        return self._schema.matches_any(self.safe_eviction_keys, key)

    def blocklist(self) -> set[str]:
        """Safe keys currently pinned by an exact-key subscription."""
        return {
            key
            for key in self._registry.eviction_blocked_keys()
            if not self._schema.is_collection_key(key) and self.is_safe_eviction_key(key)
        }

    def candidates(self, exclude: Collection[str] = ()) -> list[str]:
        """Eligible keys, least recently used first."""
        blocked = self.blocklist()
        eligible = [
            key
            for key in self._cache.storage_keys
            if key not in exclude
            and key not in blocked
            and not self._schema.is_collection_key(key)
            and not self._schema.matches_any(self._ram_only_keys, key)
            and self.is_safe_eviction_key(key)
        ]
        return self._cache.least_recently_used(eligible)

    def next_candidate(self, exclude: Collection[str] = ()) -> str | None:
        candidates = self.candidates(exclude)
        return candidates[0] if candidates else None

    def stamp_safe_keys(self, keys: Iterable[str]) -> None:
        """Seed the recency order with the safe keys found in storage."""
        for key in sorted(keys):
            if self.is_safe_eviction_key(key):
                self._cache.touch(key)


class EvictionRecovery:
    """Retries a failed backend write after evicting keys.

    Parameters:
        policy: Chooses the key to evict.
        evict:  Coroutine function removing one key from cache and backend
                and notifying its subscribers.
    """

    def __init__(
        self,
        policy: EvictionPolicy,
        evict: Callable[[str], Awaitable[None]],
    ) -> None:
        self._policy = policy
        self._evict = evict

    async def run(
        self,
        operation: str,
        write: Callable[[], Awaitable[None]],
        keys: Collection[str] = (),
    ) -> None:
        """Run *write*, evicting one key per failed attempt.

        Each retry removes a key from the candidate set, so the loop ends
        either with a successful write or with the original error once no
        candidate is left.  Fatal storage errors are never retried.

        Parameters:
            operation: Name used in log messages.
            write:     Zero-argument coroutine function performing the write.
            keys:      Keys written by *write*; they are never evicted for it.
        """
        while True:
            try:
                await write()
                return
            except FatalStorageError:
                _logger.warning("Fatal storage error during %s, not evicting", operation)
                raise
            except StorageError as error:
                _logger.info("Handled error while running %s: %s", operation, error)
                key = self._policy.next_candidate(exclude=keys)
                if key is None:
                    _logger.warning("Out of storage. But found no acceptable keys to remove.")
                    raise
                _logger.info(
                    "Out of storage. Evicting least recently accessed key (%s) and retrying.",
                    key,
                )
                await self._evict(key)
