"""Key schema — exact keys, collection prefixes and prefix matching."""

from __future__ import annotations

from collections.abc import Iterable


class KeySchema:
    """The set of keys the store knows about.

    A *collection key* is a literal prefix (e.g. ``"report_"``) shared by a
    family of member keys (``"report_1"``, ``"report_2"``).  Membership is
    decided purely by prefix; the schema only says which patterns are
    collection prefixes.

    Parameters:
        keys:            Plain (non-collection) keys.
        collection_keys: Collection prefixes.
    """

    def __init__(
        self,
        keys: Iterable[str] = (),
        collection_keys: Iterable[str] = (),
    ) -> None:
        self.keys: frozenset[str] = frozenset(keys)
        self.collection_keys: frozenset[str] = frozenset(collection_keys)

    def is_collection_key(self, key: str) -> bool:
        return key in self.collection_keys

    @staticmethod
    def is_collection_member_key(collection_key: str, key: str) -> bool:
        """``True`` if *key* is a member of *collection_key* (and not the prefix itself)."""
        return key.startswith(collection_key) and len(key) > len(collection_key)

    def is_key_match(self, pattern: str, key: str) -> bool:
        """Match *key* against a subscription or configuration pattern.

        Collection prefixes match every member; any other pattern matches
        only itself.
        """
        if self.is_collection_key(pattern):
            return key.startswith(pattern)
        return pattern == key

    def matches_any(self, patterns: Iterable[str], key: str) -> bool:
        return any(self.is_key_match(pattern, key) for pattern in patterns)

    def get_collection_key(self, key: str) -> str | None:
        """Return the longest collection prefix *key* belongs to, if any."""
        best: str | None = None
        for collection_key in self.collection_keys:
            if self.is_collection_member_key(collection_key, key) and (
                best is None or len(collection_key) > len(best)
            ):
                best = collection_key
        return best
