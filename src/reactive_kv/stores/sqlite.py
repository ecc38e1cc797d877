"""SQLiteStore — durable, single-file storage backend using aiosqlite."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

try:
    import aiosqlite
except ImportError as exc:
    raise ImportError(
        "SQLiteStore requires the 'aiosqlite' package. "
        "Install it with: pip install reactive-kv[sqlite]"
    ) from exc

from reactive_kv.exceptions import (
    FatalStorageError,
    InvalidDataError,
    StorageError,
    StorageFullError,
)
from reactive_kv.stores.base import Store

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    record_key TEXT NOT NULL PRIMARY KEY,
    value_json TEXT NOT NULL
)
"""

# json_patch() follows RFC 7396: nested nulls delete fields and arrays are
# replaced, which is the same contract as the engine's deep merge.  New rows
# are patched onto '{}' so their own nulls are dropped as well.
_MERGE_ITEM = """
INSERT INTO kv_store (record_key, value_json)
VALUES (:key, json_patch('{}', :value))
ON CONFLICT(record_key) DO UPDATE SET value_json = json_patch(kv_store.value_json, :value)
"""

_FULL_MARKERS = ("full", "quota")
_CORRUPT_MARKERS = ("malformed", "not a database", "corrupt")


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except aiosqlite.Error as exc:
        message = str(exc)
        lowered = message.lower()
        if any(marker in lowered for marker in _FULL_MARKERS):
            raise StorageFullError(operation, message) from exc
        if any(marker in lowered for marker in _CORRUPT_MARKERS):
            raise FatalStorageError(operation, message) from exc
        raise StorageError(operation, message) from exc


def _dumps(operation: str, key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise InvalidDataError(operation, f"value for key '{key}' is not JSON-serializable") from exc


class SQLiteStore(Store):
    """Persistent store backed by a single SQLite file.

    Values are stored as JSON text, so only JSON-serializable values can be
    persisted; anything else raises :class:`InvalidDataError`.

    Parameters:
        db_path: Path to the SQLite database file.  Use ``":memory:"``
                 for an in-memory database (useful for testing).
    """

    def __init__(self, db_path: str = "reactive_kv.db") -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def _connect(self) -> aiosqlite.Connection:
        if self._db is None:
            with _translate_errors("connect"):
                self._db = await aiosqlite.connect(self._db_path)
                await self._db.execute(_CREATE_TABLE)
                await self._db.commit()
        return self._db

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ── Store protocol ───────────────────────────────────────

    async def get_item(self, key: str) -> Any:
        db = await self._connect()
        with _translate_errors("get_item"):
            cursor = await db.execute(
                "SELECT value_json FROM kv_store WHERE record_key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def set_item(self, key: str, value: Any) -> None:
        payload = _dumps("set_item", key, value)
        db = await self._connect()
        with _translate_errors("set_item"):
            await db.execute(
                "INSERT OR REPLACE INTO kv_store (record_key, value_json) VALUES (?, ?)",
                (key, payload),
            )
            await db.commit()

    async def remove_item(self, key: str) -> None:
        db = await self._connect()
        with _translate_errors("remove_item"):
            await db.execute("DELETE FROM kv_store WHERE record_key = ?", (key,))
            await db.commit()

    async def remove_items(self, keys: Iterable[str]) -> None:
        params = [(key,) for key in keys]
        if not params:
            return
        db = await self._connect()
        with _translate_errors("remove_items"):
            await db.executemany("DELETE FROM kv_store WHERE record_key = ?", params)
            await db.commit()

    async def multi_get(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = list(keys)
        result: dict[str, Any] = dict.fromkeys(wanted)
        if not wanted:
            return result
        db = await self._connect()
        placeholders = ", ".join("?" for _ in wanted)
        with _translate_errors("multi_get"):
            cursor = await db.execute(
                f"SELECT record_key, value_json FROM kv_store WHERE record_key IN ({placeholders})",
                wanted,
            )
            rows = await cursor.fetchall()
        for record_key, value_json in rows:
            result[record_key] = json.loads(value_json)
        return result

    async def multi_set(self, entries: Mapping[str, Any]) -> None:
        params = [(key, _dumps("multi_set", key, value)) for key, value in entries.items()]
        if not params:
            return
        db = await self._connect()
        with _translate_errors("multi_set"):
            await db.executemany(
                "INSERT OR REPLACE INTO kv_store (record_key, value_json) VALUES (?, ?)",
                params,
            )
            await db.commit()

    async def multi_merge(self, entries: Mapping[str, Any]) -> None:
        params = [
            {"key": key, "value": _dumps("multi_merge", key, change)}
            for key, change in entries.items()
        ]
        if not params:
            return
        db = await self._connect()
        with _translate_errors("multi_merge"):
            await db.executemany(_MERGE_ITEM, params)
            await db.commit()

    async def get_all_keys(self) -> set[str]:
        db = await self._connect()
        with _translate_errors("get_all_keys"):
            cursor = await db.execute("SELECT record_key FROM kv_store")
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def clear(self) -> None:
        db = await self._connect()
        with _translate_errors("clear"):
            await db.execute("DELETE FROM kv_store")
            await db.commit()
