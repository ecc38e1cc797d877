# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Update batches — several mutations applied through one call."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from reactive_kv.exceptions import InvalidUpdateError


class UpdateMethod(StrEnum):
    SET = "set"
    MERGE = "merge"
    MERGE_COLLECTION = "merge_collection"
    MULTI_SET = "multi_set"
    CLEAR = "clear"


_KEYED_METHODS = {UpdateMethod.SET, UpdateMethod.MERGE, UpdateMethod.MERGE_COLLECTION}
_MAPPING_METHODS = {UpdateMethod.MERGE_COLLECTION, UpdateMethod.MULTI_SET}


class Update(BaseModel):
    """One entry of an update batch.

    Attributes:
        method: Mutation to apply
        key: Target key (collection prefix for merge_collection)
        value: New value, merge changes, or the ``{key: value}`` mapping
    """

    model_config = ConfigDict(frozen=True)

    method: UpdateMethod
    key: str | None = None
    value: Any = None

    @model_validator(mode="after")
    def _check_shape(self) -> Update:
        if self.method in _KEYED_METHODS and not self.key:
            raise ValueError(f"'{self.method}' requires a key")
        if self.method in _MAPPING_METHODS and not isinstance(self.value, Mapping):
            raise ValueError(f"'{self.method}' requires a mapping value")
        return self

    # ── Factory helpers ──────────────────────────────────────

    @staticmethod
    def set(key: str, value: Any) -> Update:
        return Update(method=UpdateMethod.SET, key=key, value=value)

    @staticmethod
    def merge(key: str, changes: Any) -> Update:
        return Update(method=UpdateMethod.MERGE, key=key, value=changes)

    @staticmethod
    def merge_collection(collection_key: str, collection: Mapping[str, Any]) -> Update:
        return Update(method=UpdateMethod.MERGE_COLLECTION, key=collection_key, value=collection)

    @staticmethod
    def multi_set(data: Mapping[str, Any]) -> Update:
        return Update(method=UpdateMethod.MULTI_SET, value=data)

    @staticmethod
    def clear() -> Update:
        return Update(method=UpdateMethod.CLEAR)


def validate_updates(updates: Iterable[Update | Mapping[str, Any]]) -> list[Update]:
    """Validate a whole batch before anything is applied.

    Raises:
        InvalidUpdateError: If any entry is malformed.
    """
    batch: list[Update] = []
    for index, raw in enumerate(updates):
        if isinstance(raw, Update):
            batch.append(raw)
            continue
        try:
            batch.append(Update.model_validate(raw))
        except ValidationError as exc:
            raise InvalidUpdateError("update", f"entry {index} is malformed: {exc}") from exc
    return batch
