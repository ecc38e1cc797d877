"""Deep-merge engine with tombstone (``None``) semantics.

``None`` inside a patch is an explicit "delete this nested field" marker,
distinct from simply leaving a field out.  A single partial update can
therefore add and remove nested fields at once.

Arrays are opaque: they are always replaced wholesale, never merged
element by element.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any


class ValueKind(StrEnum):
    OBJECT = "object"
    ARRAY = "array"
    TOMBSTONE = "tombstone"
    SCALAR = "scalar"


def kind_of(value: Any) -> ValueKind:
    """Classify *value*.  Binary payloads (``bytes`` etc.) count as scalars."""
    if value is None:
        return ValueKind.TOMBSTONE
    if isinstance(value, Mapping):
        return ValueKind.OBJECT
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    return ValueKind.SCALAR


def _merge_object(
    target: Any,
    source: Mapping[str, Any],
    remove_null_object_values: bool,
) -> dict[str, Any]:
    destination: dict[str, Any] = {}
    target_object = target if kind_of(target) is ValueKind.OBJECT else None

    # Copy the target first.  When tombstones are being removed, keys that are
    # null in either the target or the source are left out, and untouched
    # nested objects are filtered too.
    if target_object is not None:
        for key, target_value in target_object.items():
            if not remove_null_object_values:
                destination[key] = target_value
            elif key in source:
                if target_value is not None and source[key] is not None:
                    destination[key] = target_value
            elif kind_of(target_value) is ValueKind.OBJECT:
                destination[key] = _merge_object(target_value, target_value, True)
            elif target_value is not None:
                destination[key] = target_value

    for key, source_value in source.items():
        match kind_of(source_value):
            case ValueKind.TOMBSTONE:
                if remove_null_object_values:
                    continue
                destination[key] = None
            case ValueKind.OBJECT:
                target_value = target_object.get(key) if target_object is not None else None
                # Merge into an empty object so nested tombstones still get filtered.
                destination[key] = _merge_object(
                    target_value if target_value is not None else {},
                    source_value,
                    remove_null_object_values,
                )
            case ValueKind.ARRAY | ValueKind.SCALAR:
                destination[key] = source_value

    return destination


def fast_merge(target: Any, source: Any, remove_null_object_values: bool = True) -> Any:
    """Merge *source* into *target* and return the result.

    * Scalar, binary, ``None`` or array *source* replaces *target* outright.
    * Two objects are merged key by key, recursively.
    * An object *source* over a non-object *target* replaces it (after
      tombstone filtering).

    Neither input is mutated.
    """
    match kind_of(source):
        case ValueKind.OBJECT:
            return _merge_object(target, source, remove_null_object_values)
        case ValueKind.ARRAY | ValueKind.SCALAR | ValueKind.TOMBSTONE:
            return source


def remove_nested_null_values(value: Any) -> Any:
    """Drop every ``None``-valued object key, at any depth (self-merge)."""
    if kind_of(value) is ValueKind.OBJECT:
        return fast_merge(value, value, True)
    return value


def apply_merge(
    existing: Any,
    changes: Iterable[Any],
    remove_null_object_values: bool = True,
) -> Any:
    """Fold queued *changes* onto *existing*, left to right."""
    result = existing
    for change in changes:
        result = fast_merge(result, change, remove_null_object_values)
    return result


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality that tells booleans apart from numbers.

    Plain ``==`` treats ``1 == True`` and ``{"a": 1} == {"a": True}`` as
    equal; here they differ.  Lists and tuples compare as arrays.
    """
    kind = kind_of(left)
    if kind is not kind_of(right):
        return False
    match kind:
        case ValueKind.TOMBSTONE:
            return True
        case ValueKind.OBJECT:
            return left.keys() == right.keys() and all(
                deep_equal(value, right[key]) for key, value in left.items()
            )
        case ValueKind.ARRAY:
            return len(left) == len(right) and all(
                deep_equal(a, b) for a, b in zip(left, right)
            )
        case ValueKind.SCALAR:
            if isinstance(left, bool) != isinstance(right, bool):
                return False
            return bool(left == right)
