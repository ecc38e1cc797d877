"""Selector evaluation — narrow a value down to the part a subscriber wants."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeAlias

Selector: TypeAlias = str | Sequence[str | int] | Callable[[Any], Any]


def _path_segments(selector: str | Sequence[str | int]) -> list[str | int]:
    if isinstance(selector, str):
        return [int(part) if part.isdigit() else part for part in selector.split(".")]
    return list(selector)


def select(value: Any, selector: Selector) -> Any:
    """Return the sub-value of *value* addressed by *selector*.

    A string is a dotted path (``"a.b.0"``), a sequence is a list of path
    segments and a callable receives the value and returns the selection.
    A path that does not exist resolves to ``None``.
    """
    if callable(selector):
        return selector(value)

    current = value
    for segment in _path_segments(selector):
        if isinstance(current, Mapping):
            current = current.get(segment if isinstance(segment, str) else str(segment))
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not isinstance(segment, int) or not -len(current) <= segment < len(current):
                return None
            current = current[segment]
        else:
            return None
        if current is None:
            return None
    return current


def select_collection(collection: Mapping[str, Any], selector: Selector) -> dict[str, Any]:
    """Apply *selector* to every member of *collection*."""
    return {key: select(member, selector) for key, member in collection.items()}
