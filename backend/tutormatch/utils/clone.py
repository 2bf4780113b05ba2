"""Value copies of plain data structures."""

from __future__ import annotations

from typing import TypeVar

T = TypeVar("T")

_SCALARS = (str, int, float, bool, type(None))


def deep_clone(value: T) -> T:
    """Return an independent copy of a JSON-like value.

    Dicts (with string keys), lists and tuples are copied recursively and
    scalars are returned as is. Anything else (functions, open handles,
    model instances) raises TypeError instead of being shared by reference.
    """
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"cannot clone mapping with non-string key {key!r}")
            out[key] = deep_clone(item)
        return out
    if isinstance(value, list):
        return [deep_clone(item) for item in value]
    if isinstance(value, tuple):
        return tuple(deep_clone(item) for item in value)
    raise TypeError(f"cannot clone value of type {type(value).__name__}")
