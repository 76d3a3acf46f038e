"""Dot-path traversal over raw rows and related records."""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

PATH_SEPARATOR = "."

_SCALAR_TYPES = (str, bytes, int, float, bool, Decimal, date, datetime, time, UUID, enum.Enum)


def is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, _SCALAR_TYPES)


def is_file_descriptor(value: Any) -> bool:
    return isinstance(value, Mapping) and ("url" in value or "name" in value)


def scalar_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, enum.Enum):
        return str(value.value)
    return str(value)


def reduce_list(values: Sequence[Any], separator: str = ", ") -> Any:
    """Collapse a list found at the end of a path into a display value.

    File/image descriptors pass through, scalars are joined and lists of
    records become an ``"N items"`` count.
    """
    if not values:
        return ""
    first = values[0]
    if is_file_descriptor(first):
        return list(values)
    if is_scalar(first):
        return separator.join(scalar_text(item) for item in values)
    return f"{len(values)} items"


def _step(current: Any, part: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(part)
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        if not part.lstrip("-").isdigit():
            return None
        index = int(part)
        if -len(current) <= index < len(current):
            return current[index]
        return None
    if is_scalar(current) or part.startswith("_"):
        return None
    value = getattr(current, part, None)
    if callable(value):
        return None
    return value


def walk_path(row: Any, path: str) -> Any:
    """Return the value at ``path`` or None when any node is missing."""
    current = row
    for part in path.split(PATH_SEPARATOR):
        if current is None:
            return None
        current = _step(current, part)
    return current


def extract_path(row: Any, path: str, separator: str = ", ") -> Any:
    """Walk ``path`` and reduce the terminal value for display; missing -> ``""``."""
    value = walk_path(row, path)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return reduce_list(list(value), separator)
    return value
