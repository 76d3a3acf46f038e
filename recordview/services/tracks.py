"""Greedy interval packing of rows into per-resource tracks.

Rows sharing a resource are sorted by start and placed on the lowest-numbered
track whose intervals they do not overlap. Intervals are half-open, so a
booking ending at 10:00 and one starting at 10:00 share a track. The number of
tracks opened for a resource equals its maximum number of simultaneous rows.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from recordview.services.datetimes import naive, parse_datetime

logger = logging.getLogger(__name__)

TRACK_INDEX_KEY = "_track_index"

_LANE_SUFFIX = re.compile(r"#\d+$")
_EPOCH = datetime(1970, 1, 1)

Interval = tuple[float, float]


def normalize_resource_key(value: Any) -> str | None:
    """``"room-1#2"`` and ``"room-1"`` belong to the same resource."""
    if value is None:
        return None
    return _LANE_SUFFIX.sub("", str(value).strip())


def coerce_bound(value: Any) -> float | None:
    """Convert a stored bound to seconds since the epoch; None when unparseable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return (naive(parsed) - _EPOCH).total_seconds()


def overlaps(first: Interval, second: Interval) -> bool:
    return first[0] < second[1] and second[0] < first[1]


@dataclass
class TrackAssignment:
    tracks: dict[str, list[list[Interval]]] = field(default_factory=dict)

    def track_count(self, resource: str) -> int:
        return len(self.tracks.get(resource, []))

    def counts(self) -> dict[str, int]:
        return {resource: len(tracks) for resource, tracks in self.tracks.items()}

    def place(self, resource: str, interval: Interval) -> int:
        tracks = self.tracks.setdefault(resource, [])
        for index, occupied in enumerate(tracks):
            if not any(overlaps(interval, existing) for existing in occupied):
                occupied.append(interval)
                return index
        tracks.append([interval])
        return len(tracks) - 1


def _row_payload(row: Any) -> dict[str, Any]:
    raw = getattr(row, "raw", row)
    if not isinstance(raw, dict):
        raise TypeError(f"Cannot annotate track index on {type(raw).__name__}")
    return raw


def assign_tracks(
    rows: Iterable[Any],
    resource_key: Callable[[Any], Any],
    interval: Callable[[Any], tuple[Any, Any]],
) -> TrackAssignment:
    """Assign ``_track_index`` on each row's raw payload.

    ``resource_key(row)`` returns the resource identifier and ``interval(row)``
    the ``(start, end)`` bounds. Rows without a resource are left untouched;
    rows whose bounds cannot be parsed land on track 0 without occupying it.
    """
    assignment = TrackAssignment()
    groups: dict[str, list[tuple[Interval, int, dict[str, Any]]]] = {}

    for position, row in enumerate(rows):
        resource = normalize_resource_key(resource_key(row))
        if resource is None:
            continue
        payload = _row_payload(row)
        start_value, end_value = interval(row)
        start, end = coerce_bound(start_value), coerce_bound(end_value)
        if start is None or end is None:
            logger.debug("Row %d on %s has unparseable bounds; using track 0", position, resource)
            payload[TRACK_INDEX_KEY] = 0
            continue
        groups.setdefault(resource, []).append(((start, max(start, end)), position, payload))

    for resource, entries in groups.items():
        # sorted() is stable, so equal starts keep their input order
        for bounds, _, payload in sorted(entries, key=lambda entry: entry[0][0]):
            payload[TRACK_INDEX_KEY] = assignment.place(resource, bounds)
    return assignment
