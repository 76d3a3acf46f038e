"""Per-request widget state derived from the inbound parameter map.

A widget reads only the parameters namespaced under its identifier, either as
a nested mapping (``{"bookings": {"page": "2"}}``) or as flat bracketed keys
(``bookings[page]=2``, ``bookings[table_ids][]=7``).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from recordview.config import settings

logger = logging.getLogger(__name__)

ORDER_DIRECTIONS = {"asc", "desc"}


def _multi_items(source: Any) -> list[tuple[str, Any]]:
    if hasattr(source, "multi_items"):
        return list(source.multi_items())
    if isinstance(source, Mapping):
        return list(source.items())
    return []


def widget_params(source: Mapping[str, Any] | Any, widget_id: str) -> dict[str, Any]:
    """Return the parameters addressed to ``widget_id``."""
    if isinstance(source, Mapping):
        nested = source.get(widget_id)
        if isinstance(nested, Mapping):
            return dict(nested)

    pattern = re.compile(rf"^{re.escape(widget_id)}\[([^\]]+)\](\[\])?$")
    params: dict[str, Any] = {}
    for key, value in _multi_items(source):
        match = pattern.match(str(key))
        if not match:
            continue
        name, is_list = match.group(1), bool(match.group(2))
        if is_list:
            params.setdefault(name, [])
            if isinstance(params[name], list):
                params[name].append(value)
            continue
        if name in params:
            existing = params[name]
            params[name] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            params[name] = value
    return params


def parse_filter_payload(payload: Any) -> dict[str, str]:
    """Parse the ``filters`` parameter into ``{name: value}``.

    Accepted payloads: a JSON-encoded list of ``"name:value"`` strings, the
    decoded list itself, or a mapping. The first occurrence of a name wins.
    Malformed payloads are ignored.
    """
    if payload is None or payload == "":
        return {}

    parsed: Any
    if isinstance(payload, str):
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed filters payload: %r", payload[:200])
            return {}
    else:
        parsed = payload

    if isinstance(parsed, Mapping):
        return {str(name): "" if value is None else str(value) for name, value in parsed.items()}
    if not isinstance(parsed, list):
        logger.warning("Ignoring filters payload of type %s", type(parsed).__name__)
        return {}

    filters: dict[str, str] = {}
    for entry in parsed:
        if not isinstance(entry, str):
            continue
        name, _, value = entry.partition(":")
        name = name.strip()
        if not name or name in filters:
            continue
        filters[name] = value
    return filters


def serialize_filters(filters: Mapping[str, Any]) -> str:
    return json.dumps([f"{name}:{value}" for name, value in filters.items()])


def filters_match(condition: Mapping[str, Any] | None, filters: Mapping[str, Any]) -> bool:
    """True when every ``name: value`` pair in ``condition`` is an active filter."""
    for name, expected in (condition or {}).items():
        actual = filters.get(name)
        if actual is None or str(actual) != str(expected):
            return False
    return True


def parse_ids(value: Any) -> tuple[str, ...]:
    """Normalize selected identifiers from a CSV string, list or scalar."""
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        raw_values: list[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        raw_values = list(value)
    else:
        raw_values = [value]
    ids: list[str] = []
    for item in raw_values:
        text = str(item).strip()
        if text and text not in ids:
            ids.append(text)
    return tuple(ids)


def absint(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return abs(int(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric period parameter: %r", value)
        return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class PeriodParams:
    period_type: str | None = None
    week: int | None = None
    month: int | None = None
    year: int | None = None
    date: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "PeriodParams":
        period_type = _optional_str(params.get("period_type"))
        return cls(
            period_type=period_type.lower() if period_type else None,
            week=_optional_int(params.get("week")),
            month=_optional_int(params.get("month")),
            year=_optional_int(params.get("year")),
            date=_optional_str(params.get("date")),
            start_date=_optional_str(params.get("start_date")),
            end_date=_optional_str(params.get("end_date")),
        )


@dataclass(frozen=True)
class RequestContext:
    widget_id: str
    order_field: str | None = None
    order_dir: str | None = None
    limit: int = 20
    page: int = 1
    selected_ids: tuple[str, ...] = ()
    active_filters: Mapping[str, str] = field(default_factory=dict)
    pending_action: str | None = None
    search: str = ""
    period: PeriodParams = field(default_factory=PeriodParams)
    params: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, Any] | None,
        widget_id: str,
        *,
        default_limit: int | None = None,
        max_limit: int | None = None,
    ) -> "RequestContext":
        """Build the context from parameters already scoped to the widget."""
        params = dict(params or {})
        default_limit = default_limit or settings.page_limit
        max_limit = max_limit or settings.max_page_limit

        limit = min(max(1, absint(params.get("limit"), default_limit)), max_limit)
        page = max(1, absint(params.get("page"), 1))

        order_field = _optional_str(params.get("order_field"))
        order_dir = _optional_str(params.get("order_dir"))
        if order_dir is not None:
            order_dir = order_dir.lower()
            if order_dir not in ORDER_DIRECTIONS:
                logger.warning("Ignoring invalid order_dir %r for %s", order_dir, widget_id)
                order_dir = None

        return cls(
            widget_id=widget_id,
            order_field=order_field,
            order_dir=order_dir,
            limit=limit,
            page=page,
            selected_ids=parse_ids(params.get("table_ids")),
            active_filters=parse_filter_payload(params.get("filters")),
            pending_action=_optional_str(params.get("table_action")),
            search=str(params.get("search") or "").strip(),
            period=PeriodParams.from_params(params),
            params=params,
        )

    @classmethod
    def from_request(
        cls, source: Mapping[str, Any] | Any, widget_id: str, **kwargs: Any
    ) -> "RequestContext":
        return cls.from_params(widget_params(source, widget_id), widget_id, **kwargs)

    @property
    def offset(self) -> int:
        return max(0, (self.page - 1) * self.limit)

    @property
    def has_request_filters(self) -> bool:
        return bool(self.active_filters)

    def effective_filters(self, defaults: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Configured defaults overlaid by the filters carried in the request."""
        merged: dict[str, Any] = {
            name: value
            for name, value in (defaults or {}).items()
            if value is not None and value != ""
        }
        merged.update(self.active_filters)
        return merged

    def has_filter(self, name: str, defaults: Mapping[str, Any] | None = None) -> bool:
        value = self.effective_filters(defaults).get(name)
        return value is not None and value != ""

    def with_limit(self, limit: int) -> "RequestContext":
        return replace(self, limit=max(1, limit))

    def without_action(self) -> "RequestContext":
        return replace(self, pending_action=None, selected_ids=())
