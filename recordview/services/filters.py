"""Declared widget filters and reusable filter callbacks.

A filter is a named callback ``(query, value) -> query``. Request values come
from the ``filters`` payload (``["status:confirmed", ...]``); a configured
default is applied only when the request does not mention the filter.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Query

from recordview.services.exceptions import BuilderError, FilterValidationError
from recordview.services.request_context import RequestContext

logger = logging.getLogger(__name__)

FilterCallback = Callable[[Query, Any], Query]

TRUE_TOKENS = {"true", "1", "yes", "on"}
FALSE_TOKENS = {"false", "0", "no", "off"}
SEARCH_MIN_LENGTH = 2


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUE_TOKENS:
        return True
    if normalized in FALSE_TOKENS:
        return False
    raise FilterValidationError("Expected a boolean value")


def coerce_filter_value(value: Any, field_type: str = "text") -> Any:
    """Convert a request filter value to the Python type of its column."""
    if field_type in {"text", "select"}:
        return None if value is None else str(value).strip()

    if field_type == "uuid":
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value).strip())
        except (TypeError, ValueError) as exc:
            raise FilterValidationError("Expected a valid UUID value") from exc

    if field_type == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        try:
            text = str(value).strip()
            return float(text) if "." in text else int(text)
        except (TypeError, ValueError) as exc:
            raise FilterValidationError("Expected a numeric value") from exc

    if field_type == "boolean":
        return _parse_bool(value)

    if field_type == "date":
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        try:
            return date.fromisoformat(str(value).strip())
        except (TypeError, ValueError) as exc:
            raise FilterValidationError("Expected an ISO date value (YYYY-MM-DD)") from exc

    if field_type == "datetime":
        if isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except (TypeError, ValueError) as exc:
            raise FilterValidationError("Expected an ISO datetime value") from exc

    raise FilterValidationError(f"Unsupported field type: {field_type}")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def equals_filter(column: Any, field_type: str = "text") -> FilterCallback:
    def _apply(query: Query, value: Any) -> Query:
        return query.filter(column == coerce_filter_value(value, field_type))

    return _apply


def like_filter(column: Any, position: str = "both") -> FilterCallback:
    if position not in {"start", "end", "both"}:
        raise BuilderError(f"Invalid like position: {position}")

    def _apply(query: Query, value: Any) -> Query:
        text = str(value).strip()
        pattern = {
            "start": f"{text}%",
            "end": f"%{text}",
            "both": f"%{text}%",
        }[position]
        return query.filter(column.ilike(pattern))

    return _apply


def in_filter(column: Any, field_type: str = "text") -> FilterCallback:
    def _apply(query: Query, value: Any) -> Query:
        if isinstance(value, str):
            raw_values = [item.strip() for item in value.split(",") if item.strip()]
        else:
            raw_values = list(value)
        coerced = [coerce_filter_value(item, field_type) for item in raw_values]
        if not coerced:
            return query
        return query.filter(column.in_(coerced))

    return _apply


def between_filter(column: Any, field_type: str = "date") -> FilterCallback:
    """Range filter taking ``"from,to"``; either bound may be left empty."""

    def _apply(query: Query, value: Any) -> Query:
        if isinstance(value, str):
            start, _, end = value.partition(",")
        else:
            start, end = (list(value) + ["", ""])[:2]
        if not _is_empty(start):
            query = query.filter(column >= coerce_filter_value(start, field_type))
        if not _is_empty(end):
            query = query.filter(column <= coerce_filter_value(end, field_type))
        return query

    return _apply


def search_filter(columns: Iterable[Any]) -> FilterCallback:
    """Case-insensitive contains match across several columns (OR)."""
    column_list = list(columns)
    if not column_list:
        raise BuilderError("search filter requires at least one column")

    def _apply(query: Query, value: Any) -> Query:
        term = str(value).strip()
        if len(term) < SEARCH_MIN_LENGTH:
            return query
        like_term = f"%{term}%"
        return query.filter(or_(*(column.ilike(like_term) for column in column_list)))

    return _apply


@dataclass(frozen=True)
class FilterDefinition:
    name: str
    callback: FilterCallback
    default: Any = None


class FilterSet:
    """Ordered filter declarations for one widget."""

    def __init__(self) -> None:
        self._filters: dict[str, FilterDefinition] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._filters

    def __len__(self) -> int:
        return len(self._filters)

    def add(self, name: str, callback: FilterCallback, default: Any = None) -> FilterDefinition:
        if not name or not name.strip():
            raise BuilderError("Filter name is required")
        if not callable(callback):
            raise BuilderError(f"Filter {name!r} callback must be callable")
        definition = FilterDefinition(name=name, callback=callback, default=default)
        self._filters[name] = definition
        return definition

    @property
    def defaults(self) -> dict[str, Any]:
        return {
            name: definition.default
            for name, definition in self._filters.items()
            if definition.default is not None
        }

    def apply(self, query: Query, context: RequestContext) -> tuple[Query, dict[str, Any]]:
        """Apply request filters, then defaults for filters the request omitted.

        Returns the filtered query and the values actually applied.
        """
        applied: dict[str, Any] = {}
        for name, value in context.active_filters.items():
            definition = self._filters.get(name)
            if definition is None:
                logger.debug("Ignoring undeclared filter %s on %s", name, context.widget_id)
                continue
            if _is_empty(value):
                continue
            query = definition.callback(query, value)
            applied[name] = value

        for name, definition in self._filters.items():
            if name in context.active_filters or definition.default is None:
                continue
            if _is_empty(definition.default):
                continue
            query = definition.callback(query, definition.default)
            applied[name] = definition.default
        return query, applied

    def effective(self, context: RequestContext) -> dict[str, Any]:
        return context.effective_filters(self.defaults)
