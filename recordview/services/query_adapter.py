"""Turn a request context into an executed, paginated query."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Query

from recordview.config import settings
from recordview.metrics import DATA_SOURCE_ERRORS, observe_fetch
from recordview.services.data_source import RawRow, SqlAlchemyDataSource
from recordview.services.exceptions import BuilderError, DataSourceError
from recordview.services.field_catalog import FieldCatalog
from recordview.services.filters import FilterCallback, FilterSet
from recordview.services.request_context import ORDER_DIRECTIONS, RequestContext

logger = logging.getLogger(__name__)

QueryModifier = Callable[[Query], Query]


@dataclass
class ExecutionResult:
    raw_rows: list[RawRow] = field(default_factory=list)
    formatted_rows: list[RawRow] = field(default_factory=list)
    total: int = 0
    error: str | None = None
    order_field: str | None = None
    order_dir: str = "desc"
    applied_filters: dict[str, Any] = field(default_factory=dict)


class QueryAdapter:
    """Apply filters, search, ordering and pagination, then execute.

    Data-source failures degrade to an empty result carrying ``error`` unless
    ``strict`` is set, in which case ``DataSourceError`` propagates.
    """

    def __init__(
        self,
        data_source: SqlAlchemyDataSource,
        catalog: FieldCatalog,
        filters: FilterSet,
        *,
        default_order: tuple[str, str] | None = None,
        search: FilterCallback | None = None,
        modifiers: list[QueryModifier] | None = None,
        paginate: bool = True,
        strict: bool | None = None,
    ):
        self.data_source = data_source
        self.catalog = catalog
        self.filters = filters
        self.default_order = default_order
        self.search = search
        self.modifiers = list(modifiers or [])
        self.paginate = paginate
        self.strict = settings.debug if strict is None else strict

    def _default_order(self) -> tuple[str, str, str]:
        if self.default_order is not None:
            field_key, direction = self.default_order
            target = self.catalog.sort_target(field_key) or field_key
            return field_key, target, direction
        primary_key = self.data_source.primary_key
        return primary_key, primary_key, "desc"

    def resolve_order(self, context: RequestContext) -> tuple[str, str, str]:
        """Return ``(order_field, sort_target, direction)`` for the request."""
        default_field, default_target, default_dir = self._default_order()
        direction = context.order_dir or default_dir
        if direction not in ORDER_DIRECTIONS:
            raise BuilderError(f"Invalid default order direction: {direction!r}")

        requested = context.order_field
        if not requested:
            return default_field, default_target, direction

        target = self.catalog.sort_target(requested)
        if target is None:
            logger.warning(
                "Order field %r is not sortable on %s; using default order",
                requested,
                context.widget_id,
            )
            return default_field, default_target, direction
        try:
            self.data_source.resolve_column(target)
        except BuilderError:
            logger.warning(
                "Order field %r on %s has no backing column; using default order",
                requested,
                context.widget_id,
            )
            return default_field, default_target, direction
        return requested, target, direction

    def build_query(
        self,
        context: RequestContext,
        query: Query | None = None,
        order: tuple[str, str, str] | None = None,
    ) -> tuple[Query, Query, dict[str, Any]]:
        """Return the filtered count query, the ordered page query and applied filters."""
        query = query if query is not None else self.data_source.base_query()
        for modifier in self.modifiers:
            query = modifier(query)
        query, applied = self.filters.apply(query, context)
        if self.search is not None and context.search:
            query = self.search(query, context.search)

        count_query = query
        _, target, direction = order or self.resolve_order(context)
        query = self.data_source.apply_order(query, target, direction)
        if self.paginate:
            query = query.limit(context.limit).offset(context.offset)
        return count_query, query, applied

    def _formatted_copy(self, raw: RawRow) -> RawRow:
        # JSON columns reached by a dot-path stay in the formatted row
        relations = {name for name in self.catalog.relation_names() if self.data_source.is_relation(name)}
        return {key: value for key, value in raw.items() if key not in relations}

    def execute(self, context: RequestContext, query: Query | None = None) -> ExecutionResult:
        started = time.monotonic()
        self.data_source.set_relation_paths(self.catalog.path_keys())
        order = self.resolve_order(context)
        order_field, _, direction = order
        count_query, page_query, applied = self.build_query(context, query, order)

        result = self.data_source.query(page_query)
        total = 0
        if result.last_error is None:
            total = self.data_source.total(count_query)
        error = result.last_error or self.data_source.last_error

        if error is not None:
            observe_fetch(context.widget_id, "error", time.monotonic() - started)
            DATA_SOURCE_ERRORS.labels(widget=context.widget_id).inc()
            if self.strict:
                raise DataSourceError(error) from self.data_source.last_exception
            logger.warning("Widget %s degraded to an empty result: %s", context.widget_id, error)
            return ExecutionResult(
                error=error,
                order_field=order_field,
                order_dir=direction,
                applied_filters=applied,
            )

        raw_rows = result.rows
        observe_fetch(context.widget_id, "ok", time.monotonic() - started)
        return ExecutionResult(
            raw_rows=raw_rows,
            formatted_rows=[self._formatted_copy(raw) for raw in raw_rows],
            total=total,
            order_field=order_field,
            order_dir=direction,
            applied_filters=applied,
        )
