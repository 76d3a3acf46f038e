"""Fluent builders that configure and execute record-backed widgets.

Example::

    builder = (
        DataBuilder(db, Booking, "bookings", params)
        .field("title").label("Booking").truncate(40)
        .field("resource.name").label("Room").sort_by("resource.name")
        .end()
        .filter_equals("status", "status", default="confirmed")
        .order_by("starts_at", "desc")
        .set_default_actions()
    )
    payload = builder.get_response()

Configuration is only accepted before the first fetch; afterwards every
configuration call raises ``BuilderError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Query, Session

from recordview.config import Settings, settings as default_settings
from recordview.schemas.widget import SchedulePayload, WidgetResponse
from recordview.services.actions import (
    ActionDescriptor,
    ActionDispatcher,
    ActionMode,
    DispatchResult,
    bulk_delete_action,
    coerce_actions,
    default_actions,
)
from recordview.services.data_source import SqlAlchemyDataSource
from recordview.services.exceptions import BuilderError
from recordview.services.field_catalog import (
    FieldCatalog,
    FieldConfigurator,
    FieldDescriptor,
    FieldRuleSource,
    FieldType,
    Formatter,
    ModelRuleSource,
    default_label,
)
from recordview.services.filters import (
    FilterCallback,
    FilterSet,
    between_filter,
    equals_filter,
    in_filter,
    like_filter,
    search_filter,
)
from recordview.services.formatting import FormatterRegistry, default_registry
from recordview.services.query_adapter import ExecutionResult, QueryAdapter
from recordview.services.request_context import RequestContext
from recordview.services.response import build_widget_response
from recordview.services.row_pipeline import RowPipeline

logger = logging.getLogger(__name__)

_FILTER_TYPES: tuple[tuple[type, str], ...] = (
    (sa.Boolean, "boolean"),
    (sa.DateTime, "datetime"),
    (sa.Date, "date"),
    (sa.Integer, "number"),
    (sa.Numeric, "number"),
    (sa.Uuid, "uuid"),
)


def _filter_type(column: Any) -> str:
    column_type = getattr(column, "type", None)
    for sa_type, filter_type in _FILTER_TYPES:
        if isinstance(column_type, sa_type):
            return filter_type
    return "text"


class DataBuilder:
    """Configure a widget over one mapped model and produce its payload."""

    kind = "table"
    extra_row_keys: tuple[str, ...] = ()

    def __init__(
        self,
        db: Session,
        model: type,
        widget_id: str,
        params: Mapping[str, Any] | None = None,
        *,
        settings: Settings | None = None,
        rule_source: FieldRuleSource | None = None,
        registry: FormatterRegistry | None = None,
        strict: bool | None = None,
    ):
        if not widget_id:
            raise BuilderError("widget_id is required")
        self.db = db
        self.model = model
        self.widget_id = widget_id
        self.settings = settings or default_settings
        self.registry = registry or default_registry
        self.strict = strict
        self.params: dict[str, Any] = dict(params or {})
        self.data_source = SqlAlchemyDataSource(db, model)
        self.catalog = FieldCatalog.from_rule_source(
            rule_source or ModelRuleSource(model), widget_id=widget_id
        )
        self.context = RequestContext.from_params(
            self.params,
            widget_id,
            default_limit=self.settings.page_limit,
            max_limit=self.settings.max_page_limit,
        )
        self.filters = FilterSet()
        self.actions: list[ActionDescriptor] = []
        self.bulk_actions: list[ActionDescriptor] = []
        self.custom_data: dict[str, Any] = {}
        self._search: FilterCallback | None = None
        self._modifiers: list[Callable[[Query], Query]] = []
        self._default_order: tuple[str, str] | None = None
        self._paginate = True
        self._result: ExecutionResult | None = None

    # -- configuration ---------------------------------------------------

    def _require_configurable(self) -> None:
        if self.catalog.locked:
            raise BuilderError.locked(self.widget_id)

    def field(self, key: str) -> FieldConfigurator:
        self._require_configurable()
        return FieldConfigurator(self, key)

    def add_field(
        self,
        key: str,
        label: str | None = None,
        formatter: Formatter | None = None,
        field_type: FieldType | str = FieldType.text,
    ) -> "DataBuilder":
        """Declare a column with no backing attribute, computed by ``formatter``."""
        self._require_configurable()
        if key in self.catalog:
            raise BuilderError(f"Duplicate field key: {key}")
        self.catalog.add(
            FieldDescriptor(
                key=key,
                label=label or default_label(key),
                field_type=FieldType.coerce(field_type),
                formatter=formatter,
                sortable=False,
                virtual=True,
            )
        )
        return self

    def delete_field(self, key: str) -> "DataBuilder":
        self.catalog.delete(key)
        return self

    def reorder(self, *keys: str) -> "DataBuilder":
        self.catalog.reorder(keys)
        return self

    def _column(self, key: str) -> Any:
        resolved = self.data_source.resolve_column(key)
        if resolved.relation is not None:
            # related columns need an explicit join; use filter() with a custom callback
            raise BuilderError(f"Cannot filter on related column {key!r} directly")
        return resolved.column

    def filter(self, name: str, callback: FilterCallback, default: Any = None) -> "DataBuilder":
        self._require_configurable()
        self.filters.add(name, callback, default)
        return self

    def filter_equals(
        self,
        name: str,
        column_key: str | None = None,
        default: Any = None,
        field_type: str | None = None,
    ) -> "DataBuilder":
        column = self._column(column_key or name)
        return self.filter(name, equals_filter(column, field_type or _filter_type(column)), default)

    def filter_like(
        self,
        name: str,
        column_key: str | None = None,
        position: str = "both",
        default: Any = None,
    ) -> "DataBuilder":
        return self.filter(name, like_filter(self._column(column_key or name), position), default)

    def filter_in(self, name: str, column_key: str | None = None, default: Any = None) -> "DataBuilder":
        """Match any of a comma-separated list of values."""
        column = self._column(column_key or name)
        return self.filter(name, in_filter(column, _filter_type(column)), default)

    def filter_between(self, name: str, column_key: str | None = None, default: Any = None) -> "DataBuilder":
        column = self._column(column_key or name)
        return self.filter(name, between_filter(column, _filter_type(column)), default)

    def search_in(self, *column_keys: str) -> "DataBuilder":
        """Enable the free-text ``search`` parameter across the given columns."""
        self._require_configurable()
        self._search = search_filter(self._column(key) for key in column_keys)
        return self

    def where(self, modifier: Callable[[Query], Query]) -> "DataBuilder":
        self._require_configurable()
        if not callable(modifier):
            raise BuilderError("where() expects a callable taking and returning a query")
        self._modifiers.append(modifier)
        return self

    def order_by(self, field_key: str, direction: str = "asc") -> "DataBuilder":
        self._require_configurable()
        direction = direction.lower()
        if direction not in {"asc", "desc"}:
            raise BuilderError(f"Invalid order direction: {direction!r}")
        self._default_order = (field_key, direction)
        return self

    def limit(self, limit: int) -> "DataBuilder":
        """Default page size; a ``limit`` carried by the request still wins."""
        self._require_configurable()
        if limit < 1:
            raise BuilderError("limit must be >= 1")
        if "limit" not in self.params:
            self.context = self.context.with_limit(min(limit, self.settings.max_page_limit))
        return self

    def set_actions(self, actions: Iterable[ActionDescriptor | Mapping[str, Any]]) -> "DataBuilder":
        self._require_configurable()
        self.actions = coerce_actions(actions)
        return self

    def add_action(self, label: str, *, key: str = "", **options: Any) -> "DataBuilder":
        self._require_configurable()
        self.actions = coerce_actions([*self.actions, ActionDescriptor(label=label, key=key, **options)])
        return self

    def set_default_actions(self, page: str | None = None) -> "DataBuilder":
        return self.set_actions(default_actions(page or self.widget_id))

    def set_bulk_actions(self, actions: Iterable[ActionDescriptor | Mapping[str, Any]]) -> "DataBuilder":
        self._require_configurable()
        self.bulk_actions = coerce_actions(actions)
        return self

    def add_bulk_action(
        self,
        label: str,
        callback: Callable[..., Any],
        *,
        key: str = "",
        mode: ActionMode | str = ActionMode.single,
        update_table: bool = True,
        confirm: str | None = None,
        show_if_filter: Mapping[str, Any] | None = None,
    ) -> "DataBuilder":
        self._require_configurable()
        action = ActionDescriptor(
            label=label,
            key=key,
            callback=callback,
            mode=mode,
            update_table=update_table,
            confirm=confirm,
            show_if_filter={name: str(value) for name, value in (show_if_filter or {}).items()} or None,
        )
        self.bulk_actions = coerce_actions([*self.bulk_actions, action])
        return self

    def add_bulk_delete(self, label: str = "Delete selected") -> "DataBuilder":
        self._require_configurable()
        self.bulk_actions = coerce_actions([*self.bulk_actions, bulk_delete_action(label)])
        return self

    def set_custom_data(self, key: str, value: Any) -> "DataBuilder":
        self.custom_data[key] = value
        return self

    # -- execution -------------------------------------------------------

    def effective_filters(self) -> dict[str, Any]:
        return self.context.effective_filters(self.filters.defaults)

    def _adapter(self) -> QueryAdapter:
        return QueryAdapter(
            self.data_source,
            self.catalog,
            self.filters,
            default_order=self._default_order,
            search=self._search,
            modifiers=self._modifiers,
            paginate=self._paginate,
            strict=self.strict,
        )

    def _after_transform(self, result: ExecutionResult) -> None:
        """Hook for subclasses that annotate rows after formatting."""

    def get_data(self) -> ExecutionResult:
        """Execute the query and transform its rows; cached per builder."""
        if self._result is None:
            self.catalog.lock()
            result = self._adapter().execute(self.context)
            pipeline = RowPipeline(self.catalog, self.settings, self.registry)
            result.formatted_rows = pipeline.transform(result.raw_rows, result.formatted_rows)
            self._after_transform(result)
            self._result = result
        return self._result

    def dispatch(self) -> DispatchResult:
        self.catalog.lock()
        return ActionDispatcher(self.widget_id).dispatch(
            self.context,
            self.actions,
            self.bulk_actions,
            self.data_source,
            filters=self.effective_filters(),
        )

    def schedule_payload(self, result: ExecutionResult) -> SchedulePayload | None:
        return None

    def get_response(self) -> WidgetResponse:
        """Run the pending action (if any), then fetch and assemble the payload."""
        dispatch = self.dispatch()
        if dispatch.executed:
            self._result = None
        if dispatch.update_table:
            result = self.get_data()
        else:
            self.catalog.lock()
            result = ExecutionResult(
                order_field=self.context.order_field,
                order_dir=self.context.order_dir or "desc",
            )
        return build_widget_response(self, result, dispatch, self.schedule_payload(result))
