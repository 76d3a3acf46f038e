"""Assemble the JSON payload handed to the widget renderer."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from recordview.schemas.widget import (
    BulkResult,
    PageInfo,
    RowAction,
    SchedulePayload,
    WidgetField,
    WidgetMessage,
    WidgetResponse,
)
from recordview.services.actions import ActionDescriptor, DispatchResult
from recordview.services.field_catalog import FieldCatalog
from recordview.services.links import substitute_placeholders
from recordview.services.paths import scalar_text
from recordview.services.query_adapter import ExecutionResult
from recordview.services.request_context import RequestContext, serialize_filters

if TYPE_CHECKING:
    from recordview.services.builders import DataBuilder


def field_snapshot(catalog: FieldCatalog, filters: Mapping[str, Any]) -> list[WidgetField]:
    return [
        WidgetField(
            key=descriptor.key,
            label=descriptor.label,
            type=descriptor.field_type.value,
            options={scalar_text(value): label for value, label in descriptor.options.items()},
            sortable=descriptor.sortable,
            visible=descriptor.visible_for(filters),
            virtual=descriptor.virtual,
        )
        for descriptor in catalog
    ]


def project_rows(rows: Sequence[Mapping[str, Any]], keys: Sequence[str]) -> list[dict[str, Any]]:
    return [{key: row.get(key, "") for key in keys} for row in rows]


def row_actions(
    actions: Sequence[ActionDescriptor],
    raw_rows: Sequence[Mapping[str, Any]],
    filters: Mapping[str, Any],
) -> list[RowAction]:
    payload: list[RowAction] = []
    for action in actions:
        if not action.visible_for(filters):
            continue
        links = None
        if action.link is not None:
            links = [substitute_placeholders(action.link, raw) for raw in raw_rows]
        payload.append(RowAction(**action.metadata(), links=links))
    return payload


def page_info(
    context: RequestContext,
    result: ExecutionResult,
    *,
    default_filters: Mapping[str, Any],
    bulk_actions: Sequence[ActionDescriptor],
    primary_key: str,
    action: str | None,
) -> PageInfo:
    pages = math.ceil(result.total / context.limit) if result.total else 0
    effective = context.effective_filters(default_filters)
    if context.has_request_filters:
        filters = serialize_filters(context.active_filters)
    else:
        filters = serialize_filters(default_filters)
    return PageInfo(
        limit=context.limit,
        offset=context.offset,
        total=result.total,
        page=context.page,
        pages=pages,
        has_next=context.page < pages,
        order_field=result.order_field,
        order_dir=result.order_dir,
        filters=filters,
        bulk_actions={bulk.key: bulk.label for bulk in bulk_actions if bulk.visible_for(effective)},
        primary_key=primary_key,
        action=action,
    )


def build_widget_response(
    builder: "DataBuilder",
    result: ExecutionResult,
    dispatch: DispatchResult,
    schedule: SchedulePayload | None = None,
) -> WidgetResponse:
    context = builder.context
    defaults = builder.filters.defaults
    filters = context.effective_filters(defaults)
    primary_key = builder.data_source.primary_key

    keys = list(dict.fromkeys([primary_key, *builder.catalog.keys(), *builder.extra_row_keys]))
    bulk_outcome = dispatch.bulk_outcome
    return WidgetResponse(
        widget_id=builder.widget_id,
        fields=field_snapshot(builder.catalog, filters),
        rows=project_rows(result.formatted_rows, keys),
        row_actions=row_actions(builder.actions, result.raw_rows, filters),
        page_info=page_info(
            context,
            result,
            default_filters=defaults,
            bulk_actions=builder.bulk_actions,
            primary_key=primary_key,
            action=dispatch.action if dispatch.executed else None,
        ),
        action_result=dispatch.response,
        bulk_result=BulkResult(
            succeeded=bulk_outcome.succeeded,
            failed_id=bulk_outcome.failed_id,
            error=bulk_outcome.error,
        )
        if bulk_outcome is not None
        else None,
        messages=[WidgetMessage(level=message.level, text=message.text) for message in dispatch.messages],
        update_table=dispatch.update_table,
        custom_data=dict(builder.custom_data),
        error=result.error,
        schedule=schedule,
    )
