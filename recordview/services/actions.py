"""Row and bulk action declarations and their dispatch.

At most one action runs per request. Row actions are matched first, in
declaration order, then bulk actions. A bulk action runs only when the
request selected at least one record.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from recordview.metrics import observe_action
from recordview.services.data_source import RawRow, SqlAlchemyDataSource
from recordview.services.exceptions import ActionError, BuilderError
from recordview.services.links import substitute_placeholders
from recordview.services.request_context import RequestContext, filters_match

logger = logging.getLogger(__name__)

NO_SELECTION_MESSAGE = "No items selected"
DELETE_CONFIRMATION = "Are you sure you want to delete this item?"


class ActionMode(enum.Enum):
    single = "single"
    batch = "batch"


@dataclass(frozen=True)
class ActionMessage:
    level: str
    text: str


@dataclass
class ActionContext:
    """Passed to action callbacks alongside the resolved records."""

    request: RequestContext
    data_source: SqlAlchemyDataSource
    messages: list[ActionMessage] = field(default_factory=list)

    def success(self, text: str) -> None:
        self.messages.append(ActionMessage("success", text))

    def error(self, text: str) -> None:
        self.messages.append(ActionMessage("error", text))

    def info(self, text: str) -> None:
        self.messages.append(ActionMessage("info", text))


ActionCallback = Callable[[list[RawRow], ActionContext], Any]


def action_key(label: str) -> str:
    return label.strip().lower().replace(" ", "_")


@dataclass
class ActionDescriptor:
    label: str
    key: str = ""
    link: str | None = None
    callback: ActionCallback | None = None
    show_if_filter: dict[str, str] | None = None
    confirm: str | None = None
    mode: ActionMode = ActionMode.single
    update_table: bool = True

    def __post_init__(self) -> None:
        if (self.link is None) == (self.callback is None):
            raise BuilderError(
                f"Action {self.label!r} must declare exactly one of link or callback"
            )
        if self.callback is not None and not callable(self.callback):
            raise BuilderError(f"Action {self.label!r} callback must be callable")
        if not self.key:
            self.key = action_key(self.label)
        if not self.key:
            raise BuilderError("Action requires a key or a label")
        if not isinstance(self.mode, ActionMode):
            try:
                self.mode = ActionMode(str(self.mode).lower())
            except ValueError as exc:
                raise BuilderError(f"Invalid action mode: {self.mode!r}") from exc

    @property
    def kind(self) -> str:
        return "link" if self.link is not None else "callback"

    def visible_for(self, filters: Mapping[str, Any]) -> bool:
        return filters_match(self.show_if_filter, filters)

    def metadata(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "kind": self.kind,
            "confirm": self.confirm,
        }


def coerce_actions(actions: Iterable[ActionDescriptor | Mapping[str, Any]]) -> list[ActionDescriptor]:
    """Accept descriptors or plain dicts (``{"label": ..., "link": ...}``)."""
    coerced: list[ActionDescriptor] = []
    seen: set[str] = set()
    for action in actions:
        if not isinstance(action, ActionDescriptor):
            action = ActionDescriptor(**dict(action))
        if action.key in seen:
            raise BuilderError(f"Duplicate action key: {action.key}")
        seen.add(action.key)
        coerced.append(action)
    return coerced


@dataclass
class BulkOutcome:
    succeeded: list[str] = field(default_factory=list)
    failed_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_id is None and self.error is None


@dataclass
class DispatchResult:
    executed: bool = False
    action: str | None = None
    response: dict[str, Any] = field(default_factory=dict)
    messages: list[ActionMessage] = field(default_factory=list)
    update_table: bool = True
    bulk_outcome: BulkOutcome | None = None


def normalize_result(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, bool):
        return {"success": value}
    return {"function_results": value}


def merge_additive(target: dict[str, Any], addition: Mapping[str, Any]) -> None:
    """Merge ``addition`` into ``target``: numbers add up, lists extend."""
    for key, value in addition.items():
        current = target.get(key)
        if (
            isinstance(current, (int, float))
            and isinstance(value, (int, float))
            and not isinstance(current, bool)
            and not isinstance(value, bool)
        ):
            target[key] = current + value
        elif isinstance(current, list) and isinstance(value, list):
            current.extend(value)
        else:
            target[key] = value


def _is_failure(value: Any) -> bool:
    if value is False:
        return True
    return isinstance(value, Mapping) and value.get("success") is False


def _failure_message(value: Any, data_source: SqlAlchemyDataSource) -> str:
    if isinstance(value, Mapping):
        for key in ("error", "message"):
            if value.get(key):
                return str(value[key])
    return data_source.last_error or "Action failed"


class ActionDispatcher:
    def __init__(self, widget_id: str):
        self.widget_id = widget_id

    def dispatch(
        self,
        context: RequestContext,
        actions: Sequence[ActionDescriptor],
        bulk_actions: Sequence[ActionDescriptor],
        data_source: SqlAlchemyDataSource,
        *,
        filters: Mapping[str, Any] | None = None,
    ) -> DispatchResult:
        key = context.pending_action
        if not key:
            return DispatchResult()
        filters = filters or {}

        for action in actions:
            if action.key == key and action.visible_for(filters):
                return self._run_row_action(action, context, data_source)

        for action in bulk_actions:
            if action.key != key or not action.visible_for(filters):
                continue
            if not context.selected_ids:
                return DispatchResult(
                    action=action.key,
                    messages=[ActionMessage("error", NO_SELECTION_MESSAGE)],
                )
            return self._run_bulk_action(action, context, data_source)

        logger.warning("No visible action %r declared on %s", key, self.widget_id)
        return DispatchResult()

    def _links(self, action: ActionDescriptor, records: list[RawRow]) -> dict[str, Any]:
        return {"links": [substitute_placeholders(action.link or "", record) for record in records]}

    def _run_row_action(
        self,
        action: ActionDescriptor,
        context: RequestContext,
        data_source: SqlAlchemyDataSource,
    ) -> DispatchResult:
        records = data_source.get_by_ids(context.selected_ids) if context.selected_ids else []
        logger.info(
            "Executing row action %s on %s for %d records",
            action.key,
            self.widget_id,
            len(records),
        )
        if action.link is not None:
            observe_action(self.widget_id, action.key, "ok")
            return DispatchResult(executed=True, action=action.key, response=self._links(action, records))

        action_context = ActionContext(request=context, data_source=data_source)
        value = action.callback(records, action_context)
        response = normalize_result(value)
        observe_action(self.widget_id, action.key, "failed" if _is_failure(value) else "ok")
        return DispatchResult(
            executed=True,
            action=action.key,
            response=response,
            messages=action_context.messages,
        )

    def _run_bulk_action(
        self,
        action: ActionDescriptor,
        context: RequestContext,
        data_source: SqlAlchemyDataSource,
    ) -> DispatchResult:
        logger.info(
            "Executing %s bulk action %s on %s for %d ids",
            action.mode.value,
            action.key,
            self.widget_id,
            len(context.selected_ids),
        )
        if action.link is not None:
            records = data_source.get_by_ids(context.selected_ids)
            observe_action(self.widget_id, action.key, "ok")
            return DispatchResult(
                executed=True,
                action=action.key,
                response=self._links(action, records),
                update_table=action.update_table,
                bulk_outcome=BulkOutcome(succeeded=list(context.selected_ids)),
            )

        action_context = ActionContext(request=context, data_source=data_source)
        if action.mode is ActionMode.batch:
            response, outcome = self._run_batch(action, context, data_source, action_context)
        else:
            response, outcome = self._run_single(action, context, data_source, action_context)

        if outcome.error is not None:
            action_context.error(outcome.error)
        observe_action(self.widget_id, action.key, "ok" if outcome.ok else "failed")
        return DispatchResult(
            executed=True,
            action=action.key,
            response=response,
            messages=action_context.messages,
            update_table=action.update_table,
            bulk_outcome=outcome,
        )

    def _run_batch(
        self,
        action: ActionDescriptor,
        context: RequestContext,
        data_source: SqlAlchemyDataSource,
        action_context: ActionContext,
    ) -> tuple[dict[str, Any], BulkOutcome]:
        records = data_source.get_by_ids(context.selected_ids)
        try:
            value = action.callback(records, action_context)
        except ActionError as exc:
            logger.warning("Batch action %s failed on %s: %s", action.key, self.widget_id, exc)
            return {}, BulkOutcome(error=str(exc))
        response = dict(value) if isinstance(value, Mapping) else {}
        if _is_failure(value):
            return response, BulkOutcome(error=_failure_message(value, data_source))
        primary_key = data_source.primary_key
        return response, BulkOutcome(succeeded=[str(record.get(primary_key)) for record in records])

    def _run_single(
        self,
        action: ActionDescriptor,
        context: RequestContext,
        data_source: SqlAlchemyDataSource,
        action_context: ActionContext,
    ) -> tuple[dict[str, Any], BulkOutcome]:
        response: dict[str, Any] = {}
        outcome = BulkOutcome()
        for record_id in context.selected_ids:
            record = data_source.get_by_id(record_id)
            if record is None:
                outcome.failed_id = record_id
                outcome.error = data_source.last_error or f"Record {record_id} not found"
                break
            try:
                value = action.callback([record], action_context)
            except ActionError as exc:
                outcome.failed_id = record_id
                outcome.error = str(exc)
                break
            if _is_failure(value):
                outcome.failed_id = record_id
                outcome.error = _failure_message(value, data_source)
                break
            if isinstance(value, Mapping):
                merge_additive(response, value)
            outcome.succeeded.append(record_id)

        if outcome.failed_id is not None:
            logger.warning(
                "Bulk action %s halted on %s at id %s after %d successes: %s",
                action.key,
                self.widget_id,
                outcome.failed_id,
                len(outcome.succeeded),
                outcome.error,
            )
        return response, outcome


def delete_records(records: list[RawRow], context: ActionContext) -> dict[str, Any]:
    """Delete the selected records in order, stopping at the first failure."""
    if not records:
        context.error(NO_SELECTION_MESSAGE)
        return {"success": False, "deleted": 0}

    data_source = context.data_source
    primary_key = data_source.primary_key
    deleted = 0
    for record in records:
        if not data_source.delete(record.get(primary_key)):
            context.error(data_source.last_error or "Delete failed")
            return {"success": False, "deleted": deleted}
        deleted += 1
        context.success("Item deleted successfully")
    return {"success": True, "deleted": deleted}


def _delete_one(records: list[RawRow], context: ActionContext) -> dict[str, Any]:
    data_source = context.data_source
    record = records[0]
    if not data_source.delete(record.get(data_source.primary_key)):
        return {"success": False, "error": data_source.last_error or "Delete failed"}
    return {"deleted": 1}


def bulk_delete_action(
    label: str = "Delete selected",
    *,
    key: str = "delete_selected",
    confirm: str | None = DELETE_CONFIRMATION,
) -> ActionDescriptor:
    return ActionDescriptor(
        label=label,
        key=key,
        callback=_delete_one,
        confirm=confirm,
        mode=ActionMode.single,
    )


def default_actions(page: str) -> list[ActionDescriptor]:
    """Edit link and delete callback for a standard admin list page."""
    return [
        ActionDescriptor(
            label="Edit",
            key="edit",
            link=f"?page={page}&action=edit&id=%id%",
        ),
        ActionDescriptor(
            label="Delete",
            key="delete",
            callback=delete_records,
            confirm=DELETE_CONFIRMATION,
        ),
    ]
