"""Schedule grid widget: bookings laid out per resource and time period.

Rows are mapped onto grid properties (``row_id``, ``start_datetime``, ...)
either by column name or by a callable ``(formatted, raw, track_index)``.
Overlapping rows of one resource are spread over tracks; each track becomes a
lane keyed ``"<row_id>"`` for track 0 and ``"<row_id>#<n>"`` above it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from recordview.schemas.widget import ScheduleEvent, SchedulePayload
from recordview.services.builders import DataBuilder
from recordview.services.datetimes import parse_datetime
from recordview.services.exceptions import BuilderError
from recordview.services.paths import PATH_SEPARATOR, scalar_text, walk_path
from recordview.services.periods import Period, PeriodType
from recordview.services.query_adapter import ExecutionResult, QueryAdapter
from recordview.services.row_pipeline import Row
from recordview.services.tracks import TRACK_INDEX_KEY, assign_tracks, normalize_resource_key

logger = logging.getLogger(__name__)

MappedValue = Callable[[dict[str, Any], dict[str, Any], int | None], Any]

DEFAULT_MAPPINGS: dict[str, str | MappedValue | None] = {
    "row_id": "resource_id",
    "id": "id",
    "start_datetime": "start_datetime",
    "end_datetime": "end_datetime",
    "label": "label",
    "css_class": None,
    "color": None,
}


def lane_key(row_id: str, track_index: int) -> str:
    return row_id if track_index == 0 else f"{row_id}#{track_index}"


class ScheduleGridBuilder(DataBuilder):
    """Data builder with period filtering and overlap track assignment.

    The period comes from the request when it names a ``period_type``,
    otherwise from ``set_week``/``set_month``/``set_day``/``set_date_range``,
    otherwise the current ISO week.
    """

    kind = "schedule"
    extra_row_keys = (TRACK_INDEX_KEY,)

    def __init__(self, db: Session, model: type, widget_id: str, params: Mapping[str, Any] | None = None, **kwargs: Any):
        super().__init__(db, model, widget_id, params, **kwargs)
        self._paginate = False
        self._mappings: dict[str, str | MappedValue | None] = dict(DEFAULT_MAPPINGS)
        self._period: Period | None = None
        self._period_type: PeriodType | None = None
        self._schedule: SchedulePayload | None = None

    def map_fields(self, mappings: Mapping[str, str | MappedValue | None] | None = None, **kwargs: Any) -> "ScheduleGridBuilder":
        self._require_configurable()
        updates = {**dict(mappings or {}), **kwargs}
        if "class" in updates:
            updates["css_class"] = updates.pop("class")
        unknown = set(updates) - set(DEFAULT_MAPPINGS)
        if unknown:
            raise BuilderError(f"Unknown schedule mapping(s): {', '.join(sorted(unknown))}")
        for name, value in updates.items():
            if value is not None and not isinstance(value, str) and not callable(value):
                raise BuilderError(f"Mapping {name!r} must be a field name or a callable")
        self._mappings.update(updates)
        return self

    def set_period(self, period_type: PeriodType | str) -> "ScheduleGridBuilder":
        self._require_configurable()
        self._period_type = PeriodType.coerce(period_type)
        self._period = None
        return self

    def set_week(self, week: int, year: int) -> "ScheduleGridBuilder":
        self._require_configurable()
        self._period = Period.for_week(week, year)
        return self

    def set_month(self, month: int, year: int) -> "ScheduleGridBuilder":
        self._require_configurable()
        self._period = Period.for_month(month, year)
        return self

    def set_day(self, day: date) -> "ScheduleGridBuilder":
        self._require_configurable()
        self._period = Period.for_day(day)
        return self

    def set_date_range(self, start: datetime | date, end: datetime | date) -> "ScheduleGridBuilder":
        self._require_configurable()
        self._period = Period.custom(start, end)
        return self

    @property
    def period(self) -> Period:
        requested = self.context.period
        if requested.period_type is not None:
            return Period.from_params(requested)
        if self._period is not None:
            return self._period
        if self._period_type is not None:
            return Period.from_params(replace(requested, period_type=self._period_type.value))
        return Period.from_params(requested)

    # -- query -----------------------------------------------------------

    def _period_modifier(self, period: Period) -> Callable[[Query], Query] | None:
        start_key = self._mappings["start_datetime"]
        end_key = self._mappings["end_datetime"]
        if not isinstance(start_key, str) or not isinstance(end_key, str):
            logger.debug("Schedule %s maps its bounds with callables; skipping period filter", self.widget_id)
            return None
        if PATH_SEPARATOR in start_key or PATH_SEPARATOR in end_key:
            return None
        start_column = self._column(start_key)
        end_column = self._column(end_key)
        lower, upper = period.filter_bounds()

        def _apply(query: Query) -> Query:
            return query.filter(
                or_(
                    and_(start_column >= lower, start_column <= upper),
                    and_(end_column >= lower, end_column <= upper),
                    and_(start_column < lower, end_column > upper),
                )
            )

        return _apply

    def _adapter(self) -> QueryAdapter:
        adapter = super()._adapter()
        modifier = self._period_modifier(self.period)
        if modifier is not None:
            adapter.modifiers.append(modifier)
        return adapter

    # -- rows and events -------------------------------------------------

    def _value(self, name: str, row: Row, track_index: int | None, *, display: bool = False) -> Any:
        mapping = self._mappings.get(name)
        if mapping is None:
            return None
        if callable(mapping):
            return mapping(row.formatted, row.raw, track_index)
        if display and mapping in row.formatted:
            return row.formatted[mapping]
        return walk_path(row.raw, mapping)

    def _after_transform(self, result: ExecutionResult) -> None:
        rows = [Row(raw=raw, formatted=formatted) for raw, formatted in zip(result.raw_rows, result.formatted_rows)]
        assignment = assign_tracks(
            rows,
            resource_key=lambda row: self._value("row_id", row, None),
            interval=lambda row: (
                self._value("start_datetime", row, None),
                self._value("end_datetime", row, None),
            ),
        )

        events: list[ScheduleEvent] = []
        lanes: dict[str, int] = {}
        for row in rows:
            row_id = normalize_resource_key(self._value("row_id", row, None))
            if row_id is None:
                continue
            track_index = row.raw.get(TRACK_INDEX_KEY, 0)
            row.formatted[TRACK_INDEX_KEY] = track_index
            lanes[row_id] = max(1, assignment.track_count(row_id))

            start = parse_datetime(self._value("start_datetime", row, track_index))
            if start is None:
                continue
            end = parse_datetime(self._value("end_datetime", row, track_index)) or start
            css_class = self._value("css_class", row, track_index, display=True)
            color = self._value("color", row, track_index, display=True)
            events.append(
                ScheduleEvent(
                    id=self._value("id", row, track_index),
                    row_id=row_id,
                    lane_key=lane_key(row_id, track_index),
                    track_index=track_index,
                    start=start.isoformat(),
                    end=end.isoformat(),
                    label=scalar_text(self._value("label", row, track_index, display=True)),
                    css_class=scalar_text(css_class) if css_class is not None else None,
                    color=scalar_text(color) if color is not None else None,
                )
            )

        self._schedule = SchedulePayload(period=self.period.to_dict(), events=events, lanes=lanes)

    def schedule_payload(self, result: ExecutionResult) -> SchedulePayload:
        if self._schedule is None:
            return SchedulePayload(period=self.period.to_dict(), events=[], lanes={})
        return self._schedule
