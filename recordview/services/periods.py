"""Schedule grid periods: ISO week, month, single day or custom range."""

from __future__ import annotations

import calendar
import enum
import logging
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime, time, timedelta
from typing import Any

from recordview.services.datetimes import parse_datetime
from recordview.services.exceptions import BuilderError
from recordview.services.request_context import PeriodParams

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59)


class PeriodType(enum.Enum):
    week = "week"
    month = "month"
    day = "day"
    custom = "custom"

    @classmethod
    def coerce(cls, value: "PeriodType | str") -> "PeriodType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise BuilderError(f"Unsupported period type: {value!r}") from exc


@dataclass(frozen=True)
class Period:
    period_type: PeriodType
    start: datetime
    end: datetime
    week: int | None = None
    month: int | None = None
    year: int | None = None

    @classmethod
    def for_week(cls, week: int, year: int) -> "Period":
        try:
            monday = date.fromisocalendar(year, week, 1)
            sunday = monday + timedelta(days=6)
        except (ValueError, OverflowError) as exc:
            raise BuilderError(f"Invalid ISO week {week} of {year}") from exc
        return cls(
            period_type=PeriodType.week,
            start=datetime.combine(monday, time.min),
            end=datetime.combine(sunday, END_OF_DAY),
            week=week,
            year=year,
        )

    @classmethod
    def for_month(cls, month: int, year: int) -> "Period":
        month = max(1, min(12, month))
        if not MINYEAR <= year <= MAXYEAR:
            raise BuilderError(f"Invalid year {year}")
        last_day = calendar.monthrange(year, month)[1]
        return cls(
            period_type=PeriodType.month,
            start=datetime(year, month, 1),
            end=datetime.combine(date(year, month, last_day), END_OF_DAY),
            month=month,
            year=year,
        )

    @classmethod
    def for_day(cls, day: date) -> "Period":
        if isinstance(day, datetime):
            day = day.date()
        return cls(
            period_type=PeriodType.day,
            start=datetime.combine(day, time.min),
            end=datetime.combine(day, END_OF_DAY),
        )

    @classmethod
    def custom(cls, start: datetime | date, end: datetime | date) -> "Period":
        start_dt = parse_datetime(start)
        end_dt = parse_datetime(end)
        if start_dt is None or end_dt is None:
            raise BuilderError("Custom period requires start and end dates")
        if end_dt < start_dt:
            raise BuilderError("Custom period end precedes its start")
        return cls(period_type=PeriodType.custom, start=start_dt, end=end_dt)

    @classmethod
    def from_params(cls, params: PeriodParams, today: date | None = None) -> "Period":
        """Resolve the period carried by the request.

        Missing values default to the current week/month/day; invalid dates
        fall back to today.
        """
        today = today or date.today()
        iso_year, iso_week, _ = today.isocalendar()
        period_type = params.period_type or PeriodType.week.value

        if period_type == PeriodType.month.value:
            month = params.month or today.month
            year = params.year or today.year
            try:
                return cls.for_month(month, year)
            except BuilderError:
                logger.warning("Invalid schedule month %s/%s, using the current month", month, year)
                return cls.for_month(today.month, today.year)

        if period_type == PeriodType.day.value:
            day = parse_datetime(params.date) if params.date else datetime.combine(today, time.min)
            if day is None:
                logger.warning("Invalid schedule date %r, using today", params.date)
                day = datetime.combine(today, time.min)
            return cls.for_day(day.date())

        if period_type == PeriodType.custom.value:
            start = parse_datetime(params.start_date) if params.start_date else datetime.combine(today, time.min)
            end = parse_datetime(params.end_date) if params.end_date else datetime.combine(today, time.min)
            if start is None or end is None or end < start:
                logger.warning(
                    "Invalid schedule range %r..%r, using today",
                    params.start_date,
                    params.end_date,
                )
                start = end = datetime.combine(today, time.min)
            return cls(period_type=PeriodType.custom, start=start, end=end)

        if period_type != PeriodType.week.value:
            logger.warning("Unknown period_type %r, using the current week", period_type)
        week = params.week or iso_week
        year = params.year or iso_year
        try:
            return cls.for_week(week, year)
        except BuilderError:
            logger.warning("Invalid schedule week %s/%s, using the current week", week, year)
            return cls.for_week(iso_week, iso_year)

    def filter_bounds(self) -> tuple[datetime, datetime]:
        """Bounds for the overlap query; only custom ranges keep their times."""
        if self.period_type is PeriodType.custom:
            return self.start, self.end
        return (
            datetime.combine(self.start.date(), time.min),
            datetime.combine(self.end.date(), END_OF_DAY),
        )

    def days(self) -> list[date]:
        first, last = self.start.date(), self.end.date()
        return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]

    def shift(self, steps: int) -> "Period":
        """The adjacent period ``steps`` away (negative for earlier).

        At the edges of the supported calendar the period itself is returned.
        """
        try:
            return self._shifted(steps)
        except (BuilderError, OverflowError):
            logger.debug("No %s period %d steps from %s", self.period_type.value, steps, self.start)
            return self

    def _shifted(self, steps: int) -> "Period":
        if self.period_type is PeriodType.week:
            monday = self.start.date() + timedelta(weeks=steps)
            iso_year, iso_week, _ = monday.isocalendar()
            return Period.for_week(iso_week, iso_year)
        if self.period_type is PeriodType.month:
            index = self.start.year * 12 + (self.start.month - 1) + steps
            return Period.for_month(index % 12 + 1, index // 12)
        if self.period_type is PeriodType.day:
            return Period.for_day(self.start.date() + timedelta(days=steps))
        span = (self.end - self.start) + timedelta(seconds=1)
        return Period.custom(self.start + span * steps, self.end + span * steps)

    def params(self) -> dict[str, Any]:
        """Request parameters that select this period."""
        if self.period_type is PeriodType.week:
            return {"period_type": "week", "week": self.week, "year": self.year}
        if self.period_type is PeriodType.month:
            return {"period_type": "month", "month": self.month, "year": self.year}
        if self.period_type is PeriodType.day:
            return {"period_type": "day", "date": self.start.date().isoformat()}
        return {
            "period_type": "custom",
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.period_type.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "week": self.week,
            "month": self.month,
            "year": self.year,
            "days": [day.isoformat() for day in self.days()],
            "previous": self.shift(-1).params(),
            "next": self.shift(1).params(),
        }
