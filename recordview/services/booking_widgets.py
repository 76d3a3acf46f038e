"""Widgets over the booking models, registered at import time."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from recordview.models.booking import Booking, BookingStatus, Resource
from recordview.services.actions import ActionContext
from recordview.services.builders import DataBuilder
from recordview.services.schedule_grid import ScheduleGridBuilder
from recordview.services.widget_registry import WidgetRegistry


def _duration_minutes(raw: dict[str, Any]) -> str:
    starts_at, ends_at = raw.get("starts_at"), raw.get("ends_at")
    if starts_at is None or ends_at is None:
        return ""
    return str(int((ends_at - starts_at).total_seconds() // 60))


def _confirm_booking(records: list[dict[str, Any]], context: ActionContext) -> dict[str, Any]:
    db = context.data_source.db
    booking = db.get(Booking, records[0]["id"])
    if booking is None:
        return {"success": False, "error": f"Booking {records[0]['id']} not found"}
    booking.status = BookingStatus.confirmed
    db.commit()
    return {"confirmed": 1}


def _export_titles(records: list[dict[str, Any]], context: ActionContext) -> dict[str, Any]:
    context.info(f"Exported {len(records)} bookings")
    return {"titles": [record["title"] for record in records]}


@WidgetRegistry.widget("bookings", "Bookings")
def bookings_table(db: Session, params: Mapping[str, Any]) -> DataBuilder:
    return (
        DataBuilder(db, Booking, "bookings", params)
        .field("title").truncate(40)
        .field("resource.name").sort_by("resource.name")
        .field("is_paid").label("Paid")
        .field("amount").show_if(lambda raw: raw.get("is_paid") is True, "-")
        .end()
        .add_field("duration", "Minutes", _duration_minutes)
        .filter_equals("status", default=BookingStatus.confirmed.value)
        .filter_like("title", position="both")
        .filter_equals("resource", "resource_id")
        .filter_in("statuses", "status")
        .filter_between("starts", "starts_at")
        .search_in("title", "notes")
        .order_by("starts_at", "asc")
        .set_default_actions("bookings")
        .add_bulk_action("Confirm", _confirm_booking, key="confirm")
        .add_bulk_action("Export", _export_titles, key="export", mode="batch", update_table=False)
        .add_bulk_delete()
    )


@WidgetRegistry.widget("resources", "Resources")
def resources_table(db: Session, params: Mapping[str, Any]) -> DataBuilder:
    return (
        DataBuilder(db, Resource, "resources", params)
        .field("name").link("?page=resources&action=edit&id=%id%")
        .end()
        .filter_equals("active", "is_active")
        .order_by("name", "asc")
        .limit(50)
    )


@WidgetRegistry.widget("booking_schedule", "Booking schedule", kind="schedule")
def booking_schedule(db: Session, params: Mapping[str, Any]) -> ScheduleGridBuilder:
    return (
        ScheduleGridBuilder(db, Booking, "booking_schedule", params)
        .map_fields(
            row_id="resource_id",
            start_datetime="starts_at",
            end_datetime="ends_at",
            label="title",
            css_class=lambda formatted, raw, track: f"booking-{raw['status'].value}",
        )
        .filter_equals("status")
        .set_period("week")
    )
