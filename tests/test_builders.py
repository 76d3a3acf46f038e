import pytest

from recordview.models.booking import Booking, BookingStatus, Resource
from recordview.services.builders import DataBuilder
from recordview.services.exceptions import BuilderError
from recordview.services.widget_registry import WidgetRegistry

import recordview.services.booking_widgets  # noqa: F401


def _bookings_widget(db_session, **params):
    return WidgetRegistry.build(db_session, "bookings", params)


def test_builder_response_shape(db_session, bookings):
    response = _bookings_widget(db_session).get_response()

    assert response.widget_id == "bookings"
    assert [row["title"] for row in response.rows] == ["Standup", "Design review", "Retro"]
    first = response.rows[0]
    assert first["status"] == "Confirmed"
    assert first["starts_at"] == "2025-01-06 09:00"
    assert first["resource.name"] == "Room A"
    assert first["is_paid"] == "Yes"
    assert first["amount"] == "50.00"
    assert first["duration"] == "60"
    assert first["attachments"] == [{"url": "/files/agenda.pdf", "name": "agenda.pdf"}]
    assert response.rows[1]["amount"] == "-"
    assert "notes" not in first
    assert "resource" not in first


def test_builder_fields_and_actions(db_session, bookings):
    response = _bookings_widget(db_session).get_response()

    fields = {field.key: field for field in response.fields}
    assert fields["resource_id"].visible is False
    assert fields["duration"].virtual is True
    assert fields["duration"].sortable is False
    assert fields["is_paid"].label == "Paid"
    assert [action.key for action in response.row_actions] == ["edit", "delete"]
    assert response.row_actions[0].links[0] == f"?page=bookings&action=edit&id={bookings[0].id}"
    assert response.page_info.bulk_actions == {
        "confirm": "Confirm",
        "export": "Export",
        "delete_selected": "Delete selected",
    }


def test_default_filter_is_reported_when_request_has_none(db_session, bookings):
    page_info = _bookings_widget(db_session).get_response().page_info

    assert page_info.filters == '["status:confirmed"]'
    assert page_info.total == 3
    assert page_info.primary_key == "id"
    assert page_info.order_field == "starts_at"
    assert page_info.order_dir == "asc"


def test_request_filter_suppresses_default(db_session, bookings):
    response = _bookings_widget(db_session, filters='["status:"]').get_response()

    assert response.page_info.total == 5
    assert response.page_info.filters == '["status:"]'


def test_filter_in_and_between(db_session, bookings):
    response = _bookings_widget(
        db_session,
        filters='["status:", "statuses:pending,cancelled", "starts:2025-01-07T00:00:00,2025-01-08T00:00:00"]',
    ).get_response()

    assert [row["title"] for row in response.rows] == ["Interview"]


def test_pagination_info(db_session, bookings):
    response = _bookings_widget(db_session, filters='["status:"]', limit="2", page="3").get_response()

    assert len(response.rows) == 1
    assert response.page_info.pages == 3
    assert response.page_info.offset == 4
    assert response.page_info.has_next is False

    past_end = _bookings_widget(db_session, filters='["status:"]', limit="2", page="4").get_response()
    assert past_end.rows == []
    assert past_end.error is None


def test_builder_limit_yields_to_request(db_session, rooms):
    assert WidgetRegistry.build(db_session, "resources", {}).context.limit == 50
    assert WidgetRegistry.build(db_session, "resources", {"limit": "5"}).context.limit == 5


def test_link_field_and_boolean_filter(db_session, rooms):
    response = WidgetRegistry.build(db_session, "resources", {"filters": '["active:yes"]'}).get_response()

    assert [row["name"] for row in response.rows] == [
        {"href": f"?page=resources&action=edit&id={rooms[0].id}", "text": "Room A"}
    ]


def test_configuration_after_fetch_raises(db_session, bookings):
    builder = DataBuilder(db_session, Booking, "plain")
    builder.get_data()

    with pytest.raises(BuilderError):
        builder.field("title").label("Name")
    with pytest.raises(BuilderError):
        builder.filter_equals("status")
    with pytest.raises(BuilderError):
        builder.order_by("title")


def test_get_data_is_cached(db_session, bookings):
    builder = DataBuilder(db_session, Booking, "plain")

    assert builder.get_data() is builder.get_data()


def test_filter_on_related_column_requires_callback(db_session):
    with pytest.raises(BuilderError):
        DataBuilder(db_session, Booking, "plain").filter_equals("room", "resource.name")


def test_unknown_filter_column_raises(db_session):
    with pytest.raises(BuilderError):
        DataBuilder(db_session, Booking, "plain").filter_like("colour")


def test_add_field_rejects_duplicates(db_session):
    with pytest.raises(BuilderError):
        DataBuilder(db_session, Booking, "plain").add_field("title")


def test_reorder_and_delete_field(db_session, bookings):
    builder = DataBuilder(db_session, Booking, "plain").reorder("title", "status").delete_field("attachments")

    response = builder.get_response()

    assert [field.key for field in response.fields][:2] == ["title", "status"]
    assert "attachments" not in response.rows[0]


def test_json_column_path_keeps_the_column(db_session, bookings):
    builder = (
        DataBuilder(db_session, Booking, "plain")
        .field("attachments.0.name").label("First file")
        .field("resource.name")
        .end()
        .order_by("starts_at", "asc")
    )

    first = builder.get_response().rows[0]

    assert first["attachments.0.name"] == "agenda.pdf"
    assert first["attachments"] == [{"url": "/files/agenda.pdf", "name": "agenda.pdf"}]
    assert first["resource.name"] == "Room A"
    assert "resource" not in first


def test_custom_data_is_passed_through(db_session):
    response = DataBuilder(db_session, Resource, "plain").set_custom_data("legend", {"a": 1}).get_response()

    assert response.custom_data == {"legend": {"a": 1}}


def test_delete_action_runs_before_fetch(db_session, bookings):
    target = bookings[3]

    response = _bookings_widget(
        db_session, filters='["status:"]', table_action="delete", table_ids=str(target.id)
    ).get_response()

    assert response.action_result == {"success": True, "deleted": 1}
    assert response.page_info.action == "delete"
    assert response.page_info.total == 4
    assert [message.text for message in response.messages] == ["Item deleted successfully"]
    assert db_session.get(Booking, target.id) is None


def test_bulk_confirm_updates_records(db_session, bookings):
    pending = bookings[3]

    response = _bookings_widget(
        db_session, table_action="confirm", table_ids=[str(pending.id)]
    ).get_response()

    assert response.action_result == {"confirmed": 1}
    assert response.bulk_result.succeeded == [str(pending.id)]
    assert response.page_info.total == 4
    assert db_session.get(Booking, pending.id).status is BookingStatus.confirmed


def test_bulk_action_without_table_update_skips_fetch(db_session, bookings):
    response = _bookings_widget(
        db_session, table_action="export", table_ids=f"{bookings[1].id},{bookings[0].id}"
    ).get_response()

    assert response.update_table is False
    assert response.rows == []
    assert response.action_result == {"titles": ["Design review", "Standup"]}
    assert [(m.level, m.text) for m in response.messages] == [("info", "Exported 2 bookings")]


def test_bulk_delete_reports_missing_record(db_session, bookings):
    response = _bookings_widget(
        db_session,
        filters='["status:"]',
        table_action="delete_selected",
        table_ids=f"{bookings[0].id},999,{bookings[1].id}",
    ).get_response()

    assert response.bulk_result.succeeded == [str(bookings[0].id)]
    assert response.bulk_result.failed_id == "999"
    assert response.page_info.total == 4
    assert db_session.get(Booking, bookings[1].id) is not None
