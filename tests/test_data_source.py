import pytest

from recordview.models.booking import Booking, Resource
from recordview.services.data_source import SqlAlchemyDataSource, record_to_row
from recordview.services.exceptions import BuilderError


def test_primary_key_and_column_resolution(db_session):
    source = SqlAlchemyDataSource(db_session, Booking)

    assert source.primary_key == "id"
    assert source.resolve_column("title").relation is None
    resolved = source.resolve_column("resource.name")
    assert resolved.column is Resource.name
    assert resolved.relation is Booking.resource
    for path in ("colour", "resource.colour", "owner.name", "resource.bookings.title"):
        with pytest.raises(BuilderError):
            source.resolve_column(path)


def test_get_by_ids_keeps_requested_order(db_session, bookings):
    source = SqlAlchemyDataSource(db_session, Booking)
    ids = [str(bookings[2].id), "nope", str(bookings[0].id), "999"]

    rows = source.get_by_ids(ids)

    assert [row["title"] for row in rows] == ["Retro", "Standup"]
    assert source.get_by_id("999") is None


def test_relation_paths_load_nested_rows(db_session, bookings):
    source = SqlAlchemyDataSource(db_session, Booking, relation_paths=["resource.name", "title"])

    assert source.relation_paths == ["resource.name", "title"]
    source.set_relation_paths(["resource.name", "title"])
    row = source.get_by_id(bookings[3].id)

    assert source.relation_paths == ["resource.name"]
    assert row["resource"]["name"] == "Room B"


def test_collection_relations_become_lists(db_session, bookings):
    room_a = db_session.get(Resource, bookings[0].resource_id)

    row = record_to_row(room_a, {"bookings": {}})

    assert sorted(item["title"] for item in row["bookings"]) == ["Design review", "Retro", "Standup"]


def test_delete_reports_missing_record(db_session, bookings):
    source = SqlAlchemyDataSource(db_session, Booking)

    assert source.delete("999") is False
    assert source.last_error == "Record 999 not found"
    assert source.delete("abc") is False
    assert source.delete(bookings[0].id) is True
    assert source.last_error is None
    assert db_session.get(Booking, bookings[0].id) is None


def test_total_ignores_pagination(db_session, bookings):
    source = SqlAlchemyDataSource(db_session, Booking)

    query = source.base_query().order_by(Booking.id).limit(2).offset(1)

    assert source.total(query) == 5
    assert len(source.query(query).rows) == 2


def test_total_on_paginated_query_keeps_session_usable(db_session, bookings):
    source = SqlAlchemyDataSource(db_session, Booking)

    query = source.base_query().order_by(Booking.starts_at.desc()).limit(1).offset(3)

    assert source.total(query) == 5
    assert source.last_error is None
    assert [row["title"] for row in source.query(query).rows] == ["Design review"]
