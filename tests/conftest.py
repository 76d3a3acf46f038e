from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recordview.db import Base
from recordview.models.booking import Booking, BookingStatus, Resource


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={
            "check_same_thread": False,
        },
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def rooms(db_session):
    room_a = Resource(name="Room A", location="North wing", is_active=True)
    room_b = Resource(name="Room B", location="South wing", is_active=False)
    db_session.add_all([room_a, room_b])
    db_session.commit()
    return room_a, room_b


@pytest.fixture()
def bookings(db_session, rooms):
    """Five bookings in ISO week 2 of 2025, except the last one (week 4).

    Room A holds three overlapping morning bookings on Monday 2025-01-06.
    """
    room_a, room_b = rooms
    records = [
        Booking(
            resource_id=room_a.id,
            title="Standup",
            status=BookingStatus.confirmed,
            starts_at=datetime(2025, 1, 6, 9, 0),
            ends_at=datetime(2025, 1, 6, 10, 0),
            is_paid=True,
            amount=Decimal("50.00"),
            notes="Daily sync",
            attachments=[{"url": "/files/agenda.pdf", "name": "agenda.pdf"}],
        ),
        Booking(
            resource_id=room_a.id,
            title="Design review",
            status=BookingStatus.confirmed,
            starts_at=datetime(2025, 1, 6, 9, 30),
            ends_at=datetime(2025, 1, 6, 11, 0),
            is_paid=False,
        ),
        Booking(
            resource_id=room_a.id,
            title="Retro",
            status=BookingStatus.confirmed,
            starts_at=datetime(2025, 1, 6, 10, 0),
            ends_at=datetime(2025, 1, 6, 11, 0),
            is_paid=False,
        ),
        Booking(
            resource_id=room_b.id,
            title="Interview",
            status=BookingStatus.pending,
            starts_at=datetime(2025, 1, 7, 14, 0),
            ends_at=datetime(2025, 1, 7, 15, 0),
            is_paid=False,
        ),
        Booking(
            resource_id=room_b.id,
            title="Quarterly planning",
            status=BookingStatus.cancelled,
            starts_at=datetime(2025, 1, 20, 9, 0),
            ends_at=datetime(2025, 1, 20, 12, 0),
            is_paid=False,
        ),
    ]
    db_session.add_all(records)
    db_session.commit()
    return records
