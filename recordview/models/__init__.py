from recordview.models.booking import Booking, BookingStatus, Resource  # noqa: F401
