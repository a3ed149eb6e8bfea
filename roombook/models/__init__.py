# Models package
from .room import Room
from .booking import Booking, BookingAttendee, BookingStatus, BLOCKING_STATUSES

__all__ = [
    "Room",
    "Booking", "BookingAttendee", "BookingStatus", "BLOCKING_STATUSES",
]
