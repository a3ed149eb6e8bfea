"""Read-side booking queries used by the HTTP layer"""

from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import NotFound, StoreUnavailable
from ..models.booking import Booking, BookingStatus


def list_active(db: Session, room_id: Optional[str] = None, owner_id: Optional[str] = None) -> List[Booking]:
    """Non-cancelled bookings, earliest start first"""
    query = db.query(Booking).filter(Booking.status != BookingStatus.CANCELLED.value)

    if room_id:
        query = query.filter(Booking.room_id == room_id)
    if owner_id:
        query = query.filter(Booking.owner_id == owner_id)

    try:
        return query.order_by(Booking.start_time.asc()).all()
    except SQLAlchemyError as e:
        raise StoreUnavailable("Could not list bookings", cause=e) from e


def list_all(db: Session) -> List[Booking]:
    """Every booking in any status, newest first"""
    try:
        return db.query(Booking).order_by(Booking.created_at.desc()).all()
    except SQLAlchemyError as e:
        raise StoreUnavailable("Could not list bookings", cause=e) from e


def get_booking(db: Session, booking_id: str) -> Booking:
    try:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
    except SQLAlchemyError as e:
        raise StoreUnavailable("Could not load booking", cause=e) from e

    if booking is None:
        raise NotFound(f"Booking {booking_id} not found", booking_id=booking_id)
    return booking
