"""
Booking Lifecycle State Machine

    CONFIRMED --cancel (owner/admin)--> CANCELLED
    CONFIRMED --reconciler, end passed--> COMPLETED

CANCELLED and COMPLETED are terminal and nothing returns to CONFIRMED, so
a slot released by cancellation never comes back and a completed booking
keeps its historical slot.

Every status write goes through conditional_transition: a single UPDATE
whose WHERE clause re-checks the source status. When a cancel and a
completion race on the same row, the first committed write wins and the
other matches zero rows.
"""

from typing import Dict, FrozenSet, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..clock import Clock, system_clock
from ..config import settings
from ..exceptions import Forbidden, InvalidTransition, NotFound, NotificationFailure, StoreUnavailable
from ..models.booking import Booking, BookingStatus
from ..utils.db_helpers import commit_or_raise
from ..utils.logging_config import get_logger
from .notification_service import CancellationDetails, dispatch_with_timeout

logger = get_logger(__name__)


ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


def can_transition(old: BookingStatus, new: BookingStatus) -> bool:
    return BookingStatus(new) in ALLOWED_TRANSITIONS[BookingStatus(old)]


def ensure_transition(booking_id: str, old: BookingStatus, new: BookingStatus) -> None:
    if not can_transition(old, new):
        old_value = BookingStatus(old).value
        raise InvalidTransition(
            f"Cannot move a {old_value.lower()} booking to {BookingStatus(new).value.lower()}",
            booking_id=booking_id,
            status=old_value,
        )


def source_statuses(new: BookingStatus) -> FrozenSet[BookingStatus]:
    """Statuses from which `new` is reachable"""
    return frozenset(old for old, targets in ALLOWED_TRANSITIONS.items() if new in targets)


def conditional_transition(db: Session, new: BookingStatus, *criteria, **values) -> int:
    """
    Move every booking matching `criteria` whose current status may reach
    `new`. Returns the number of rows changed; does not commit.
    """
    sources = [s.value for s in source_statuses(new)]
    stmt = (
        update(Booking)
        .where(Booking.status.in_(sources), *criteria)
        .values(status=new.value, **values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount


def cancel_booking(
    db: Session,
    booking_id: str,
    requester_id: str,
    requester_is_admin: bool,
    reason: Optional[str] = None,
    notifier=None,
    clock: Clock = system_clock
) -> Booking:
    """
    Cancel a CONFIRMED booking on behalf of its owner or an administrator.

    Raises NotFound, Forbidden or InvalidTransition; the booking is left
    untouched in every error case.
    """
    try:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable("Could not load booking", cause=e) from e

    if booking is None:
        raise NotFound(f"Booking {booking_id} not found", booking_id=booking_id)

    if booking.owner_id != requester_id and not requester_is_admin:
        raise Forbidden("You can only cancel your own bookings", booking_id=booking_id)

    ensure_transition(booking.id, booking.status, BookingStatus.CANCELLED)
    old_status = booking.status

    try:
        changed = conditional_transition(
            db,
            BookingStatus.CANCELLED,
            Booking.id == booking_id,
            cancellation_reason=reason,
            cancelled_by_id=requester_id,
            updated_at=clock.now(),
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailable("Could not cancel booking", cause=e) from e

    if changed == 0:
        # Lost the race: someone else moved it out of CONFIRMED first
        db.rollback()
        db.refresh(booking)
        raise InvalidTransition(
            f"Booking is already {booking.status.lower()}",
            booking_id=booking.id,
            status=booking.status,
        )

    commit_or_raise(db, "booking cancellation")
    db.refresh(booking)

    logger.booking_status_changed(booking.id, old_status, booking.status, actor_id=requester_id)

    if notifier is not None and requester_id != booking.owner_id:
        _notify_owner_of_cancellation(booking, notifier, reason)

    return booking


def _notify_owner_of_cancellation(booking: Booking, notifier, reason: Optional[str]) -> None:
    """Best effort: the cancellation already stands whatever happens here"""
    if not booking.owner_email:
        logger.warning(f"No email on file for owner of booking {booking.id}, skipping cancellation notice")
        return

    details = CancellationDetails(
        room_name=booking.room.name if booking.room else booking.room_id,
        start_time=booking.start_time,
        end_time=booking.end_time,
        reason=reason,
    )
    try:
        dispatch_with_timeout(
            notifier.send_cancellation,
            booking.owner_email,
            booking.owner_name,
            details,
            timeout=settings.notification_timeout_seconds,
        )
    except NotificationFailure as e:
        logger.warning(f"Cancellation notice for booking {booking.id} not delivered: {e.message}")
