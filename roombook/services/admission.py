"""
Admission Control

The only path that creates bookings. A request is checked against the
booking policy in a fixed order (first failing rule wins):

1. lead time          -> LeadTimeViolation
2. duration bounds    -> DurationViolation
3. operating hours    -> OutsideOperatingHours
4. overlap            -> SlotConflict

Rule 4 runs inside the per-room critical section, immediately before the
insert, so it always sees the latest committed state. Two overlapping
requests racing for the same room therefore resolve to one booking and one
SlotConflict.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..clock import Clock, system_clock
from ..config import Settings, settings as default_settings
from ..exceptions import (
    AdmissionError,
    DurationViolation,
    LeadTimeViolation,
    NotFound,
    OutsideOperatingHours,
    SlotConflict,
    StoreUnavailable,
)
from ..models.booking import Booking, BookingAttendee, BookingStatus
from ..models.room import Room
from ..schemas.actor import Actor
from ..schemas.booking import BookingCreate
from ..utils.db_helpers import acquire_row_lock, commit_or_raise, resource_lock
from ..utils.logging_config import get_logger
from .overlap_index import find_conflicts

logger = get_logger(__name__)


@dataclass(frozen=True)
class BookingPolicy:
    lead_time: timedelta = timedelta(minutes=30)
    min_duration: timedelta = timedelta(minutes=15)
    max_duration: timedelta = timedelta(hours=4)
    opening_hour: int = 8
    closing_hour: int = 22
    tz: ZoneInfo = ZoneInfo("UTC")

    @classmethod
    def from_settings(cls, s: Settings) -> "BookingPolicy":
        return cls(
            lead_time=s.lead_time,
            min_duration=s.min_duration,
            max_duration=s.max_duration,
            opening_hour=s.opening_hour,
            closing_hour=s.closing_hour,
            tz=s.tz,
        )

    def day_window(self, day: date) -> Tuple[datetime, datetime]:
        """Local opening and closing instants for `day`; closing hour 24 is the next midnight"""
        opening = datetime.combine(day, time(self.opening_hour, 0), tzinfo=self.tz)
        return opening, opening + timedelta(hours=self.closing_hour - self.opening_hour)

    @property
    def hours_label(self) -> str:
        return f"{self.opening_hour:02d}:00-{self.closing_hour:02d}:00"


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def check_lead_time(policy: BookingPolicy, start: datetime, now: datetime) -> None:
    if start < now + policy.lead_time:
        raise LeadTimeViolation(
            f"Bookings must start at least {_minutes(policy.lead_time)} minutes from now",
            earliest_start=(now + policy.lead_time).isoformat(),
        )


def check_duration(policy: BookingPolicy, start: datetime, end: datetime) -> None:
    duration = end - start
    if duration < policy.min_duration:
        raise DurationViolation(
            f"Minimum booking duration is {_minutes(policy.min_duration)} minutes",
            duration_minutes=_minutes(duration),
        )
    if duration > policy.max_duration:
        raise DurationViolation(
            f"Maximum booking duration is {_minutes(policy.max_duration)} minutes",
            duration_minutes=_minutes(duration),
        )


def check_operating_hours(policy: BookingPolicy, start: datetime, end: datetime) -> None:
    local_start = start.astimezone(policy.tz)
    local_end = end.astimezone(policy.tz)
    opening, closing = policy.day_window(local_start.date())

    # Same tzinfo on both sides, so these compare wall-clock times
    if local_start < opening or local_end > closing:
        raise OutsideOperatingHours(
            f"Bookings must fall within operating hours {policy.hours_label}"
        )


def check_policy(policy: BookingPolicy, start: datetime, end: datetime, now: datetime) -> None:
    """Rules 1-3. Pure; raises the first violated rule."""
    check_lead_time(policy, start, now)
    check_duration(policy, start, end)
    check_operating_hours(policy, start, end)


class AdmissionControl:
    """
    Validates booking requests and commits admitted bookings.

    Holds no state of its own beyond its collaborators; construct one per
    request (session) like the other services.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        policy: Optional[BookingPolicy] = None
    ):
        self.db = db
        self.clock = clock
        self.policy = policy or BookingPolicy.from_settings(default_settings)

    def admit(self, request: BookingCreate, actor: Actor) -> Booking:
        start = request.start_time.astimezone(timezone.utc)
        end = request.end_time.astimezone(timezone.utc)

        try:
            check_policy(self.policy, start, end, self.clock.now())
        except AdmissionError as e:
            logger.booking_rejected(request.room_id, e.code, e.message)
            raise

        with resource_lock(request.room_id):
            try:
                booking = self._commit_if_free(request, actor, start, end)
            except SQLAlchemyError as e:
                self.db.rollback()
                raise StoreUnavailable("Could not admit booking", cause=e) from e

        logger.booking_admitted(booking.id, booking.room_id, booking.owner_id, start, end)
        return booking

    def _commit_if_free(self, request: BookingCreate, actor: Actor, start: datetime, end: datetime) -> Booking:
        # Row lock on the room serializes admissions across processes (PostgreSQL)
        room = acquire_row_lock(self.db, Room, Room.id == request.room_id)
        if room is None:
            self.db.rollback()
            raise NotFound(f"Room {request.room_id} not found", room_id=request.room_id)

        conflicts = find_conflicts(self.db, request.room_id, start, end)
        if conflicts:
            self.db.rollback()
            first = conflicts[0]
            logger.booking_rejected(request.room_id, SlotConflict.code, "overlap")
            raise SlotConflict(
                "Selected time slot overlaps with an existing booking",
                conflict_start=first.start_time.isoformat(),
                conflict_end=first.end_time.isoformat(),
                booked_by=first.owner_name,
            )

        booking = Booking(
            room_id=request.room_id,
            owner_id=actor.id,
            owner_name=actor.name or actor.id,
            owner_email=actor.email,
            start_time=start,
            end_time=end,
            status=BookingStatus.CONFIRMED.value,
            purpose=request.purpose,
            reminder_sent=False,
            created_at=self.clock.now(),
        )
        booking.attendees = [
            BookingAttendee(
                position=i,
                name=attendee.name,
                student_id=attendee.student_id,
                is_companion=attendee.is_companion,
            )
            for i, attendee in enumerate(request.attendees)
        ]

        self.db.add(booking)
        commit_or_raise(self.db, "booking admission")
        self.db.refresh(booking)
        return booking
