"""
Interval Overlap Index

Answers "does [start, end) collide with anything already on this room?".
Intervals are half-open, so a booking ending at 11:00 and one starting at
11:00 do not conflict. Only CONFIRMED and COMPLETED bookings occupy the
timeline; CANCELLED ones never conflict.

Two flavours share the same rule:
- has_conflict / find_conflicts query the store (authoritative)
- OverlapSnapshot answers from an immutable, already-fetched list (advisory,
  used by the range selection protocol)
"""

from bisect import bisect_left
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus, BLOCKING_STATUSES


class Interval(NamedTuple):
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return intervals_overlap(self.start, self.end, other.start, other.end)


def intervals_overlap(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Half-open overlap test: touching endpoints do not conflict"""
    return s1 < e2 and e1 > s2


def _overlap_query(
    db: Session,
    room_id: str,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[str] = None
):
    query = db.query(Booking).filter(
        Booking.room_id == room_id,
        Booking.status.in_(BLOCKING_STATUSES),
        Booking.start_time < end,
        Booking.end_time > start
    )

    if exclude_booking_id:
        query = query.filter(Booking.id != exclude_booking_id)

    return query


def has_conflict(
    db: Session,
    room_id: str,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[str] = None
) -> bool:
    """Check whether [start, end) overlaps a non-cancelled booking on the room"""
    return _overlap_query(db, room_id, start, end, exclude_booking_id).first() is not None


def find_conflicts(
    db: Session,
    room_id: str,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[str] = None
) -> List[Booking]:
    """All non-cancelled bookings on the room that overlap [start, end), by start"""
    return (
        _overlap_query(db, room_id, start, end, exclude_booking_id)
        .order_by(Booking.start_time)
        .all()
    )


class _RoomTimeline:
    """Intervals for one room sorted by start, with a running max of ends"""

    __slots__ = ("intervals", "starts", "max_end")

    def __init__(self, intervals: List[Interval]):
        self.intervals = sorted(intervals)
        self.starts = [iv.start for iv in self.intervals]
        self.max_end: List[datetime] = []
        running: Optional[datetime] = None
        for iv in self.intervals:
            running = iv.end if running is None or iv.end > running else running
            self.max_end.append(running)

    def conflicts(self, start: datetime, end: datetime) -> bool:
        # Every candidate has start < end; among them any end > start is a hit
        i = bisect_left(self.starts, end)
        return i > 0 and self.max_end[i - 1] > start

    def conflicting(self, start: datetime, end: datetime) -> List[Interval]:
        i = bisect_left(self.starts, end)
        return [iv for iv in self.intervals[:i] if iv.end > start]


class OverlapSnapshot:
    """
    Read-only view of room timelines taken at render time.

    Build it from the same active booking list the calendar was drawn from;
    it never touches the store.
    """

    def __init__(self, intervals_by_room: Optional[Dict[str, Iterable[Interval]]] = None):
        self._rooms: Dict[str, _RoomTimeline] = {}
        for room_id, intervals in (intervals_by_room or {}).items():
            self._rooms[room_id] = _RoomTimeline(list(intervals))

    @classmethod
    def from_bookings(cls, bookings: Iterable) -> "OverlapSnapshot":
        """
        Accepts Booking rows or BookingResponse objects (anything with
        room_id, start_time, end_time and status).
        """
        grouped: Dict[str, List[Interval]] = defaultdict(list)
        for booking in bookings:
            status = getattr(booking, "status", BookingStatus.CONFIRMED.value)
            if isinstance(status, BookingStatus):
                status = status.value
            if status == BookingStatus.CANCELLED.value:
                continue
            grouped[booking.room_id].append(Interval(booking.start_time, booking.end_time))
        return cls(grouped)

    def conflicts(self, room_id: str, start: datetime, end: datetime) -> bool:
        timeline = self._rooms.get(room_id)
        return timeline is not None and timeline.conflicts(start, end)

    def conflicting(self, room_id: str, start: datetime, end: datetime) -> List[Interval]:
        timeline = self._rooms.get(room_id)
        return timeline.conflicting(start, end) if timeline else []

    def intervals(self, room_id: str) -> Tuple[Interval, ...]:
        timeline = self._rooms.get(room_id)
        return tuple(timeline.intervals) if timeline else ()
