"""
Range Selection Protocol

Rendering-free state machine behind the drag-to-select booking calendar.
A day column is split into fixed granules (15 minutes by default) between
opening and closing time; the user presses on a free cell, drags within
the same day, and releases to propose [first cell start, last cell end).

    IDLE --pointer_down(free cell)--> DRAGGING
    DRAGGING --pointer_move(same day, in grid)--> DRAGGING
    DRAGGING --pointer_up / cancel--> IDLE

The conflict check uses an OverlapSnapshot taken when the calendar was
drawn, so it is advisory only; admission control re-checks on submit.
Nothing here touches bookings.
"""

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ..config import Settings
from .overlap_index import Interval, OverlapSnapshot


class SelectionState(str, enum.Enum):
    IDLE = "IDLE"
    DRAGGING = "DRAGGING"


@dataclass(frozen=True)
class CandidatePreview:
    interval: Interval
    conflicting: bool


@dataclass(frozen=True)
class SelectionGrid:
    """Maps (day, granule index) to a UTC interval"""
    opening_hour: int = 8
    closing_hour: int = 22
    granule: timedelta = timedelta(minutes=15)
    tz: ZoneInfo = ZoneInfo("UTC")

    @classmethod
    def from_settings(cls, s: Settings) -> "SelectionGrid":
        return cls(
            opening_hour=s.opening_hour,
            closing_hour=s.closing_hour,
            granule=s.granule,
            tz=s.tz,
        )

    @property
    def granule_count(self) -> int:
        span = timedelta(hours=self.closing_hour - self.opening_hour)
        return int(span // self.granule)

    def contains(self, granule: int) -> bool:
        return 0 <= granule < self.granule_count

    def cell(self, day: date, granule: int) -> Interval:
        if not self.contains(granule):
            raise ValueError(f"granule {granule} is outside the grid (0..{self.granule_count - 1})")
        opening = datetime.combine(day, time(self.opening_hour, 0), tzinfo=self.tz)
        start = opening + granule * self.granule
        return Interval(start.astimezone(timezone.utc), (start + self.granule).astimezone(timezone.utc))

    def span(self, day: date, first: int, last: int) -> Interval:
        """Interval covering granules first..last inclusive, in either order"""
        low, high = min(first, last), max(first, last)
        return Interval(self.cell(day, low).start, self.cell(day, high).end)


class RangeSelection:
    """One user's drag gesture over one room's calendar"""

    def __init__(self, grid: SelectionGrid, snapshot: OverlapSnapshot):
        self.grid = grid
        self.snapshot = snapshot
        self._reset()

    def _reset(self):
        self.state = SelectionState.IDLE
        self.room_id: Optional[str] = None
        self.day: Optional[date] = None
        self.anchor: Optional[int] = None
        self.current: Optional[int] = None

    def replace_snapshot(self, snapshot: OverlapSnapshot) -> None:
        """Swap in a fresher snapshot after the calendar refetches bookings"""
        self.snapshot = snapshot

    def is_occupied(self, room_id: str, day: date, granule: int) -> bool:
        cell = self.grid.cell(day, granule)
        return self.snapshot.conflicts(room_id, cell.start, cell.end)

    def pointer_down(self, room_id: str, day: date, granule: int) -> bool:
        """Start a drag on a free cell. Returns False (and stays idle) otherwise."""
        if self.state is SelectionState.DRAGGING:
            return False
        if not self.grid.contains(granule) or self.is_occupied(room_id, day, granule):
            return False

        self.state = SelectionState.DRAGGING
        self.room_id = room_id
        self.day = day
        self.anchor = granule
        self.current = granule
        return True

    def pointer_move(self, day: date, granule: int) -> bool:
        """Extend the drag. Moves onto another day or off the grid are ignored."""
        if self.state is not SelectionState.DRAGGING:
            return False
        if day != self.day or not self.grid.contains(granule):
            return False
        self.current = granule
        return True

    @property
    def candidate(self) -> Optional[Interval]:
        if self.state is not SelectionState.DRAGGING:
            return None
        return self.grid.span(self.day, self.anchor, self.current)

    @property
    def preview(self) -> Optional[CandidatePreview]:
        candidate = self.candidate
        if candidate is None:
            return None
        return CandidatePreview(
            interval=candidate,
            conflicting=self.snapshot.conflicts(self.room_id, candidate.start, candidate.end),
        )

    def pointer_up(self) -> Optional[Interval]:
        """
        Finish the drag. Returns the candidate when it is free, None when it
        conflicts or no drag was in progress. Always ends idle.
        """
        preview = self.preview
        self._reset()
        if preview is None or preview.conflicting:
            return None
        return preview.interval

    def cancel(self) -> None:
        self._reset()
