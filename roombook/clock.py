"""
Clock abstraction.

Every time-dependent rule (lead time, operating hours, sweeps) reads "now"
through a Clock so tests can pin and advance time without sleeping.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock, always UTC-aware"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Manually driven clock for tests and simulations"""

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            raise ValueError("FrozenClock needs a timezone-aware start")
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, delta: timedelta) -> datetime:
        with self._lock:
            self._now = self._now + delta
            return self._now

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FrozenClock needs a timezone-aware instant")
        with self._lock:
            self._now = instant


system_clock = SystemClock()
