"""
Shared fixtures: a throwaway SQLite file database per test, a frozen clock
pinned inside operating hours, seeded rooms and fake notification senders.
"""

import os

# Must be set before roombook.config is first imported
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BOOKING_TIMEZONE", "UTC")
os.environ.setdefault("LOG_JSON", "false")

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.orm import sessionmaker

from roombook.clock import FrozenClock
from roombook.config import settings
from roombook.database import build_engine, create_tables
from roombook.models.booking import Booking, BookingStatus
from roombook.models.room import Room
from roombook.schemas.actor import Actor
from roombook.schemas.booking import BookingCreate
from roombook.services.admission import BookingPolicy

# Monday, 09:00 UTC: inside the default 08:00-22:00 window
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, days: int = 0) -> datetime:
    """An instant on the test day (or `days` later), UTC"""
    return NOW.replace(hour=hour, minute=minute) + timedelta(days=days)


# ================================
# DATABASE
# ================================

@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'roombook-test.db'}")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def room(db) -> Room:
    room = Room(id="room-a", name="Study Room A", min_capacity=1, max_capacity=6, features='["whiteboard"]')
    db.add(room)
    db.commit()
    return room


@pytest.fixture
def other_room(db) -> Room:
    room = Room(id="room-b", name="Study Room B", min_capacity=1, max_capacity=4)
    db.add(room)
    db.commit()
    return room


@pytest.fixture
def make_booking(db):
    """Insert a booking directly, bypassing admission (for past or near-term fixtures)"""
    def _make(
        room_id: str,
        start: datetime,
        end: datetime,
        status: BookingStatus = BookingStatus.CONFIRMED,
        owner_id: str = "owner-1",
        owner_email: Optional[str] = "owner@example.com",
        reminder_sent: bool = False,
    ) -> Booking:
        booking = Booking(
            room_id=room_id,
            owner_id=owner_id,
            owner_name="Owner One",
            owner_email=owner_email,
            start_time=start,
            end_time=end,
            status=status.value,
            reminder_sent=reminder_sent,
            created_at=NOW - timedelta(days=1),
            updated_at=NOW - timedelta(days=1),
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


# ================================
# TIME AND POLICY
# ================================

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def policy() -> BookingPolicy:
    return BookingPolicy(tz=ZoneInfo("UTC"))


@pytest.fixture
def fast_settings():
    """Settings with a short notification deadline"""
    return settings.model_copy(update={"notification_timeout_seconds": 0.2})


# ================================
# ACTORS AND REQUESTS
# ================================

@pytest.fixture
def owner() -> Actor:
    return Actor(id="owner-1", name="Owner One", email="owner@example.com")


@pytest.fixture
def stranger() -> Actor:
    return Actor(id="user-2", name="Someone Else", email="someone@example.com")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", name="Admin", email="admin@example.com", is_admin=True)


def booking_request(room_id: str, start: datetime, end: datetime, **extra) -> BookingCreate:
    return BookingCreate(room_id=room_id, start_time=start, end_time=end, **extra)


# ================================
# NOTIFICATION SENDERS
# ================================

class RecordingNotifier:
    """Records every call; `result` decides what send() reports"""

    def __init__(self, result: bool = True, fail_for: Optional[set] = None):
        self.result = result
        self.fail_for = fail_for or set()
        self.reminders: List[Tuple[str, str, object]] = []
        self.cancellations: List[Tuple[str, str, object]] = []
        self._lock = threading.Lock()

    def send(self, recipient_address, recipient_name, details) -> bool:
        with self._lock:
            self.reminders.append((recipient_address, recipient_name, details))
        if recipient_address in self.fail_for:
            return False
        return self.result

    def send_cancellation(self, recipient_address, recipient_name, details) -> bool:
        with self._lock:
            self.cancellations.append((recipient_address, recipient_name, details))
        return self.result


class RaisingNotifier(RecordingNotifier):
    def send(self, recipient_address, recipient_name, details) -> bool:
        super().send(recipient_address, recipient_name, details)
        raise ConnectionError("mail relay unreachable")


class SlowNotifier(RecordingNotifier):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    def send(self, recipient_address, recipient_name, details) -> bool:
        time.sleep(self.delay)
        return super().send(recipient_address, recipient_name, details)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
