"""
Tests for Admission Control

Test Coverage:
1. Lead time, duration and operating-hours rules, checked in order
2. Overlap rejection against CONFIRMED and COMPLETED bookings
3. Attendees and owner snapshot stored with the booking
4. Store failures roll back cleanly
5. Randomized admission sequences never produce overlapping bookings
"""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from roombook.exceptions import (
    AdmissionError,
    DurationViolation,
    LeadTimeViolation,
    NotFound,
    OutsideOperatingHours,
    SlotConflict,
    StoreUnavailable,
)
from roombook.models.booking import Booking, BookingStatus
from roombook.schemas.booking import AttendeeIn, BookingCreate
from roombook.services.admission import AdmissionControl, BookingPolicy, check_policy
from roombook.services.overlap_index import intervals_overlap

from conftest import NOW, at, booking_request


@pytest.fixture
def admission(db, clock, policy):
    return AdmissionControl(db, clock=clock, policy=policy)


class TestPolicyRules:
    """Pure rule checks, no database"""

    def test_lead_time_ten_minutes_rejected(self, policy):
        start = NOW + timedelta(minutes=10)
        with pytest.raises(LeadTimeViolation):
            check_policy(policy, start, start + timedelta(hours=1), NOW)

    def test_lead_time_boundary_admitted(self, policy):
        """Exactly now + 30 minutes satisfies 'at least 30 minutes'"""
        start = NOW + timedelta(minutes=30)
        check_policy(policy, start, start + timedelta(hours=1), NOW)

    def test_too_short(self, policy):
        with pytest.raises(DurationViolation):
            check_policy(policy, at(12), at(12, 10), NOW)

    def test_too_long(self, policy):
        with pytest.raises(DurationViolation):
            check_policy(policy, at(10), at(14, 15), NOW)

    def test_duration_bounds_inclusive(self, policy):
        check_policy(policy, at(12), at(12, 15), NOW)
        check_policy(policy, at(10), at(14), NOW)

    def test_end_before_start_is_a_duration_violation(self, policy):
        with pytest.raises(DurationViolation):
            check_policy(policy, at(12), at(11), NOW)

    def test_before_opening(self, policy):
        with pytest.raises(OutsideOperatingHours):
            check_policy(policy, at(7, 30, days=1), at(8, 30, days=1), NOW)

    def test_after_closing(self, policy):
        with pytest.raises(OutsideOperatingHours):
            check_policy(policy, at(21, 30), at(22, 15), NOW)

    def test_window_edges_admitted(self, policy):
        check_policy(policy, at(8, days=1), at(9, days=1), NOW)
        check_policy(policy, at(21), at(22), NOW)

    def test_spanning_midnight_rejected(self):
        policy = BookingPolicy(opening_hour=0, closing_hour=24, tz=ZoneInfo("UTC"))
        with pytest.raises(OutsideOperatingHours):
            check_policy(policy, at(23), at(1, days=1), NOW)

    def test_midnight_closing_admits_last_hour(self):
        policy = BookingPolicy(closing_hour=24, tz=ZoneInfo("UTC"))
        check_policy(policy, at(23), at(0, days=1), NOW)
        check_policy(policy, at(23, 45), at(0, days=1), NOW)

    def test_midnight_closing_in_local_timezone(self):
        """23:00-24:00 in Riyadh is 20:00-21:00 UTC"""
        policy = BookingPolicy(closing_hour=24, tz=ZoneInfo("Asia/Riyadh"))
        check_policy(policy, at(20), at(21), NOW)
        with pytest.raises(OutsideOperatingHours):
            check_policy(policy, at(20, 30), at(21, 30), NOW)

    def test_hours_evaluated_in_configured_timezone(self):
        """09:00 UTC is 12:00 in Riyadh; 19:30 UTC is 22:30 there"""
        policy = BookingPolicy(tz=ZoneInfo("Asia/Riyadh"))
        now = at(4)
        check_policy(policy, at(9), at(10), now)
        with pytest.raises(OutsideOperatingHours):
            check_policy(policy, at(18, 30), at(19, 30), now)

    def test_first_failing_rule_wins(self, policy):
        """Too soon, too short and outside hours at once: lead time is reported"""
        start = NOW - timedelta(hours=3)
        with pytest.raises(LeadTimeViolation):
            check_policy(policy, start, start + timedelta(minutes=5), NOW)


class TestAdmit:

    def test_admit_creates_confirmed_booking(self, db, room, owner, admission):
        request = booking_request(
            room.id, at(10), at(11),
            purpose="Group study",
            attendees=[
                AttendeeIn(name="Owner One", student_id="S100", is_companion=False),
                AttendeeIn(name="Friend", student_id="S200"),
            ],
        )

        booking = admission.admit(request, owner)

        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.owner_id == owner.id
        assert booking.owner_email == owner.email
        assert booking.reminder_sent is False
        assert booking.start_time == at(10)
        assert booking.start_time.tzinfo is not None
        assert [a.name for a in booking.attendees] == ["Owner One", "Friend"]
        assert booking.attendees[0].is_companion is False
        assert db.query(Booking).count() == 1

    def test_lead_time_violation_vs_success(self, room, owner, admission):
        with pytest.raises(LeadTimeViolation):
            admission.admit(booking_request(room.id, NOW + timedelta(minutes=10), NOW + timedelta(minutes=70)), owner)

        booking = admission.admit(
            booking_request(room.id, NOW + timedelta(minutes=31), NOW + timedelta(minutes=91)), owner
        )
        assert booking.status == BookingStatus.CONFIRMED.value

    def test_overlap_rejected(self, db, room, owner, stranger, admission):
        admission.admit(booking_request(room.id, at(10), at(11)), owner)

        with pytest.raises(SlotConflict) as exc_info:
            admission.admit(booking_request(room.id, at(10, 30), at(11, 30)), stranger)

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["booked_by"] == owner.name
        assert db.query(Booking).count() == 1

    def test_back_to_back_admitted(self, db, room, owner, admission):
        admission.admit(booking_request(room.id, at(10), at(11)), owner)
        admission.admit(booking_request(room.id, at(11), at(12)), owner)
        assert db.query(Booking).count() == 2

    def test_same_slot_on_another_room_admitted(self, room, other_room, owner, admission):
        admission.admit(booking_request(room.id, at(10), at(11)), owner)
        admission.admit(booking_request(other_room.id, at(10), at(11)), owner)

    def test_completed_booking_still_blocks(self, room, owner, admission, make_booking):
        make_booking(room.id, at(10), at(11), status=BookingStatus.COMPLETED)
        with pytest.raises(SlotConflict):
            admission.admit(booking_request(room.id, at(10), at(11)), owner)

    def test_cancelled_booking_frees_slot(self, room, owner, admission, make_booking):
        make_booking(room.id, at(10), at(11), status=BookingStatus.CANCELLED)
        booking = admission.admit(booking_request(room.id, at(10), at(11)), owner)
        assert booking.status == BookingStatus.CONFIRMED.value

    def test_unknown_room(self, owner, admission):
        with pytest.raises(NotFound):
            admission.admit(booking_request("no-such-room", at(10), at(11)), owner)

    def test_last_hour_before_midnight_closing(self, db, room, owner, clock):
        admission = AdmissionControl(db, clock=clock, policy=BookingPolicy(closing_hour=24, tz=ZoneInfo("UTC")))

        booking = admission.admit(booking_request(room.id, at(23), at(0, days=1)), owner)

        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.end_time == at(0, days=1)

    def test_non_utc_offsets_are_normalized(self, room, owner, admission):
        riyadh = timezone(timedelta(hours=3))
        start = datetime(2026, 3, 2, 13, 0, tzinfo=riyadh)

        booking = admission.admit(booking_request(room.id, start, start + timedelta(hours=1)), owner)

        assert booking.start_time == at(10)
        assert booking.start_time.utcoffset() == timedelta(0)

    def test_policy_rejection_writes_nothing(self, db, room, owner, admission):
        with pytest.raises(OutsideOperatingHours):
            admission.admit(booking_request(room.id, at(21, 30), at(22, 30)), owner)
        assert db.query(Booking).count() == 0

    def test_store_failure_rolls_back(self, db, room, owner, admission):
        with patch.object(db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error"))):
            with pytest.raises(StoreUnavailable):
                admission.admit(booking_request(room.id, at(10), at(11)), owner)

        assert db.query(Booking).count() == 0

    def test_naive_datetimes_rejected_at_boundary(self, room):
        with pytest.raises(ValidationError):
            BookingCreate(room_id=room.id, start_time=datetime(2026, 3, 2, 10), end_time=datetime(2026, 3, 2, 11))

    def test_too_many_attendees_rejected_at_boundary(self, room):
        with pytest.raises(ValidationError):
            booking_request(room.id, at(10), at(11), attendees=[AttendeeIn(name=f"A{i}") for i in range(11)])


class TestRandomizedAdmission:

    def test_no_overlaps_after_random_sequence(self, db, room, other_room, owner, admission):
        """
        Admit a few hundred random requests over two rooms and three days;
        every outcome must match a brute-force model of the rules, and the
        store must end with no overlapping blocking bookings.
        """
        rng = random.Random(20260302)
        accepted = {room.id: [], other_room.id: []}

        for _ in range(300):
            room_id = rng.choice([room.id, other_room.id])
            day = rng.randrange(0, 3)
            start = at(8, days=day) + timedelta(minutes=15 * rng.randrange(0, 56))
            end = start + timedelta(minutes=15 * rng.randrange(1, 17))

            try:
                admission.admit(booking_request(room_id, start, end), owner)
            except SlotConflict:
                assert any(intervals_overlap(start, end, s, e) for s, e in accepted[room_id])
                continue
            except AdmissionError:
                continue

            assert not any(intervals_overlap(start, end, s, e) for s, e in accepted[room_id])
            accepted[room_id].append((start, end))

        for room_id in accepted:
            rows = db.query(Booking).filter(
                Booking.room_id == room_id,
                Booking.status.in_([BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value])
            ).order_by(Booking.start_time).all()

            assert len(rows) == len(accepted[room_id])
            for earlier, later in zip(rows, rows[1:]):
                assert earlier.end_time <= later.start_time
