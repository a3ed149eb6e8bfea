"""
Booking Reconciliation

Periodic housekeeping over booking records:
- CONFIRMED bookings whose end has passed -> COMPLETED
- CONFIRMED bookings starting soon get exactly one reminder

Runs as a background job (see booking_scheduler and worker.py). Every
write is a conditional UPDATE, so running two sweeps at once, or a sweep
alongside a cancellation, never double-applies a change.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, update
from sqlalchemy.orm import Session

from ..clock import Clock, system_clock
from ..config import Settings, settings as default_settings
from ..exceptions import NotificationFailure
from ..models.booking import Booking, BookingStatus
from ..utils.db_helpers import commit_or_raise
from ..utils.logging_config import get_logger
from .lifecycle import conditional_transition
from .notification_service import NotificationSender, ReminderDetails, dispatch_with_timeout

logger = get_logger(__name__)


@dataclass
class SweepResult:
    completed_count: int = 0
    completed_ids: List[str] = field(default_factory=list)
    reminders_sent: int = 0
    reminder_ids: List[str] = field(default_factory=list)
    reminder_failures: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "completed_count": self.completed_count,
            "completed_ids": list(self.completed_ids),
            "reminders_sent": self.reminders_sent,
            "reminder_ids": list(self.reminder_ids),
            "reminder_failures": self.reminder_failures,
            "errors": list(self.errors),
        }


class BookingReconciler:
    """
    Completion and reminder sweeps for one database session.

    The clock is injected so a test can run many sweeps against simulated
    time without sleeping.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        notifier: Optional[NotificationSender] = None,
        s: Settings = default_settings
    ):
        self.db = db
        self.clock = clock
        self.notifier = notifier
        self.settings = s

    def complete_elapsed_bookings(self) -> Tuple[int, List[str]]:
        """
        Move CONFIRMED bookings whose end is strictly in the past to COMPLETED.

        Returns:
            Tuple of (count_updated, list_of_booking_ids)
        """
        now = self.clock.now()

        elapsed_ids = [
            row.id for row in self.db.query(Booking.id).filter(
                and_(
                    Booking.status == BookingStatus.CONFIRMED.value,
                    Booking.end_time < now
                )
            ).all()
        ]
        if not elapsed_ids:
            self.db.rollback()
            return 0, []

        changed = conditional_transition(
            self.db,
            BookingStatus.COMPLETED,
            Booking.id.in_(elapsed_ids),
            Booking.end_time < now,
            updated_at=now,
        )
        commit_or_raise(self.db, "booking completion")
        if not changed:
            return 0, []

        # A booking cancelled between the read and the update is not ours
        completed_ids = [
            row.id for row in self.db.query(Booking.id).filter(
                Booking.id.in_(elapsed_ids),
                Booking.status == BookingStatus.COMPLETED.value,
                Booking.updated_at == now
            ).all()
        ]
        self.db.rollback()

        logger.log_with_context(
            logging.INFO,
            f"Auto-completed {changed} elapsed bookings",
            event="booking.completed",
            booking_ids=completed_ids,
        )
        return changed, completed_ids

    def _due_reminder_ids(self) -> List[str]:
        now = self.clock.now()
        window_start = now + timedelta(minutes=self.settings.reminder_window_start_minutes)
        window_end = now + timedelta(minutes=self.settings.reminder_window_end_minutes)

        rows = self.db.query(Booking.id).filter(
            and_(
                Booking.status == BookingStatus.CONFIRMED.value,
                Booking.reminder_sent == False,  # noqa: E712
                Booking.start_time >= window_start,
                Booking.start_time <= window_end
            )
        ).order_by(Booking.start_time.asc()).all()

        # Release the read snapshot before dispatching
        self.db.rollback()
        return [row.id for row in rows]

    def _remind(self, booking_id: str) -> bool:
        """
        Send one reminder and mark it sent. Returns True when the flag was set.

        Raises NotificationFailure when delivery fails; the flag stays false so
        the next sweep retries. No transaction is open while the sender runs,
        so a slow mail transport never holds up a cancel on the same row; the
        conditional flag write below settles any overlap with another sweep.
        """
        booking = self.db.query(Booking).filter(
            Booking.id == booking_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.reminder_sent == False,  # noqa: E712
        ).first()
        if booking is None:
            # Cancelled or already reminded since the window query
            self.db.rollback()
            return False

        recipient = booking.owner_email
        recipient_name = booking.owner_name
        details = ReminderDetails(
            room_name=booking.room.name if booking.room else booking.room_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
        )
        self.db.rollback()

        if not recipient:
            logger.warning(f"No email on file for owner of booking {booking_id}, skipping reminder")
            return False

        dispatch_with_timeout(
            self.notifier.send,
            recipient,
            recipient_name,
            details,
            timeout=self.settings.notification_timeout_seconds,
        )

        marked = self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == BookingStatus.CONFIRMED.value,
                Booking.reminder_sent == False,  # noqa: E712
            )
            .values(reminder_sent=True, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        ).rowcount
        commit_or_raise(self.db, "reminder flag")

        if marked:
            logger.reminder_dispatched(booking_id, recipient)
        return bool(marked)

    def send_due_reminders(self) -> Tuple[int, List[str], int]:
        """
        Remind owners of CONFIRMED bookings starting inside the reminder window.

        Each booking is handled on its own; one failure never blocks the rest.

        Returns:
            Tuple of (sent_count, list_of_booking_ids, failure_count)
        """
        if self.notifier is None:
            logger.debug("No notification sender configured, skipping reminders")
            return 0, [], 0

        sent_ids = []
        failures = 0
        for booking_id in self._due_reminder_ids():
            try:
                if self._remind(booking_id):
                    sent_ids.append(booking_id)
            except NotificationFailure as e:
                failures += 1
                logger.warning(f"Reminder for booking {booking_id} not delivered: {e.message}")
            except Exception:
                failures += 1
                self.db.rollback()
                logger.exception(f"Error sending reminder for booking {booking_id}")

        if sent_ids:
            logger.info(f"Sent {len(sent_ids)} booking reminders")

        return len(sent_ids), sent_ids, failures

    def run_sweep(self) -> SweepResult:
        """
        Run both sweeps. Never raises; failures land in the result and the log.
        """
        result = SweepResult()

        try:
            result.completed_count, result.completed_ids = self.complete_elapsed_bookings()
        except Exception as e:
            self.db.rollback()
            logger.exception("Completion sweep failed")
            result.errors.append(f"completion: {e}")

        try:
            result.reminders_sent, result.reminder_ids, result.reminder_failures = self.send_due_reminders()
        except Exception as e:
            self.db.rollback()
            logger.exception("Reminder sweep failed")
            result.errors.append(f"reminders: {e}")

        return result
