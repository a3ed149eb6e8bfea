import uuid
import enum
from sqlalchemy import Column, String, Text, ForeignKey, Index, Boolean, Integer, CheckConstraint
from sqlalchemy.orm import relationship

from ..database import Base, UTCDateTime, utcnow


class BookingStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


# Statuses that still occupy their slot on the room timeline
BLOCKING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    room_id = Column(String(36), ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)

    # Owner snapshot, frozen at admission time
    owner_id = Column(String(64), nullable=False, index=True)
    owner_name = Column(String(200), nullable=False)
    owner_email = Column(String(255), nullable=True)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)
    purpose = Column(Text, nullable=True)

    reminder_sent = Column(Boolean, nullable=False, default=False)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_by_id = Column(String(64), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    room = relationship("Room", back_populates="bookings")
    attendees = relationship(
        "BookingAttendee",
        back_populates="booking",
        order_by="BookingAttendee.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_booking_interval"),
        Index("ix_booking_room_window", "room_id", "status", "start_time", "end_time"),
        Index("ix_booking_status_start", "status", "start_time"),
    )

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED.value

    def __repr__(self):
        return f"<Booking {self.id} room={self.room_id} {self.start_time} - {self.end_time} {self.status}>"


class BookingAttendee(Base):
    __tablename__ = "booking_attendees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(200), nullable=False)
    student_id = Column(String(64), nullable=True)
    is_companion = Column(Boolean, nullable=False, default=True)

    booking = relationship("Booking", back_populates="attendees")

    def __repr__(self):
        return f"<BookingAttendee {self.name}>"
