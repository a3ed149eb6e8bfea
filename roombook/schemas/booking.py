from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from datetime import datetime
import re

from ..config import settings
from ..models.booking import BookingStatus


def _strip_markup(v):
    """Remove script tags and inline event handlers from free text"""
    if v is None or not isinstance(v, str):
        return v
    v = re.sub(r'<script[^>]*>.*?</script>', '', v, flags=re.IGNORECASE | re.DOTALL)
    v = re.sub(r'on\w+\s*=', '', v, flags=re.IGNORECASE)
    return v.strip()


def _require_aware(v: datetime) -> datetime:
    if v.tzinfo is None or v.utcoffset() is None:
        raise ValueError("timestamp must include a timezone offset")
    return v


class AttendeeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    student_id: Optional[str] = Field(None, max_length=64)
    is_companion: bool = True

    @field_validator('name', mode='before')
    @classmethod
    def sanitize_name(cls, v):
        return _strip_markup(v)


class AttendeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    student_id: Optional[str] = None
    is_companion: bool = True


class BookingCreate(BaseModel):
    """Admission request. Interval policy is enforced by admission control, not here."""
    room_id: str = Field(..., min_length=1, max_length=36)
    start_time: datetime
    end_time: datetime
    purpose: Optional[str] = Field(None, max_length=2000)
    attendees: List[AttendeeIn] = Field(default_factory=list)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timezone_aware(cls, v: datetime) -> datetime:
        return _require_aware(v)

    @field_validator('purpose', mode='before')
    @classmethod
    def sanitize_purpose(cls, v):
        return _strip_markup(v)

    @field_validator('attendees')
    @classmethod
    def validate_attendee_count(cls, v: List[AttendeeIn]) -> List[AttendeeIn]:
        if len(v) > settings.max_attendees:
            raise ValueError(f"at most {settings.max_attendees} attendees are allowed")
        return v


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator('reason', mode='before')
    @classmethod
    def sanitize_reason(cls, v):
        return _strip_markup(v) or None


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    room_id: str
    owner_id: str
    owner_name: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    purpose: Optional[str] = None
    attendees: List[AttendeeResponse] = Field(default_factory=list)
    reminder_sent: bool = False
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConflictCheckRequest(BaseModel):
    room_id: str = Field(..., min_length=1, max_length=36)
    start_time: datetime
    end_time: datetime
    exclude_booking_id: Optional[str] = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timezone_aware(cls, v: datetime) -> datetime:
        return _require_aware(v)


class ConflictItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    start_time: datetime
    end_time: datetime
    owner_name: str


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicts: List[ConflictItem] = Field(default_factory=list)
