"""
Booking error taxonomy.

Policy rejections (AdmissionError subclasses) are user-correctable and never
retried automatically. Request errors describe a bad target or actor.
Infrastructure errors are transient.
"""

from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for every error the booking core raises on purpose"""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.details:
            body["context"] = self.details
        return body


# ================================
# POLICY REJECTIONS (admission)
# ================================

class AdmissionError(BookingError):
    code = "admission_rejected"
    status_code = 422


class LeadTimeViolation(AdmissionError):
    code = "lead_time_violation"


class DurationViolation(AdmissionError):
    code = "duration_violation"


class OutsideOperatingHours(AdmissionError):
    code = "outside_operating_hours"


class SlotConflict(AdmissionError):
    code = "slot_conflict"
    status_code = 409


# ================================
# REQUEST ERRORS
# ================================

class NotFound(BookingError):
    code = "not_found"
    status_code = 404


class Forbidden(BookingError):
    code = "forbidden"
    status_code = 403


class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code = 409


# ================================
# INFRASTRUCTURE ERRORS (transient)
# ================================

class StoreUnavailable(BookingError):
    code = "store_unavailable"
    status_code = 503

    def __init__(self, message: str = "Booking store is unavailable", cause: Optional[BaseException] = None, **details: Any):
        super().__init__(message, **details)
        self.cause = cause


class NotificationFailure(BookingError):
    code = "notification_failure"
    status_code = 503
