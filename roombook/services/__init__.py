# Services package
from .overlap_index import Interval, OverlapSnapshot, intervals_overlap, has_conflict, find_conflicts
from .admission import AdmissionControl, BookingPolicy, check_policy
from .lifecycle import can_transition, ensure_transition, cancel_booking
from .booking_queries import list_active, list_all, get_booking
from .notification_service import (
    NotificationSender, ReminderDetails, CancellationDetails,
    GraphMailSender, LoggingNotificationSender, get_notification_sender
)
from .reconciliation import BookingReconciler, SweepResult
from .range_selection import SelectionGrid, RangeSelection, SelectionState, CandidatePreview

__all__ = [
    "Interval", "OverlapSnapshot", "intervals_overlap", "has_conflict", "find_conflicts",
    "AdmissionControl", "BookingPolicy", "check_policy",
    "can_transition", "ensure_transition", "cancel_booking",
    "list_active", "list_all", "get_booking",
    "NotificationSender", "ReminderDetails", "CancellationDetails",
    "GraphMailSender", "LoggingNotificationSender", "get_notification_sender",
    "BookingReconciler", "SweepResult",
    "SelectionGrid", "RangeSelection", "SelectionState", "CandidatePreview",
]
