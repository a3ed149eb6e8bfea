"""
Structured Logging Configuration

One JSON object per line in production, plain text in development.
Every record carries the request and actor ids of the call that produced
it; booking events add `event`, `booking_id` and `room_id` as top-level keys
so a single booking can be followed through admission, reminders and
completion.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
actor_id_var: ContextVar[str] = ContextVar('actor_id', default='')

PROMOTED_FIELDS = ("event", "booking_id", "room_id")


class JSONFormatter(logging.Formatter):
    """Renders a record as a single JSON line"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, var in (("request_id", request_id_var), ("actor_id", actor_id_var)):
            value = var.get()
            if value:
                log_data[key] = value

        for key in PROMOTED_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
            log_data["location"] = f"{record.module}.{record.funcName}:{record.lineno}"

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter with one helper per booking event.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        event: Optional[str] = None,
        booking_id: Optional[str] = None,
        room_id: Optional[str] = None,
        **extra_data
    ):
        """Log with booking identifiers promoted and the rest under `data`."""
        extra: Dict[str, Any] = {"event": event, "booking_id": booking_id, "room_id": room_id}
        if extra_data:
            extra['extra_data'] = extra_data

        self.log(level, msg, extra=extra)

    def booking_admitted(self, booking_id: str, room_id: str, owner_id: str, start: datetime, end: datetime):
        self.log_with_context(
            logging.INFO,
            f"Booking admitted on room {room_id}: {start.isoformat()} - {end.isoformat()}",
            event="booking.admitted",
            booking_id=booking_id,
            room_id=room_id,
            owner_id=owner_id,
        )

    def booking_rejected(self, room_id: str, code: str, reason: str):
        self.log_with_context(
            logging.INFO,
            f"Booking rejected on room {room_id}: {code}",
            event="booking.rejected",
            room_id=room_id,
            code=code,
            reason=reason,
        )

    def booking_status_changed(self, booking_id: str, old_status: str, new_status: str, actor_id: Optional[str] = None):
        self.log_with_context(
            logging.INFO,
            f"Booking status changed: {old_status} -> {new_status}",
            event="booking.status_changed",
            booking_id=booking_id,
            old_status=old_status,
            new_status=new_status,
            changed_by=actor_id,
        )

    def reminder_dispatched(self, booking_id: str, recipient: str):
        self.log_with_context(
            logging.INFO,
            f"Reminder sent for booking {booking_id}",
            event="booking.reminder_sent",
            booking_id=booking_id,
            recipient=recipient,
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        include_uvicorn: Also route uvicorn loggers through our handler
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            logging.getLogger(logger_name).handlers = [handler]

    # Sweeps run every few minutes; keep library chatter out of the way
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str, actor_id: Optional[str] = None):
    request_id_var.set(request_id)
    if actor_id:
        actor_id_var.set(actor_id)


def clear_request_context():
    request_id_var.set('')
    actor_id_var.set('')
