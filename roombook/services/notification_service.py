"""
Notification Sender

Outbound delivery of booking reminders and cancellation notices.

- GraphMailSender: Microsoft Graph sendMail with an app-only token
  (client credentials), cached until shortly before expiry
- LoggingNotificationSender: development fallback when Graph is not configured

Senders return True on delivery and False on failure. Callers go through
dispatch_with_timeout so a slow transport can never stall a sweep.
"""

import html
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

import httpx

from ..config import Settings, settings as default_settings
from ..exceptions import NotificationFailure

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
LOGIN_BASE_URL = "https://login.microsoftonline.com"
TOKEN_EXPIRY_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class ReminderDetails:
    room_name: str
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class CancellationDetails:
    room_name: str
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None


class NotificationSender(Protocol):
    def send(self, recipient_address: str, recipient_name: str, details: ReminderDetails) -> bool:
        ...

    def send_cancellation(self, recipient_address: str, recipient_name: str, details: CancellationDetails) -> bool:
        ...


# ================================
# DISPATCH
# ================================

_dispatch_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notify")


def dispatch_with_timeout(send: Callable[..., bool], *args, timeout: float) -> None:
    """
    Run a sender call with a hard deadline.

    Raises NotificationFailure when the sender reports failure, raises, or
    does not answer within `timeout` seconds. A timed-out call may still
    complete in the background; the caller treats it as undelivered.
    """
    future = _dispatch_pool.submit(send, *args)
    try:
        delivered = future.result(timeout=timeout)
    except FutureTimeout as e:
        raise NotificationFailure(f"Notification timed out after {timeout}s") from e
    except Exception as e:
        raise NotificationFailure(f"Notification sender raised: {e}") from e

    if not delivered:
        raise NotificationFailure("Notification sender reported failure")


# ================================
# TEMPLATES
# ================================

def _format_day(value: datetime, s: Settings) -> str:
    return value.astimezone(s.tz).strftime("%A, %B %d")


def _format_clock(value: datetime, s: Settings) -> str:
    return value.astimezone(s.tz).strftime("%H:%M")


def _wrap(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1>{body}</body></html>"
    )


def render_reminder(recipient_name: str, details: ReminderDetails, s: Settings) -> str:
    body = (
        f"<p>Dear <strong>{html.escape(recipient_name)}</strong>,</p>"
        "<p>Your room reservation is scheduled to begin soon.</p>"
        "<ul>"
        f"<li>Room: {html.escape(details.room_name)}</li>"
        f"<li>Date: {_format_day(details.start_time, s)}</li>"
        f"<li>Time: {_format_clock(details.start_time, s)} - {_format_clock(details.end_time, s)}</li>"
        "</ul>"
        "<p>If you no longer need the room, please cancel your booking so others can use it.</p>"
        f"<p><a href=\"{html.escape(s.client_url)}/my-bookings\">View my bookings</a></p>"
    )
    return _wrap("Booking Reminder", body)


def render_cancellation(recipient_name: str, details: CancellationDetails, s: Settings) -> str:
    reason = f"<li>Reason: {html.escape(details.reason)}</li>" if details.reason else ""
    body = (
        f"<p>Dear <strong>{html.escape(recipient_name)}</strong>,</p>"
        "<p>Your room reservation has been cancelled by an administrator.</p>"
        "<ul>"
        f"<li>Room: {html.escape(details.room_name)}</li>"
        f"<li>Date: {_format_day(details.start_time, s)}</li>"
        f"<li>Time: {_format_clock(details.start_time, s)} - {_format_clock(details.end_time, s)}</li>"
        f"{reason}"
        "</ul>"
        "<p>If you believe this was a mistake, please contact the administration.</p>"
    )
    return _wrap("Booking Cancelled", body)


# ================================
# SENDERS
# ================================

class LoggingNotificationSender:
    """Writes notifications to the log instead of delivering them"""

    def __init__(self, s: Settings = default_settings):
        self.settings = s

    def send(self, recipient_address: str, recipient_name: str, details: ReminderDetails) -> bool:
        logger.info(
            f"[notification] reminder to {recipient_address}: {details.room_name} "
            f"{details.start_time.isoformat()} - {details.end_time.isoformat()}"
        )
        return True

    def send_cancellation(self, recipient_address: str, recipient_name: str, details: CancellationDetails) -> bool:
        logger.info(
            f"[notification] cancellation to {recipient_address}: {details.room_name} "
            f"{details.start_time.isoformat()} reason={details.reason or 'none'}"
        )
        return True


class GraphMailSender:
    """
    Sends mail as the configured mailbox through Microsoft Graph.

    The Azure app needs the Mail.Send application permission.
    """

    def __init__(self, s: Settings = default_settings, client: Optional[httpx.Client] = None):
        self.settings = s
        self.client = client or httpx.Client(timeout=s.notification_timeout_seconds)
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = threading.Lock()

    def _get_access_token(self) -> Optional[str]:
        with self._token_lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            try:
                response = self.client.post(
                    f"{LOGIN_BASE_URL}/{self.settings.azure_tenant_id}/oauth2/v2.0/token",
                    data={
                        "client_id": self.settings.azure_client_id,
                        "client_secret": self.settings.azure_client_secret,
                        "scope": "https://graph.microsoft.com/.default",
                        "grant_type": "client_credentials",
                    },
                )
            except httpx.HTTPError as e:
                logger.error(f"Error fetching Graph token: {e}")
                return None

            if response.status_code != 200:
                logger.error(f"Failed to get Graph token: HTTP {response.status_code}")
                return None

            data = response.json()
            self._token = data["access_token"]
            self._token_expires_at = time.time() + int(data.get("expires_in", 3600)) - TOKEN_EXPIRY_BUFFER_SECONDS
            return self._token

    def _send_mail(self, to: str, subject: str, content: str) -> bool:
        token = self._get_access_token()
        if not token:
            logger.warning("Could not authenticate with Microsoft Graph, notification not sent")
            return False

        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": content},
                "toRecipients": [{"emailAddress": {"address": to}}],
            },
            "saveToSentItems": "true",
        }

        try:
            response = self.client.post(
                f"{GRAPH_BASE_URL}/users/{self.settings.mail_sender}/sendMail",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Error sending Graph mail to {to}: {e}")
            return False

        if response.status_code >= 400:
            logger.error(f"Graph sendMail to {to} failed: HTTP {response.status_code}")
            if response.status_code == 401:
                # Token revoked or rotated; fetch a fresh one next time
                self._token = None
            return False

        logger.info(f"Notification sent via Graph to {to}")
        return True

    def send(self, recipient_address: str, recipient_name: str, details: ReminderDetails) -> bool:
        return self._send_mail(
            recipient_address,
            "Reminder: Your Booking Starts Soon",
            render_reminder(recipient_name, details, self.settings),
        )

    def send_cancellation(self, recipient_address: str, recipient_name: str, details: CancellationDetails) -> bool:
        return self._send_mail(
            recipient_address,
            "Booking Cancelled",
            render_cancellation(recipient_name, details, self.settings),
        )


def get_notification_sender(s: Settings = default_settings) -> NotificationSender:
    """Graph sender when fully configured, logging sender otherwise"""
    if s.has_graph_mail_config:
        return GraphMailSender(s)
    logger.warning("Microsoft Graph mail is not configured, notifications will only be logged")
    return LoggingNotificationSender(s)
