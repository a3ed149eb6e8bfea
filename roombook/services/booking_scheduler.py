"""
Booking Scheduler Service

Runs the reconciliation sweep (completion + reminders) on a fixed interval,
every RECONCILE_INTERVAL_SECONDS (5 minutes by default).

Uses APScheduler inside the API process. For deployments running more than
one API replica, disable it (SCHEDULER_ENABLED=false) and run worker.py once.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..clock import Clock, system_clock
from ..config import settings
from ..database import SessionLocal
from .notification_service import NotificationSender, get_notification_sender
from .reconciliation import BookingReconciler

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "booking_reconcile"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_notifier: Optional[NotificationSender] = None
_clock: Clock = system_clock
_last_sweep_time: Optional[datetime] = None
_last_sweep_result: Optional[Dict] = None


def run_reconciliation(
    session_factory=SessionLocal,
    notifier: Optional[NotificationSender] = None,
    clock: Optional[Clock] = None
) -> Dict:
    """
    Open a session, run one sweep, record the outcome and clean up.

    Returns:
        Dict form of the SweepResult
    """
    global _last_sweep_time, _last_sweep_result

    db = session_factory()
    try:
        reconciler = BookingReconciler(db, clock=clock or _clock, notifier=notifier or _notifier)
        result = reconciler.run_sweep().to_dict()
    finally:
        db.close()

    _last_sweep_time = datetime.now(timezone.utc)
    _last_sweep_result = result

    logger.info(
        f"Reconciliation sweep completed: {result['completed_count']} completed, "
        f"{result['reminders_sent']} reminders sent, {result['reminder_failures']} reminder failures"
    )
    return result


async def run_booking_scheduler_job():
    """
    Async job function called by the scheduler.

    The sweep is blocking (database work plus mail dispatch), so it runs in a
    worker thread and the API keeps serving requests meanwhile. run_sweep
    never raises; the guard here covers session setup.
    """
    logger.debug("Running scheduled reconciliation sweep...")
    try:
        await asyncio.to_thread(run_reconciliation)
    except Exception as e:
        logger.error(f"Scheduled reconciliation job failed: {e}")


def start_booking_scheduler(
    notifier: Optional[NotificationSender] = None,
    clock: Clock = system_clock,
    interval_seconds: Optional[int] = None
) -> bool:
    """
    Start the reconciliation scheduler.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler, _notifier, _clock

    if _scheduler is not None and _scheduler.running:
        logger.warning("Booking scheduler is already running")
        return True

    interval = interval_seconds or settings.reconcile_interval_seconds

    try:
        _notifier = notifier or get_notification_sender()
        _clock = clock
        _scheduler = AsyncIOScheduler(timezone="UTC")

        _scheduler.add_job(
            run_booking_scheduler_job,
            IntervalTrigger(seconds=interval),
            id=SWEEP_JOB_ID,
            name=f"Booking reconciliation every {interval}s",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        _scheduler.start()

        logger.info(f"Booking scheduler started (interval {interval}s)")
        return True

    except Exception as e:
        logger.error(f"Failed to start booking scheduler: {e}")
        return False


def stop_booking_scheduler() -> bool:
    """
    Stop the booking scheduler gracefully.

    Returns:
        True if scheduler stopped successfully, False otherwise
    """
    global _scheduler

    if _scheduler is None:
        logger.warning("Booking scheduler is not running")
        return True

    try:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Booking scheduler stopped")
        return True
    except Exception as e:
        logger.error(f"Failed to stop booking scheduler: {e}")
        return False


def get_scheduler_status() -> Dict:
    """
    Get the current status of the booking scheduler.

    Returns:
        Dict with scheduler status information
    """
    status = {
        "running": False,
        "interval_seconds": settings.reconcile_interval_seconds,
        "next_run": None,
        "last_sweep": None,
        "last_sweep_result": None,
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        job = _scheduler.get_job(SWEEP_JOB_ID)
        if job is not None and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()

    if _last_sweep_time:
        status["last_sweep"] = _last_sweep_time.isoformat()

    if _last_sweep_result:
        status["last_sweep_result"] = _last_sweep_result

    return status


def trigger_manual_sweep() -> Dict:
    """
    Run a reconciliation sweep immediately.

    Returns:
        Dict with sweep result
    """
    return run_reconciliation()
