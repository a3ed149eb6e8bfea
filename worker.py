#!/usr/bin/env python
"""
Reconciliation Worker

Standalone process that runs the booking sweep on a fixed interval:
1. Completes CONFIRMED bookings whose end has passed
2. Sends one reminder per booking starting soon

Use this instead of the in-process scheduler when running several API
replicas (set SCHEDULER_ENABLED=false on the API).

Run with:
    python worker.py

Or with environment:
    RECONCILE_INTERVAL_SECONDS=60 python worker.py
"""

import sys
import time
import logging
import signal
import threading

from roombook.config import settings
from roombook.database import SessionLocal
from roombook.services.notification_service import get_notification_sender
from roombook.services.reconciliation import BookingReconciler
from roombook.utils.logging_config import setup_logging

setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)
logger = logging.getLogger("worker")

POLL_INTERVAL = settings.reconcile_interval_seconds
_stop = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logger.info("Received shutdown signal, finishing current sweep...")
    _stop.set()


def run_worker(stop: threading.Event = _stop, interval: int = POLL_INTERVAL):
    """Main worker loop"""
    logger.info("=" * 50)
    logger.info("Starting Reconciliation Worker")
    logger.info(f"Poll interval: {interval}s")
    logger.info("=" * 50)

    notifier = get_notification_sender()
    cycle = 0

    while not stop.is_set():
        cycle += 1
        start_time = time.time()

        db = SessionLocal()
        try:
            result = BookingReconciler(db, notifier=notifier).run_sweep()

            # Log results (only if something happened)
            if result.completed_count + result.reminders_sent + result.reminder_failures > 0 or result.errors:
                duration = time.time() - start_time
                logger.info(
                    f"Cycle {cycle}: "
                    f"completed {result.completed_count} | "
                    f"reminders {result.reminders_sent} sent / {result.reminder_failures} failed | "
                    f"{duration:.2f}s"
                )
        except Exception as e:
            logger.error(f"Critical error in cycle {cycle}: {e}")
        finally:
            db.close()

        # Sleep until next poll, waking early on shutdown
        stop.wait(interval)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_worker()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
