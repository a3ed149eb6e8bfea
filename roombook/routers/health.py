"""
Health Check Endpoints

- /health - Simple status, no authentication
- /health/live - Liveness check (is process running)
- /health/ready - Readiness check (database reachable)
- /health/scheduler - Reconciliation scheduler status and last sweep
- /health/detailed - Component checks (admin only)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import text
from datetime import datetime, timezone
import time

from ..database import get_db
from ..config import settings
from ..schemas.actor import Actor
from ..services.booking_scheduler import get_scheduler_status
from ..utils.dependencies import require_admin

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": db.bind.dialect.name
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


def get_scheduler_health() -> dict:
    if not settings.scheduler_enabled:
        return {"status": "disabled"}
    return {"status": "up" if get_scheduler_status()["running"] else "down"}


def get_notification_health() -> dict:
    return {"status": "graph" if settings.has_graph_mail_config else "log_only"}


# ================================
# ENDPOINTS
# ================================

@router.get("/live")
@router.get("/live/")
async def liveness_check():
    """
    Liveness check - is the process running?
    Used by load balancers and orchestrators.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
@router.get("/ready/")
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness check - is the service ready to accept traffic?
    Checks database connectivity.
    """
    db_health = get_db_health(db)

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    # Service not ready - return 503
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "not_ready",
            "reason": "database_unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


@router.get("/scheduler")
@router.get("/scheduler/")
async def scheduler_status():
    """Reconciliation scheduler: running flag, next run, last sweep result"""
    return {
        "enabled": settings.scheduler_enabled,
        **get_scheduler_status()
    }


@router.get("/detailed")
@router.get("/detailed/")
def detailed_health_check(
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin)
):
    """
    Detailed health check with all component statuses.
    Admin-only endpoint.
    """
    db_health = get_db_health(db)

    checks = {
        "database": db_health,
        "scheduler": get_scheduler_health(),
        "notifications": get_notification_health()
    }

    critical_down = db_health["status"] == "down"
    any_degraded = checks["scheduler"]["status"] == "down"

    if critical_down:
        overall_status = "unhealthy"
    elif any_degraded:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "environment": settings.environment,
        "checks": checks,
        "config": {
            "booking_timezone": settings.booking_timezone,
            "reconcile_interval_seconds": settings.reconcile_interval_seconds,
            "rate_limit_enabled": settings.rate_limit_enabled
        }
    }


# ================================
# SIMPLE HEALTH
# ================================

@router.get("")
@router.get("/")
async def simple_health_check():
    """
    Simple health check.
    Returns basic status without authentication.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION
    }
