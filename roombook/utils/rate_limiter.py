"""
Rate Limiter Configuration

In-memory storage by default. Set RATE_LIMIT_STORAGE_URI (e.g. redis://...)
when several API instances must share counters.
"""

import logging

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind a reverse proxy"""
    # Check X-Forwarded-For header (set by proxies)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    # Check X-Real-IP header
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fallback to direct connection
    return get_remote_address(request)


def create_limiter() -> Limiter:
    """Create a rate limiter on the configured storage backend"""
    logger.info(f"Rate limiter storage: {settings.rate_limit_storage_uri.split('://')[0]}")
    return Limiter(
        key_func=get_real_client_ip,
        storage_uri=settings.rate_limit_storage_uri,
        default_limits=["100/minute"],
        enabled=settings.rate_limit_enabled,
    )


# Global rate limiter instance
limiter = create_limiter()


# ================================
# RATE LIMIT CONFIGURATIONS
# ================================

RATE_LIMITS = {
    # Writes - moderate limits
    "booking_create": "30/minute",
    "booking_cancel": "20/minute",

    # Read Operations - relaxed limits
    "booking_list": "100/minute",
    "booking_get": "200/minute",
    "conflict_check": "120/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
