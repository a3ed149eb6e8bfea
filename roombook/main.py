from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import uuid

from .config import settings
from .database import create_tables
from .exceptions import BookingError
from .services.booking_scheduler import start_booking_scheduler, stop_booking_scheduler
from .utils.dependencies import get_notifier
from .utils.logging_config import clear_request_context, set_request_context, setup_logging
from .utils.rate_limiter import limiter

from .routers import bookings, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    logger.info("Starting roombook...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Booking timezone: {settings.booking_timezone}")
    logger.info(f"CORS Origins: {settings.cors_origins}")

    create_tables()
    logger.info("Database ready")

    # ==========================================
    # START RECONCILIATION SCHEDULER
    # ==========================================
    scheduler_started = False
    if settings.scheduler_enabled:
        scheduler_started = start_booking_scheduler(notifier=get_notifier())
    else:
        logger.warning("Reconciliation scheduler disabled, run worker.py instead")

    yield

    # Shutdown
    logger.info("Shutting down roombook...")
    if scheduler_started:
        stop_booking_scheduler()


# Create FastAPI app
app = FastAPI(
    title="Roombook API",
    description="Room reservation admission and lifecycle service",
    version="1.0.0",
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


# Add other middleware AFTER CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


# Domain errors -> HTTP
@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": "rate_limited", "detail": "Too many requests, try again later"}
    )


# Include routers
app.include_router(bookings.router)
app.include_router(health.router)


@app.get("")
@app.get("/")
async def root():
    return {
        "message": "Roombook API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running"
    }
