from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import timezone
import logging

from ..clock import Clock
from ..database import get_db
from ..schemas.actor import Actor
from ..schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingResponse,
    ConflictCheckRequest,
    ConflictCheckResponse,
    ConflictItem,
)
from ..services.admission import AdmissionControl
from ..services.booking_queries import get_booking, list_active, list_all
from ..services.lifecycle import cancel_booking
from ..services.notification_service import NotificationSender
from ..services.overlap_index import find_conflicts
from ..utils.dependencies import get_clock, get_current_actor, get_notifier, require_admin
from ..utils.rate_limiter import limiter, get_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.get("", response_model=List[BookingResponse])
@router.get("/", response_model=List[BookingResponse])
@limiter.limit(get_rate_limit("booking_list"))
def get_active_bookings(
    request: Request,
    room_id: Optional[str] = Query(None, description="Only bookings on this room"),
    owner_id: Optional[str] = Query(None, description="Only bookings owned by this user"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Non-cancelled bookings, earliest first. Feeds the calendar view."""
    return list_active(db, room_id=room_id, owner_id=owner_id)


@router.get("/all", response_model=List[BookingResponse])
@router.get("/all/", response_model=List[BookingResponse])
@limiter.limit(get_rate_limit("booking_list"))
def get_all_bookings(
    request: Request,
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin)
):
    """Every booking in any status, newest first (administrators only)"""
    return list_all(db)


@router.post("/check-conflicts", response_model=ConflictCheckResponse)
@router.post("/check-conflicts/", response_model=ConflictCheckResponse)
@limiter.limit(get_rate_limit("conflict_check"))
def check_conflicts(
    request: Request,
    payload: ConflictCheckRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """
    Advisory overlap check for a proposed interval.

    The answer can be stale by the time a booking is submitted; admission
    re-checks under the room lock.
    """
    conflicts = find_conflicts(
        db,
        payload.room_id,
        payload.start_time.astimezone(timezone.utc),
        payload.end_time.astimezone(timezone.utc),
        exclude_booking_id=payload.exclude_booking_id,
    )
    return ConflictCheckResponse(
        has_conflict=bool(conflicts),
        conflicts=[ConflictItem.model_validate(b) for b in conflicts],
    )


@router.get("/{booking_id}", response_model=BookingResponse)
@router.get("/{booking_id}/", response_model=BookingResponse)
@limiter.limit(get_rate_limit("booking_get"))
def get_booking_by_id(
    request: Request,
    booking_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return get_booking(db, booking_id)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("booking_create"))
def create_booking(
    request: Request,
    booking_data: BookingCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock)
):
    """
    Request a room for [start_time, end_time).

    Rejections:
    - 422 lead_time_violation / duration_violation / outside_operating_hours
    - 409 slot_conflict
    - 404 unknown room
    """
    return AdmissionControl(db, clock=clock).admit(booking_data, actor)


@router.delete("/{booking_id}", response_model=BookingResponse)
@router.delete("/{booking_id}/", response_model=BookingResponse)
@limiter.limit(get_rate_limit("booking_cancel"))
def cancel_booking_by_id(
    request: Request,
    booking_id: str,
    payload: Optional[BookingCancel] = Body(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSender = Depends(get_notifier)
):
    """
    Cancel a booking. Owners cancel their own; administrators cancel any,
    in which case the owner is notified.
    """
    return cancel_booking(
        db,
        booking_id,
        requester_id=actor.id,
        requester_is_admin=actor.is_admin,
        reason=payload.reason if payload else None,
        notifier=notifier,
        clock=clock,
    )
