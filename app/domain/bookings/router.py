"""Booking router - customer and washer booking endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...auth import require_role
from ...database import get_db
from ...models import Role, User
from ...schemas import ActionResult
from ..billing.dodo_service import DodoPaymentsService, get_payment_service
from .schemas import BookingCreate, BookingResponse, CancelBookingRequest, booking_to_response
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])
washer_router = APIRouter(prefix="/washer/bookings", tags=["Washer Bookings"])


def get_booking_service(
    db: Session = Depends(get_db),
    payments: DodoPaymentsService = Depends(get_payment_service),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, payments)


# ============================================================================
# CUSTOMER
# ============================================================================


@router.post("", response_model=ActionResult, status_code=201)
async def create_booking(
    data: BookingCreate,
    current_user: User = Depends(require_role(Role.USER)),
    service: BookingService = Depends(get_booking_service),
):
    """Create a booking and open a checkout session for it"""
    result = await service.create_booking(current_user, data)
    return result.raise_for_failure()


@router.post("/{booking_id}/checkout", response_model=ActionResult)
async def retry_checkout(
    booking_id: int,
    current_user: User = Depends(require_role(Role.USER)),
    service: BookingService = Depends(get_booking_service),
):
    """New checkout session for a booking whose payment never started"""
    result = await service.retry_checkout(current_user, booking_id)
    return result.raise_for_failure()


@router.get("", response_model=list[BookingResponse])
async def get_my_bookings(
    current_user: User = Depends(require_role(Role.USER)),
    service: BookingService = Depends(get_booking_service),
):
    return [booking_to_response(b, include_pins=True) for b in service.get_user_bookings(current_user)]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_my_booking(
    booking_id: int,
    current_user: User = Depends(require_role(Role.USER)),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.get_user_booking(current_user, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking_to_response(booking, include_pins=True)


@router.post("/{booking_id}/cancel", response_model=ActionResult)
async def cancel_booking(
    booking_id: int,
    data: CancelBookingRequest,
    current_user: User = Depends(require_role(Role.USER)),
    service: BookingService = Depends(get_booking_service),
):
    result = service.cancel_by_user(current_user, booking_id, data.confirmNoRefund)
    return result.raise_for_failure()


# ============================================================================
# WASHER
# ============================================================================


@washer_router.get("/available", response_model=list[BookingResponse])
async def get_available_bookings(
    current_user: User = Depends(require_role(Role.WASHER)),
    service: BookingService = Depends(get_booking_service),
):
    """Open bookings; access notes stay hidden until a washer accepts"""
    return [
        booking_to_response(b).model_copy(update={"accessNotes": None})
        for b in service.get_available_bookings()
    ]


@washer_router.get("", response_model=list[BookingResponse])
async def get_assigned_bookings(
    current_user: User = Depends(require_role(Role.WASHER)),
    service: BookingService = Depends(get_booking_service),
):
    return [booking_to_response(b) for b in service.get_washer_bookings(current_user)]


@washer_router.post("/{booking_id}/accept", response_model=ActionResult)
async def accept_booking(
    booking_id: int,
    current_user: User = Depends(require_role(Role.WASHER)),
    service: BookingService = Depends(get_booking_service),
):
    if current_user.flagged_for_review:
        raise HTTPException(status_code=403, detail="Your account is under review")
    result = service.accept_booking(current_user, booking_id)
    return result.raise_for_failure()


@washer_router.post("/{booking_id}/cancel", response_model=ActionResult)
async def washer_cancel_booking(
    booking_id: int,
    current_user: User = Depends(require_role(Role.WASHER)),
    service: BookingService = Depends(get_booking_service),
):
    result = service.cancel_by_washer(current_user, booking_id)
    return result.raise_for_failure()
