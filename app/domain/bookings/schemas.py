"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ...models import Booking
from ..pricing.schemas import BookingSelection


class BookingCreate(BookingSelection):
    """A priced selection plus the details the washer needs"""

    specialInstructions: Optional[str] = Field(None, max_length=2000)
    accessNotes: Optional[str] = Field(None, max_length=2000)


class CancelBookingRequest(BaseModel):
    confirmNoRefund: bool = False


class BookingResponse(BaseModel):
    id: int
    status: str
    collectionDate: datetime
    collectionTimeSlot: str
    deliveryMethod: str
    servicesConfig: dict
    totalPrice: float
    specialInstructions: Optional[str] = None
    accessNotes: Optional[str] = None
    washerId: Optional[int] = None
    # Only the customer sees the PINs; the washer has to be handed them
    collectionPin: Optional[str] = None
    deliveryPin: Optional[str] = None
    collectionVerifiedAt: Optional[datetime] = None
    deliveryVerifiedAt: Optional[datetime] = None
    paymentLink: Optional[str] = None
    paidAt: Optional[datetime] = None
    cancelledAt: Optional[datetime] = None
    cancelledBy: Optional[str] = None
    refundAmount: Optional[float] = None
    created_at: Optional[datetime] = None


def booking_to_response(booking: Booking, include_pins: bool = False) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        status=booking.status,
        collectionDate=booking.collection_date,
        collectionTimeSlot=booking.collection_time_slot,
        deliveryMethod=booking.delivery_method,
        servicesConfig=booking.services_config or {},
        totalPrice=float(booking.total_price),
        specialInstructions=booking.special_instructions,
        accessNotes=booking.access_notes,
        washerId=booking.washer_id,
        collectionPin=booking.collection_pin if include_pins else None,
        deliveryPin=booking.delivery_pin if include_pins else None,
        collectionVerifiedAt=booking.collection_verified_at,
        deliveryVerifiedAt=booking.delivery_verified_at,
        paymentLink=booking.payment_link,
        paidAt=booking.paid_at,
        cancelledAt=booking.cancelled_at,
        cancelledBy=booking.cancelled_by,
        refundAmount=float(booking.refund_amount) if booking.refund_amount is not None else None,
        created_at=booking.created_at,
    )
