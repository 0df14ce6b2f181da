"""Booking orchestration"""

from .router import router, washer_router
from .service import BookingService

__all__ = ["router", "washer_router", "BookingService"]
