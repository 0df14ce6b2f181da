"""Handover router - washer PIN verification"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import require_role
from ...config import PIN_VERIFY_RATE_LIMIT, PIN_VERIFY_RATE_WINDOW_SECONDS
from ...database import get_db
from ...models import Role, User
from ...rate_limiter import create_rate_limiter
from ...schemas import ActionResult
from .schemas import PinVerifyRequest
from .service import HandoverService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/washer/bookings", tags=["Handover"])


def _booking_key(request: Request) -> str:
    return str(request.path_params.get("booking_id", "unknown"))


# Guessing a 4-digit PIN must not be practical: attempts are counted per booking
pin_attempt_limiter = create_rate_limiter(
    limit=PIN_VERIFY_RATE_LIMIT,
    window_seconds=PIN_VERIFY_RATE_WINDOW_SECONDS,
    key_prefix="pin_verify",
    key_builder=_booking_key,
)


def get_handover_service(db: Session = Depends(get_db)) -> HandoverService:
    """Dependency injection for HandoverService"""
    return HandoverService(db)


@router.post("/{booking_id}/verify-pin", response_model=ActionResult)
async def verify_pin(
    booking_id: int,
    data: PinVerifyRequest,
    current_user: User = Depends(require_role(Role.WASHER)),
    _: None = Depends(pin_attempt_limiter),
    service: HandoverService = Depends(get_handover_service),
):
    """Redeem the collection or delivery PIN the customer handed over"""
    result = service.verify_pin(booking_id, current_user.id, data.kind, data.pin)
    return result.raise_for_failure()
