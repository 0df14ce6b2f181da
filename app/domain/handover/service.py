"""
Handover verification service.

A booking moves through the handover states by PIN redemption:

    washer_assigned --collection PIN--> in_progress --delivery PIN--> completed

Each PIN is single use. The write that records a verification is a
conditional UPDATE on ``*_verified_at IS NULL``, so of two concurrent
redemptions exactly one succeeds. Delivery completion credits the washer's
earning in the same transaction.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import (
    AlreadyProcessedError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from ...models import Booking, BookingStatus, utcnow
from ...schemas import ActionResult
from ..ledger.service import LedgerService
from .pins import is_valid_pin_format, pins_match
from .repository import HandoverRepository

logger = logging.getLogger(__name__)

COLLECTION = "collection"
DELIVERY = "delivery"

# Statuses in which a PIN may still be redeemed
ACTIVE_STATUSES = {BookingStatus.WASHER_ASSIGNED.value, BookingStatus.IN_PROGRESS.value}


class HandoverService:
    """Service layer for collection and delivery PIN verification"""

    def __init__(self, db: Session, ledger: Optional[LedgerService] = None):
        self.db = db
        self.repo = HandoverRepository()
        self.ledger = ledger or LedgerService(db)

    def verify_pin(self, booking_id: int, washer_id: int, kind: str, submitted_pin: str) -> ActionResult:
        try:
            booking = self._verify(booking_id, washer_id, kind, submitted_pin)
        except ServiceError as e:
            self.db.rollback()
            logger.info(f"PIN verification failed for booking {booking_id} ({kind}): {e.code}")
            return ActionResult.from_error(e)
        except Exception:
            self.db.rollback()
            raise

        verified_at = booking.collection_verified_at if kind == COLLECTION else booking.delivery_verified_at
        logger.info(f"{kind.capitalize()} PIN verified for booking {booking_id} by washer {washer_id}")
        return ActionResult.ok(
            f"{kind.capitalize()} verified",
            data={
                "booking_id": booking.id,
                "kind": kind,
                "status": booking.status,
                "verified_at": verified_at.isoformat() if verified_at else None,
            },
        )

    def _verify(self, booking_id: int, washer_id: int, kind: str, submitted_pin: str) -> Booking:
        if kind not in (COLLECTION, DELIVERY):
            raise ValidationError("kind must be 'collection' or 'delivery'", code="invalid_kind")

        booking = self.repo.get_booking(self.db, booking_id)
        # Other washers get the same answer as a missing booking
        if not booking or booking.washer_id != washer_id:
            raise NotFoundError("Booking not found", code="booking_not_found")

        if kind == COLLECTION:
            if booking.collection_verified_at is not None:
                raise AlreadyProcessedError("Collection already verified", code="already_verified")
        else:
            if booking.delivery_verified_at is not None:
                raise AlreadyProcessedError("Delivery already verified", code="already_verified")

        if booking.status not in ACTIVE_STATUSES:
            raise InvalidStateError(
                f"Booking is {booking.status}, handover is not possible",
                code="booking_not_active",
            )

        if kind == DELIVERY and booking.collection_verified_at is None:
            raise InvalidStateError(
                "Collection must be verified before delivery", code="collection_not_verified"
            )

        stored_pin = booking.collection_pin if kind == COLLECTION else booking.delivery_pin
        if not is_valid_pin_format(submitted_pin) or not pins_match(submitted_pin, stored_pin):
            raise ValidationError("Incorrect PIN", code="invalid_pin")

        now = utcnow()
        if kind == COLLECTION:
            updated = self.repo.mark_collection_verified(self.db, booking.id, washer_id, now)
        else:
            updated = self.repo.mark_delivery_verified(self.db, booking.id, washer_id, now)

        if updated != 1:
            # Lost the race to a concurrent redemption
            raise AlreadyProcessedError(f"{kind.capitalize()} already verified", code="already_verified")

        self.db.refresh(booking)
        if kind == DELIVERY:
            self.ledger.credit_earning_for_booking(booking)

        self.db.commit()
        self.db.refresh(booking)
        return booking
