"""Handover repository - conditional writes for PIN verification"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Booking, BookingStatus


class HandoverRepository:
    """Each verification is a single UPDATE guarded by its preconditions"""

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def mark_collection_verified(db: Session, booking_id: int, washer_id: int, now: datetime) -> int:
        """Returns 1 for the caller that won, 0 if already verified or no longer eligible"""
        return (
            db.query(Booking)
            .filter(
                Booking.id == booking_id,
                Booking.washer_id == washer_id,
                Booking.status == BookingStatus.WASHER_ASSIGNED.value,
                Booking.collection_verified_at.is_(None),
            )
            .update(
                {
                    Booking.collection_verified_at: now,
                    Booking.status: BookingStatus.IN_PROGRESS.value,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def mark_delivery_verified(db: Session, booking_id: int, washer_id: int, now: datetime) -> int:
        return (
            db.query(Booking)
            .filter(
                Booking.id == booking_id,
                Booking.washer_id == washer_id,
                Booking.status == BookingStatus.IN_PROGRESS.value,
                Booking.collection_verified_at.isnot(None),
                Booking.delivery_verified_at.is_(None),
            )
            .update(
                {
                    Booking.delivery_verified_at: now,
                    Booking.status: BookingStatus.COMPLETED.value,
                },
                synchronize_session=False,
            )
        )
