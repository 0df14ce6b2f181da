"""Booking repository - Database operations for bookings"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Booking, BookingStatus, WasherPenalty


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def create_booking(db: Session, booking_data: dict) -> Booking:
        booking = Booking(**booking_data)
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_user_booking(db: Session, booking_id: int, user_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id, Booking.user_id == user_id).first()

    @staticmethod
    def get_washer_booking(db: Session, booking_id: int, washer_id: int) -> Optional[Booking]:
        return (
            db.query(Booking).filter(Booking.id == booking_id, Booking.washer_id == washer_id).first()
        )

    @staticmethod
    def get_user_bookings(db: Session, user_id: int) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.user_id == user_id)
            .order_by(Booking.collection_date.desc(), Booking.id.desc())
            .all()
        )

    @staticmethod
    def get_washer_bookings(db: Session, washer_id: int) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.washer_id == washer_id)
            .order_by(Booking.collection_date.asc(), Booking.id.asc())
            .all()
        )

    @staticmethod
    def get_available_bookings(db: Session, now: datetime) -> list[Booking]:
        """Paid, unassigned bookings whose collection slot has not started"""
        return (
            db.query(Booking)
            .filter(
                Booking.status == BookingStatus.AWAITING_ASSIGNMENT.value,
                Booking.washer_id.is_(None),
                Booking.collection_date > now,
            )
            .order_by(Booking.collection_date.asc(), Booking.id.asc())
            .all()
        )

    @staticmethod
    def save_checkout(db: Session, booking: Booking, session_id: Optional[str], checkout_url: str) -> Booking:
        booking.payment_session_id = session_id
        booking.payment_link = checkout_url
        db.commit()
        db.refresh(booking)
        return booking

    @staticmethod
    def claim_booking(
        db: Session, booking_id: int, washer_id: int, collection_pin: str, delivery_pin: str
    ) -> int:
        """Assign the washer only if nobody else has; returns rows updated"""
        return (
            db.query(Booking)
            .filter(
                Booking.id == booking_id,
                Booking.status == BookingStatus.AWAITING_ASSIGNMENT.value,
                Booking.washer_id.is_(None),
            )
            .update(
                {
                    Booking.washer_id: washer_id,
                    Booking.status: BookingStatus.WASHER_ASSIGNED.value,
                    Booking.collection_pin: collection_pin,
                    Booking.delivery_pin: delivery_pin,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def mark_paid(db: Session, booking_id: int, payment_id: Optional[str], now: datetime) -> int:
        return (
            db.query(Booking)
            .filter(
                Booking.id == booking_id,
                Booking.status == BookingStatus.AWAITING_PAYMENT.value,
            )
            .update(
                {
                    Booking.status: BookingStatus.AWAITING_ASSIGNMENT.value,
                    Booking.payment_id: payment_id,
                    Booking.paid_at: now,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def cancel_booking(
        db: Session,
        booking_id: int,
        expected_status: str,
        cancelled_by: str,
        refund_amount: Decimal,
        now: datetime,
    ) -> int:
        """Cancel only if the status has not moved since it was read"""
        return (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.status == expected_status)
            .update(
                {
                    Booking.status: BookingStatus.CANCELLED.value,
                    Booking.cancelled_at: now,
                    Booking.cancelled_by: cancelled_by,
                    Booking.refund_amount: refund_amount,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def add_penalty(db: Session, washer_id: int, booking_id: int, amount: Decimal, reason: str, now: datetime):
        penalty = WasherPenalty(
            washer_id=washer_id, booking_id=booking_id, amount=amount, reason=reason, created_at=now
        )
        db.add(penalty)
        db.flush()
        return penalty

    @staticmethod
    def count_penalties_since(db: Session, washer_id: int, since: datetime) -> int:
        return (
            db.query(WasherPenalty)
            .filter(WasherPenalty.washer_id == washer_id, WasherPenalty.created_at >= since)
            .count()
        )
