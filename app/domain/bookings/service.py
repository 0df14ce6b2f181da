"""
Booking service - creation, checkout, washer claim and cancellation.

A booking is written in awaiting_payment before the payment provider is
called. If the checkout call fails the booking stays there and the customer
can retry checkout; the payment webhook is what moves it on to
awaiting_assignment.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import (
    AlreadyProcessedError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from ...models import Booking, BookingStatus, User, utcnow
from ...schemas import ActionResult
from ..billing.dodo_service import DodoPaymentsService, to_minor_units
from ..handover.pins import generate_pin_pair
from ..pricing.engine import (
    build_services_config,
    calculate_total,
    calculate_total_weight,
    determine_weight_tier,
)
from .policy import (
    PENALTY_REVIEW_THRESHOLD,
    PENALTY_REVIEW_WINDOW,
    USER,
    WASHER,
    assess_cancellation,
)
from .repository import BookingRepository
from .schedule import validate_schedule
from .schemas import BookingCreate, booking_to_response

logger = logging.getLogger(__name__)


class BookingService:
    """Service layer for booking orchestration"""

    def __init__(self, db: Session, payments: Optional[DodoPaymentsService] = None):
        self.db = db
        self.repo = BookingRepository()
        self.payments = payments

    # ------------------------------------------------------------------
    # Creation and checkout
    # ------------------------------------------------------------------

    async def create_booking(self, user: User, data: BookingCreate) -> ActionResult:
        try:
            booking = self._persist_booking(user, data)
        except ServiceError as e:
            self.db.rollback()
            return ActionResult.from_error(e)

        logger.info(f"Booking {booking.id} created for user {user.id}: £{booking.total_price}")
        return await self._start_checkout(booking, user)

    def _persist_booking(self, user: User, data: BookingCreate) -> Booking:
        collection_start = validate_schedule(data.date, data.timeSlot)

        selection = data
        if selection.weightTier is None and selection.selectedItems:
            # Itemized entry picks the tier; items stay informational
            suggested = determine_weight_tier(calculate_total_weight(selection.selectedItems))
            selection = data.model_copy(update={"weightTier": suggested})
        if selection.weightTier is None:
            raise ValidationError("Select a wash size or the items to be washed", code="no_service_selected")

        total = Decimal(str(calculate_total(selection)))
        services_config = build_services_config(selection)

        return self.repo.create_booking(
            self.db,
            {
                "user_id": user.id,
                "collection_date": collection_start,
                "collection_time_slot": selection.timeSlot,
                "delivery_method": selection.deliveryMethod,
                "services_config": services_config,
                "total_price": total,
                "status": BookingStatus.AWAITING_PAYMENT.value,
                "special_instructions": data.specialInstructions,
                "access_notes": data.accessNotes,
            },
        )

    async def retry_checkout(self, user: User, booking_id: int) -> ActionResult:
        booking = self.repo.get_user_booking(self.db, booking_id, user.id)
        if not booking:
            return ActionResult.from_error(NotFoundError("Booking not found", code="booking_not_found"))
        if booking.status != BookingStatus.AWAITING_PAYMENT.value:
            return ActionResult.from_error(
                InvalidStateError("This booking is not awaiting payment", code="not_awaiting_payment")
            )
        return await self._start_checkout(booking, user)

    async def _start_checkout(self, booking: Booking, user: User) -> ActionResult:
        if self.payments is None:
            raise RuntimeError("BookingService needs a payment service for checkout")

        try:
            session = await self.payments.create_booking_checkout(
                booking_id=booking.id,
                washer_id=booking.washer_id,
                total_price=booking.total_price,
                customer_email=user.email,
                customer_name=user.full_name,
            )
        except ServiceError as e:
            logger.error(f"Checkout failed for booking {booking.id}, left awaiting payment: {e.message}")
            e.data = {**(e.data or {}), "booking_id": booking.id, "status": booking.status}
            return ActionResult.from_error(e)

        booking = self.repo.save_checkout(self.db, booking, session["session_id"], session["checkout_url"])
        return ActionResult.ok(
            "Booking created, continue to payment",
            data={
                "booking": booking_to_response(booking, include_pins=True).model_dump(mode="json"),
                "checkout_url": session["checkout_url"],
            },
        )

    def mark_paid(
        self,
        booking_id: int,
        payment_id: Optional[str] = None,
        paid_minor_units: Optional[int] = None,
    ) -> bool:
        """Payment confirmed by the provider; False if the booking was not awaiting payment
        or the amount paid (in pence) differs from the booking total"""
        if paid_minor_units is not None:
            booking = self.repo.get_booking(self.db, booking_id)
            if not booking:
                logger.warning(f"Payment for unknown booking {booking_id} ignored")
                return False
            expected = to_minor_units(booking.total_price)
            if paid_minor_units != expected:
                logger.warning(
                    f"Payment for booking {booking_id} ignored: paid {paid_minor_units}p, expected {expected}p"
                )
                return False

        updated = self.repo.mark_paid(self.db, booking_id, payment_id, utcnow())
        self.db.commit()
        if updated:
            logger.info(f"Booking {booking_id} paid, now awaiting assignment")
        else:
            logger.info(f"Payment for booking {booking_id} ignored: not awaiting payment")
        return bool(updated)

    # ------------------------------------------------------------------
    # Washer claim
    # ------------------------------------------------------------------

    def accept_booking(self, washer: User, booking_id: int) -> ActionResult:
        """Assign an open booking to the washer and issue its handover PINs"""
        collection_pin, delivery_pin = generate_pin_pair()
        updated = self.repo.claim_booking(self.db, booking_id, washer.id, collection_pin, delivery_pin)
        if updated != 1:
            self.db.rollback()
            booking = self.repo.get_booking(self.db, booking_id)
            if not booking:
                error = NotFoundError("Booking not found", code="booking_not_found")
            elif booking.washer_id is not None:
                error = AlreadyProcessedError("This booking has already been taken", code="already_assigned")
            else:
                error = InvalidStateError(
                    f"A {booking.status.replace('_', ' ')} booking cannot be accepted",
                    code="not_available",
                )
            return ActionResult.from_error(error)

        self.db.commit()
        booking = self.repo.get_booking(self.db, booking_id)
        self.db.refresh(booking)
        logger.info(f"Booking {booking_id} accepted by washer {washer.id}")
        return ActionResult.ok("Booking accepted", data=booking_to_response(booking).model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_by_user(self, user: User, booking_id: int, confirm_no_refund: bool = False) -> ActionResult:
        booking = self.repo.get_user_booking(self.db, booking_id, user.id)
        if not booking:
            return ActionResult.from_error(NotFoundError("Booking not found", code="booking_not_found"))
        return self._cancel(booking, USER, confirm_no_refund)

    def cancel_by_washer(self, washer: User, booking_id: int) -> ActionResult:
        booking = self.repo.get_washer_booking(self.db, booking_id, washer.id)
        if not booking:
            return ActionResult.from_error(NotFoundError("Booking not found", code="booking_not_found"))
        return self._cancel(booking, WASHER)

    def _cancel(self, booking: Booking, actor: str, confirm_no_refund: bool = False) -> ActionResult:
        now = utcnow()
        try:
            decision = assess_cancellation(
                actor,
                booking.status,
                Decimal(str(booking.total_price)),
                booking.collection_date,
                now,
                confirm_no_refund,
            )
            updated = self.repo.cancel_booking(
                self.db, booking.id, booking.status, actor, decision.refund_amount, now
            )
            if updated != 1:
                raise InvalidStateError(
                    "Booking changed while cancelling, please refresh", code="booking_changed"
                )
            if decision.penalty_amount > 0:
                self._record_penalty(booking, decision.penalty_amount, now)
            self.db.commit()
        except ServiceError as e:
            self.db.rollback()
            return ActionResult.from_error(e)
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(booking)
        logger.info(
            f"Booking {booking.id} cancelled by {actor} (late={decision.late}, refund £{decision.refund_amount})"
        )
        return ActionResult.ok(
            "Booking cancelled",
            data={
                "booking_id": booking.id,
                "refund_amount": float(decision.refund_amount),
                "penalty_amount": float(decision.penalty_amount),
                "late": decision.late,
            },
        )

    def _record_penalty(self, booking: Booking, amount: Decimal, now) -> None:
        washer_id = booking.washer_id
        self.repo.add_penalty(self.db, washer_id, booking.id, amount, "Cancelled within 12 hours of collection", now)
        recent = self.repo.count_penalties_since(self.db, washer_id, now - PENALTY_REVIEW_WINDOW)
        logger.warning(f"Late cancellation penalty £{amount} for washer {washer_id} ({recent} in window)")
        if recent >= PENALTY_REVIEW_THRESHOLD:
            washer = self.db.query(User).filter(User.id == washer_id).first()
            if washer and not washer.flagged_for_review:
                washer.flagged_for_review = True
                logger.warning(f"Washer {washer_id} flagged for account review")

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_user_bookings(self, user: User) -> list[Booking]:
        return self.repo.get_user_bookings(self.db, user.id)

    def get_user_booking(self, user: User, booking_id: int) -> Optional[Booking]:
        return self.repo.get_user_booking(self.db, booking_id, user.id)

    def get_washer_bookings(self, washer: User) -> list[Booking]:
        return self.repo.get_washer_bookings(self.db, washer.id)

    def get_available_bookings(self) -> list[Booking]:
        return self.repo.get_available_bookings(self.db, utcnow())
