import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, enum.Enum):
    USER = "user"
    WASHER = "washer"
    ADMIN = "admin"


class BookingStatus(str, enum.Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_ASSIGNMENT = "awaiting_assignment"
    WASHER_ASSIGNED = "washer_assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Forward-only lifecycle
BOOKING_TRANSITIONS = {
    BookingStatus.AWAITING_PAYMENT: {BookingStatus.AWAITING_ASSIGNMENT, BookingStatus.CANCELLED},
    BookingStatus.AWAITING_ASSIGNMENT: {BookingStatus.WASHER_ASSIGNED, BookingStatus.CANCELLED},
    BookingStatus.WASHER_ASSIGNED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return BookingStatus(target) in BOOKING_TRANSITIONS.get(BookingStatus(current), set())


class EarningStatus(str, enum.Enum):
    AVAILABLE = "available"
    PROCESSING = "processing"
    PAID = "paid"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


class PayoutAccountStatus(str, enum.Enum):
    NOT_CONNECTED = "not_connected"
    INCOMPLETE = "incomplete"
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firebase_uid = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), default=Role.USER.value, nullable=False)

    # Payout account at the payment provider (washers only), kept in sync by webhook
    payout_account_id = Column(String(255), nullable=True)
    payout_account_status = Column(
        String(50), default=PayoutAccountStatus.NOT_CONNECTED.value, nullable=False
    )

    # Set once a washer accumulates too many late-cancellation penalties
    flagged_for_review = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    washer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Start of the collection slot
    collection_date = Column(DateTime, nullable=False)
    collection_time_slot = Column(String(50), nullable=False)
    delivery_method = Column(String(20), nullable=False, default="collection")

    # Snapshot of the selection and its priced breakdown, read back by every client surface
    services_config = Column(JSON, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    status = Column(String(30), default=BookingStatus.AWAITING_PAYMENT.value, nullable=False, index=True)

    special_instructions = Column(Text, nullable=True)
    access_notes = Column(Text, nullable=True)

    # Handover PINs, 4 ASCII digits each
    collection_pin = Column(String(4), nullable=True)
    delivery_pin = Column(String(4), nullable=True)
    collection_verified_at = Column(DateTime, nullable=True)
    delivery_verified_at = Column(DateTime, nullable=True)

    # Payment provider references
    payment_session_id = Column(String(255), nullable=True)
    payment_link = Column(String(500), nullable=True)
    payment_id = Column(String(255), nullable=True)
    paid_at = Column(DateTime, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(20), nullable=True)  # user, washer
    refund_amount = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id])
    washer = relationship("User", foreign_keys=[washer_id])


class Earning(Base):
    """A washer's share of one completed booking"""

    __tablename__ = "earnings"

    id = Column(Integer, primary_key=True, index=True)
    washer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # A booking normally has one earning; settling a payout can split it into paid and available parts
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)

    booking_total = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    washer_earnings = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), default=EarningStatus.AVAILABLE.value, nullable=False, index=True)
    made_available_at = Column(DateTime, nullable=False, default=utcnow)

    # Request holding this earning while it is processing or after it was paid
    payout_request_id = Column(Integer, ForeignKey("payout_requests.id"), nullable=True, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id = Column(Integer, primary_key=True, index=True)
    washer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    requested_amount = Column(Numeric(10, 2), nullable=False)
    withdrawal_fee = Column(Numeric(10, 2), nullable=False)
    net_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(10), default="GBP")
    status = Column(String(20), default=PayoutStatus.PENDING.value, nullable=False, index=True)

    notes = Column(Text, nullable=True)
    reference_id = Column(String(255), nullable=True)  # External transfer reference

    requested_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    earnings = relationship("Earning", backref="payout_request")


class WasherPenalty(Base):
    """Marker recorded when a washer cancels inside the late-cancellation window"""

    __tablename__ = "washer_penalties"

    id = Column(Integer, primary_key=True, index=True)
    washer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
